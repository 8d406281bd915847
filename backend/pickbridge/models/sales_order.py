"""
Sales Order Model

Local mirror of Odoo sale orders. Header fields are overwritten on every
sync; lines are purged and reinserted, carrying prepared quantities forward
by Odoo line id.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from pickbridge.db.base import Base, utcnow


class SalesOrder(Base):
    """Sales Order - mirrored from an Odoo sale.order"""
    __tablename__ = "sales_orders"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    # Order Identification
    # Alternate keys: upsert matches on either
    external_order_id = Column(String(100), unique=True, nullable=False, index=True)  # S00042
    odoo_sale_order_id = Column(Integer, unique=True, nullable=True, index=True)
    odoo_name = Column(String(100), nullable=True, index=True)

    source = Column(String(50), nullable=False, default="odoo", index=True)

    # Order Status (mirrored from sale.order.state, free-form)
    status = Column(String(50), nullable=False, default="draft", index=True)
    # Odoo's own delivery aggregate when the deployment exposes it
    delivery_status = Column(String(50), nullable=True)

    # Customer / Shipping (resolved from partner_shipping_id)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    shipping_name = Column(String(255), nullable=True)
    shipping_phone = Column(String(50), nullable=True)
    shipping_street1 = Column(String(255), nullable=True)
    shipping_street2 = Column(String(255), nullable=True)
    shipping_zip = Column(String(20), nullable=True)
    shipping_city = Column(String(100), nullable=True)
    shipping_country_code = Column(String(2), nullable=True)

    # Totals
    item_count = Column(Integer, nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="EUR")

    # Compact JSON copy of the last remote payload
    payload_json = Column(Text, nullable=True)

    # Shipping
    tracking_number = Column(String(255), nullable=True)
    shipping_carrier = Column(String(100), nullable=True)

    # Timestamps
    placed_at = Column(DateTime, nullable=True)
    odoo_synced_at = Column(DateTime, nullable=True)
    picking_validated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    lines = relationship(
        "SalesOrderLine",
        back_populates="sales_order",
        cascade="all, delete-orphan",
        order_by="SalesOrderLine.id",
    )

    def __repr__(self):
        return f"<SalesOrder {self.external_order_id} - {self.status}>"

    @property
    def origin_refs(self) -> list:
        """Strings a picking origin may carry to point back at this order"""
        refs = []
        for ref in (self.odoo_name, self.external_order_id):
            if ref and ref not in refs:
                refs.append(ref)
        return refs

    @property
    def is_linked(self) -> bool:
        """Check if order is linked to an Odoo sale order"""
        return self.odoo_sale_order_id is not None


class SalesOrderLine(Base):
    """
    Sales Order Line - one sale.order.line

    prepared_quantity is operator input and is not part of the remote
    snapshot. It survives refreshes by odoo_line_id.
    """
    __tablename__ = "sales_order_lines"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    # Foreign Keys
    sales_order_id = Column(Integer, ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True)

    # Remote identity
    odoo_line_id = Column(Integer, nullable=True, index=True)
    odoo_product_id = Column(Integer, nullable=True, index=True)

    # Line Details
    name = Column(String(500), nullable=False, default="")
    quantity = Column(Numeric(12, 3), nullable=False, default=0)  # ordered
    prepared_quantity = Column(Numeric(12, 3), nullable=True)  # picked by the operator
    odoo_qty_available = Column(Numeric(12, 3), nullable=True)  # cached stock on hand

    # Relationships
    sales_order = relationship("SalesOrder", back_populates="lines")

    def __repr__(self):
        return f"<SalesOrderLine {self.odoo_line_id} x{self.quantity}>"
