"""
Odoo Picking Model

Local cache of stock.picking records. Pickings are linked to orders at query
time by matching origin against the order's Odoo name or external reference;
there is no foreign key.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text

from pickbridge.db.base import Base, utcnow


class OdooPicking(Base):
    """Odoo Picking - one delivery document"""
    __tablename__ = "odoo_pickings"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True)

    odoo_id = Column(Integer, unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    origin = Column(String(255), nullable=True, index=True)

    # draft, waiting, confirmed, assigned, done, cancel
    state = Column(String(20), nullable=True, index=True)

    scheduled_date = Column(DateTime, nullable=True)
    write_date = Column(DateTime, nullable=True)  # remote last-modified

    payload_json = Column(Text, nullable=True)
    synced_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<OdooPicking {self.name} ({self.state}) origin={self.origin}>"
