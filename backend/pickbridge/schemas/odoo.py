"""
Odoo Payload Pydantic Schemas

Typed views over JSON-RPC records. Odoo encodes empty values as False and
many2one values as [id, display_name]; both are normalized here so the rest
of the engine never branch-tests raw dictionaries.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

from pickbridge.exceptions import InvalidPayloadError


# ============================================================================
# Many2one helpers
# ============================================================================

def m2o_id(value: Any) -> Optional[int]:
    """Extract the id of a many2one value ([id, name], bare id, or False)."""
    if isinstance(value, (list, tuple)):
        return int(value[0]) if value and value[0] else None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def m2o_name(value: Any) -> Optional[str]:
    """Extract the display name of a many2one value."""
    if isinstance(value, (list, tuple)) and len(value) > 1 and value[1]:
        return str(value[1])
    return None


class OdooRecord(BaseModel):
    """Base for records read from Odoo. Unknown fields are kept."""

    model_config = {"extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def false_to_none(cls, data: Any) -> Any:
        # Odoo sends False for empty char/date/many2one fields
        if isinstance(data, dict):
            return {k: (None if v is False else v) for k, v in data.items()}
        return data


RecordT = TypeVar("RecordT", bound=BaseModel)


# ============================================================================
# Sale order
# ============================================================================

class SaleOrderHeader(OdooRecord):
    """sale.order header fields"""
    id: int
    name: str
    state: Optional[str] = None
    date_order: Optional[datetime] = None
    partner_id: Optional[List[Any]] = None
    partner_shipping_id: Optional[List[Any]] = None
    picking_ids: List[int] = Field(default_factory=list)
    amount_total: Optional[float] = None
    currency_id: Optional[List[Any]] = None
    delivery_status: Optional[str] = None

    @property
    def shipping_partner_id(self) -> Optional[int]:
        return m2o_id(self.partner_shipping_id) or m2o_id(self.partner_id)

    @property
    def currency_code(self) -> str:
        return m2o_name(self.currency_id) or "EUR"


class PartnerInfo(OdooRecord):
    """res.partner used as shipping address"""
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    street2: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    country_id: Optional[List[Any]] = None
    country_code: Optional[str] = None


class SaleOrderLineRecord(OdooRecord):
    """sale.order.line (display lines excluded upstream)"""
    id: int
    product_id: Optional[List[Any]] = None
    product_uom_qty: float = 0.0
    name: Optional[str] = None

    @property
    def odoo_product_id(self) -> Optional[int]:
        return m2o_id(self.product_id)

    @property
    def label(self) -> str:
        return m2o_name(self.product_id) or self.name or ""


# ============================================================================
# Stock
# ============================================================================

class PickingSummary(OdooRecord):
    """stock.picking as embedded in an order snapshot or listed for import"""
    id: int
    name: Optional[str] = None
    origin: Optional[str] = None
    state: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    write_date: Optional[datetime] = None
    picking_type_id: Optional[List[Any]] = None
    location_id: Optional[List[Any]] = None
    location_dest_id: Optional[List[Any]] = None


class StockMoveRecord(OdooRecord):
    """stock.move; quantity_done only exists on some Odoo versions"""
    id: int
    picking_id: Optional[List[Any]] = None
    product_id: Optional[List[Any]] = None
    product_uom_qty: float = 0.0
    quantity_done: Optional[float] = None
    move_line_ids: List[int] = Field(default_factory=list)
    state: Optional[str] = None
    product_uom: Optional[List[Any]] = None
    location_id: Optional[List[Any]] = None
    location_dest_id: Optional[List[Any]] = None


class StockMoveLineRecord(OdooRecord):
    """stock.move.line; the done field is qty_done or quantity_done depending on version"""
    id: int
    move_id: Optional[List[Any]] = None
    product_id: Optional[List[Any]] = None
    qty_done: Optional[float] = None
    quantity_done: Optional[float] = None

    @property
    def done(self) -> float:
        if self.qty_done is not None:
            return float(self.qty_done)
        if self.quantity_done is not None:
            return float(self.quantity_done)
        return 0.0


class MoveQuantity(BaseModel):
    """Per-product aggregate of demanded vs. done across an order's pickings"""
    demanded: float = 0.0
    done: float = 0.0


# ============================================================================
# Snapshot
# ============================================================================

class SaleOrderSnapshot(BaseModel):
    """
    Everything the snapshot store needs to mirror one sale order.

    Produced by OdooFulfillmentReader.fetch_sale_order(); also accepted as a
    plain dict with the same keys.
    """
    so: SaleOrderHeader
    partner: Optional[PartnerInfo] = None
    lines: List[SaleOrderLineRecord] = Field(default_factory=list)
    pickings: List[PickingSummary] = Field(default_factory=list)
    move_sum: Dict[int, MoveQuantity] = Field(default_factory=dict)
    stock_by_product: Dict[int, float] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def partner_false_to_none(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("partner") is False:
            data = {**data, "partner": None}
        return data

    def to_compact_json(self) -> str:
        """Compact JSON copy stored on the local order."""
        return self.model_dump_json(exclude_none=True)


def parse_record(model_cls: Type[RecordT], row: Any) -> RecordT:
    """Validate one remote record; malformed data raises InvalidPayloadError."""
    try:
        return model_cls.model_validate(row)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or model_cls.__name__
        raise InvalidPayloadError(
            f"Malformed {model_cls.__name__} from Odoo at {field}",
            field=field,
            details={"record_id": row.get("id") if isinstance(row, dict) else None},
        ) from e
