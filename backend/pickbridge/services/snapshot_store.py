"""
Local Snapshot Store

Mirrors Odoo sale orders and pickings into the local tables.

upsert_sale_order() is idempotent by Odoo id: the header is overwritten, the
lines are purged and reinserted, and operator-entered prepared quantities are
carried forward by Odoo line id. Each call is one local transaction.
"""
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pickbridge.db.base import utcnow
from pickbridge.exceptions import DatabaseError, InvalidPayloadError, NotFoundError
from pickbridge.logging_config import get_logger
from pickbridge.models import OdooPicking, SalesOrder, SalesOrderLine
from pickbridge.schemas.odoo import PickingSummary, SaleOrderSnapshot

logger = get_logger(__name__)


def _validation_field(error: ValidationError) -> str:
    first = error.errors()[0] if error.errors() else {}
    return ".".join(str(part) for part in first.get("loc", ())) or "payload"


def coerce_snapshot(payload: Union[SaleOrderSnapshot, Mapping[str, Any]]) -> SaleOrderSnapshot:
    """Accept a snapshot or the equivalent dict; malformed data raises InvalidPayloadError."""
    if isinstance(payload, SaleOrderSnapshot):
        return payload
    if not isinstance(payload, Mapping):
        raise InvalidPayloadError("Odoo payload must be a mapping", field="payload")

    so = payload.get("so")
    if not isinstance(so, Mapping) or not so.get("id") or not so.get("name"):
        raise InvalidPayloadError("Invalid Odoo payload: so.id / so.name missing", field="so")

    try:
        return SaleOrderSnapshot.model_validate(dict(payload))
    except ValidationError as e:
        field = _validation_field(e)
        raise InvalidPayloadError(f"Invalid Odoo payload at {field}", field=field) from e


def _find_order(db: Session, odoo_id: int, reference: str) -> Optional[SalesOrder]:
    """Match on Odoo id OR external reference; an Odoo id match wins."""
    candidates = (
        db.query(SalesOrder)
        .filter(or_(SalesOrder.odoo_sale_order_id == odoo_id, SalesOrder.external_order_id == reference))
        .all()
    )
    for order in candidates:
        if order.odoo_sale_order_id == odoo_id:
            return order
    return candidates[0] if candidates else None


def _apply_header(order: SalesOrder, snapshot: SaleOrderSnapshot) -> None:
    so = snapshot.so
    partner = snapshot.partner

    order.source = "odoo"
    order.status = so.state or "draft"
    order.delivery_status = so.delivery_status
    order.odoo_sale_order_id = so.id
    order.odoo_name = so.name
    order.placed_at = so.date_order
    order.item_count = len(snapshot.lines)
    order.total_amount = Decimal(str(so.amount_total or 0))
    order.currency = so.currency_code[:3]
    order.payload_json = snapshot.to_compact_json()
    order.odoo_synced_at = utcnow()

    order.customer_name = (partner.name if partner else None) or ""
    order.customer_email = (partner.email if partner else None) or ""
    order.shipping_name = partner.name if partner else None
    order.shipping_phone = partner.phone if partner else None
    order.shipping_street1 = partner.street if partner else None
    order.shipping_street2 = partner.street2 if partner else None
    order.shipping_zip = partner.zip if partner else None
    order.shipping_city = partner.city if partner else None
    order.shipping_country_code = (partner.country_code or None) if partner else None


def upsert_sale_order(db: Session, payload: Union[SaleOrderSnapshot, Mapping[str, Any]]) -> int:
    """
    Insert or update one mirrored sale order and return its local id.

    Args:
        db: Database session
        payload: SaleOrderSnapshot (or dict with so/partner/lines/pickings/...)

    Raises:
        InvalidPayloadError: header id or name missing, or malformed record
        DatabaseError: local write failed (nothing committed)
    """
    snapshot = coerce_snapshot(payload)
    so = snapshot.so

    try:
        order = _find_order(db, so.id, so.name)
        created = order is None
        if created:
            order = SalesOrder(external_order_id=so.name)
            db.add(order)

        _apply_header(order, snapshot)
        db.flush()

        # Carry operator input forward by Odoo line id
        prepared_by_line: Dict[int, Decimal] = {
            line.odoo_line_id: line.prepared_quantity
            for line in order.lines
            if line.odoo_line_id is not None and line.prepared_quantity is not None
        }

        order.lines.clear()
        db.flush()

        for record in snapshot.lines:
            product_id = record.odoo_product_id
            stock = snapshot.stock_by_product.get(product_id) if product_id else None
            order.lines.append(
                SalesOrderLine(
                    odoo_line_id=record.id,
                    odoo_product_id=product_id,
                    name=record.label,
                    quantity=Decimal(str(record.product_uom_qty)),
                    prepared_quantity=prepared_by_line.get(record.id),
                    odoo_qty_available=Decimal(str(stock)) if stock is not None else None,
                )
            )

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Upsert of sale order {so.name} failed: {e}", extra={"odoo_id": so.id})
        raise DatabaseError(
            f"Could not store sale order {so.name}", details={"odoo_id": so.id, "cause": str(e)}
        ) from e
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"{'Imported' if created else 'Refreshed'} sale order {so.name} "
        f"({len(snapshot.lines)} lines, {len(prepared_by_line)} prepared carried forward)",
        extra={"order_id": order.id, "odoo_id": so.id},
    )
    return order.id


def upsert_pickings(db: Session, pickings: Iterable[Union[PickingSummary, Mapping[str, Any]]]) -> int:
    """Insert or overwrite odoo_pickings rows by Odoo id. Returns the number stored."""
    records = []
    for raw in pickings:
        if isinstance(raw, PickingSummary):
            records.append(raw)
            continue
        try:
            records.append(PickingSummary.model_validate(raw))
        except ValidationError as e:
            field = _validation_field(e)
            raise InvalidPayloadError(f"Invalid Odoo picking at {field}", field=field) from e

    if not records:
        return 0

    try:
        existing = {
            p.odoo_id: p
            for p in db.query(OdooPicking).filter(OdooPicking.odoo_id.in_([r.id for r in records])).all()
        }
        for record in records:
            row = existing.get(record.id)
            if row is None:
                row = OdooPicking(odoo_id=record.id)
                db.add(row)
                existing[record.id] = row
            row.name = record.name or f"picking/{record.id}"
            row.origin = record.origin
            row.state = record.state
            row.scheduled_date = record.scheduled_date
            row.write_date = record.write_date
            row.payload_json = record.model_dump_json(exclude_none=True)
            row.synced_at = utcnow()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError("Could not store Odoo pickings", details={"cause": str(e)}) from e

    logger.info(f"Stored {len(records)} Odoo picking(s)")
    return len(records)


def record_prepared_quantities(
    db: Session,
    order_id: int,
    prepared_by_line: Mapping[int, Optional[float]],
) -> Dict[int, float]:
    """
    Store operator-entered prepared quantities, keyed by local line id.

    Negative values clamp to 0; None clears the line. Committed before any
    remote push so the input survives a failed push.

    Returns:
        Prepared quantity per Odoo product id after the update
    """
    order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
    if not order:
        raise NotFoundError("Sales order", order_id)

    lines_by_id = {line.id: line for line in order.lines}
    unknown = [line_id for line_id in prepared_by_line if line_id not in lines_by_id]
    if unknown:
        raise NotFoundError("Sales order line", unknown[0], details={"order_id": order_id})

    try:
        for line_id, qty in prepared_by_line.items():
            line = lines_by_id[line_id]
            line.prepared_quantity = None if qty is None else Decimal(str(max(float(qty), 0.0)))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(
            "Could not store prepared quantities", details={"order_id": order_id, "cause": str(e)}
        ) from e

    logger.info(
        f"Recorded prepared quantities on {len(prepared_by_line)} line(s) of order {order_id}",
        extra={"order_id": order_id},
    )
    return prepared_by_product(order)


def prepared_by_product(order: SalesOrder) -> Dict[int, float]:
    """Sum positive prepared quantities by Odoo product id."""
    totals: Dict[int, float] = defaultdict(float)
    for line in order.lines:
        if line.odoo_product_id and line.prepared_quantity is not None and line.prepared_quantity > 0:
            totals[line.odoo_product_id] += float(line.prepared_quantity)
    return dict(totals)
