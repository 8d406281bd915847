"""
Carrier contract

The carrier integration lives outside this package. Anything implementing
CarrierGateway can be handed to attach_shipment(), which stores the tracking
number on the order. A missing label or tracking number is a warning, never
a failure.
"""
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.exceptions import DatabaseError, NotFoundError
from pickbridge.logging_config import get_logger
from pickbridge.models import SalesOrder
from pickbridge.schemas.fulfillment import AttachShipmentResult, ShipmentLabel

logger = get_logger(__name__)


class CarrierGateway(Protocol):
    """Creates a shipment with a carrier and returns its label."""

    name: str

    def create_shipment(self, order: SalesOrder, label_format: str) -> ShipmentLabel:
        ...


def attach_shipment(
    db: Session,
    order_id: int,
    gateway: CarrierGateway,
    label_format: Optional[str] = None,
    config: Optional[FulfillmentConfig] = None,
) -> AttachShipmentResult:
    """
    Create a shipment through the gateway and record it on the order.

    label_format defaults to the configured label format.
    """
    order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
    if not order:
        raise NotFoundError("Sales order", order_id)

    config = config or FulfillmentConfig()
    label_format = (label_format or config.label_format).upper()
    label = gateway.create_shipment(order, label_format)

    result = AttachShipmentResult(
        order_id=order.id, tracking_number=None, carrier=gateway.name, label=label
    )
    if not label.tracking_number:
        result.warnings.append("carrier returned no tracking number")
    if not label.label_bytes:
        result.warnings.append("carrier returned no label")
    for warning in result.warnings:
        logger.warning(f"Order {order.external_order_id}: {warning}", extra={"order_id": order.id})

    try:
        if label.tracking_number:
            order.tracking_number = label.tracking_number
            result.tracking_number = label.tracking_number
        order.shipping_carrier = gateway.name
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(
            "Could not store shipment", details={"order_id": order_id, "cause": str(e)}
        ) from e

    logger.info(
        f"Shipment attached to {order.external_order_id} via {gateway.name}",
        extra={"order_id": order.id, "tracking_number": result.tracking_number},
    )
    return result
