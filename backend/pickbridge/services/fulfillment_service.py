"""
Fulfillment Service

Entry points used by the command line (and any other caller) for the
reconciliation engine: import, remaining quantities, prepared-quantity
recording, push & validate, delivery state and shipments.

Per-order serialization is the caller's responsibility; two concurrent
pushes on the same order are not guarded here.
"""
from typing import Dict, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.core.settings import Settings, get_settings
from pickbridge.core.status_config import NON_CONFIRMABLE_SALE_STATES, SaleOrderState
from pickbridge.db.base import utcnow
from pickbridge.exceptions import (
    DatabaseError,
    InvalidStateError,
    NotFoundError,
    PartialSyncError,
    PickBridgeException,
)
from pickbridge.integrations.odoo_client import OdooClient
from pickbridge.logging_config import get_logger
from pickbridge.models import SalesOrder
from pickbridge.schemas.fulfillment import AttachShipmentResult, PushResult, SyncBatchResult
from pickbridge.services import delivery_state, shipment_service, snapshot_store
from pickbridge.services.allocation import AllocationEngine
from pickbridge.services.odoo_reader import OdooFulfillmentReader, build_date_domain
from pickbridge.services.picking_validation import PickingValidator
from pickbridge.services.shipment_service import CarrierGateway

logger = get_logger(__name__)


class FulfillmentService:
    """Facade over reader, snapshot store, allocation engine and validator."""

    def __init__(
        self,
        client: OdooClient,
        config: Optional[FulfillmentConfig] = None,
        batch_limit: int = 500,
    ):
        self.client = client
        self.config = config or FulfillmentConfig()
        self.batch_limit = batch_limit
        self.reader = OdooFulfillmentReader(client, self.config)
        self.validator = PickingValidator(client, self.config)
        self.engine = AllocationEngine(self.reader, self.validator, self.config)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FulfillmentService":
        settings = settings or get_settings()
        return cls(
            OdooClient.from_settings(settings),
            FulfillmentConfig.from_settings(settings),
            batch_limit=settings.SYNC_BATCH_LIMIT,
        )

    def _get_order(self, db: Session, order_id: int) -> SalesOrder:
        order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
        if not order:
            raise NotFoundError("Sales order", order_id)
        return order

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def sync_one(self, db: Session, reference: Union[int, str]) -> int:
        """Fetch one sale order (Odoo id or name) and upsert it. Returns the local id."""
        snapshot = self.reader.fetch_sale_order(reference)
        return snapshot_store.upsert_sale_order(db, snapshot)

    def sync_batch(
        self,
        db: Session,
        states: Optional[Sequence[str]] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SyncBatchResult:
        """
        Import a page of sale orders.

        Each order is synced on its own; a failing order is counted in
        errors and recorded as a PartialSyncError, and the batch goes on.
        """
        domain = build_date_domain("date_order", states, since, until)
        rows = self.reader.list_sale_orders_minimal(domain, limit or self.batch_limit, offset)

        result = SyncBatchResult()
        for row in rows:
            reference = str(row.get("name") or row.get("id"))
            try:
                self.sync_one(db, int(row["id"]))
            except PickBridgeException as e:
                logger.warning(
                    f"Sync of {reference} failed: {e.message}",
                    extra={"reference": reference, "error_code": e.error_code},
                )
                result.record_failure(
                    PartialSyncError(
                        f"Sync of {reference} failed: {e.message}",
                        reference=reference,
                        cause=e.error_code,
                        details=dict(e.details),
                    )
                )
                continue
            result.imported += 1
            result.last_ref = reference

        logger.info(
            f"Batch sync: {result.imported} imported, {result.errors} failed",
            extra={"offset": offset, "last_ref": result.last_ref},
        )
        return result

    def sync_pickings(
        self,
        db: Session,
        states: Optional[Sequence[str]] = None,
        since: Optional[str] = None,
        until: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> int:
        """Refresh the local odoo_pickings cache used by the delivery-state fallback."""
        domain = build_date_domain("scheduled_date", states, since, until)
        pickings = self.reader.list_pickings(domain, limit or self.batch_limit, offset)
        return snapshot_store.upsert_pickings(db, pickings)

    # ------------------------------------------------------------------
    # Quantities
    # ------------------------------------------------------------------

    def get_remaining(self, reference: Union[int, str]) -> Dict[int, float]:
        """Open demand per product for an Odoo sale order (id or name)."""
        return self.reader.get_remaining(reference)

    def record_prepared_quantities(
        self, db: Session, order_id: int, prepared_by_line: Mapping[int, Optional[float]]
    ) -> Dict[int, float]:
        return snapshot_store.record_prepared_quantities(db, order_id, prepared_by_line)

    def push_and_validate(
        self,
        db: Session,
        order_id: int,
        prepared_by_product: Optional[Mapping[int, float]] = None,
        create_backorder: Optional[bool] = None,
    ) -> PushResult:
        """
        Push prepared quantities, validate the picking, then refresh the order.

        prepared_by_product defaults to the order lines' prepared quantities;
        create_backorder defaults to the configured policy. The refresh after
        a successful validation is best-effort.
        """
        order = self._get_order(db, order_id)
        if prepared_by_product is None:
            prepared_by_product = snapshot_store.prepared_by_product(order)
        if create_backorder is None:
            create_backorder = self.config.create_backorder_default

        result = self.engine.push_prepared(db, order_id, prepared_by_product, create_backorder)
        if not result.validation.succeeded:
            return result

        try:
            self.sync_one(db, order.odoo_sale_order_id)
            result.resynced = True
        except PickBridgeException as e:
            logger.warning(
                f"Push succeeded but refreshing order {order_id} failed: {e.message}",
                extra={"order_id": order_id, "error_code": e.error_code},
            )

        try:
            order = self._get_order(db, order_id)
            order.picking_validated_at = utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise DatabaseError(
                "Could not stamp picking validation", details={"order_id": order_id, "cause": str(e)}
            ) from e
        return result

    # ------------------------------------------------------------------
    # Delivery state
    # ------------------------------------------------------------------

    def get_best_delivery_state(self, db: Session, order_id: int) -> Optional[str]:
        return delivery_state.get_best_delivery_state(db, order_id)

    # ------------------------------------------------------------------
    # Shipment
    # ------------------------------------------------------------------

    def attach_shipment(
        self, db: Session, order_id: int, gateway: CarrierGateway, label_format: Optional[str] = None
    ) -> AttachShipmentResult:
        return shipment_service.attach_shipment(db, order_id, gateway, label_format, config=self.config)

    # ------------------------------------------------------------------
    # Sale order actions
    # ------------------------------------------------------------------

    def confirm_sale_order(self, db: Session, order_id: int) -> int:
        """Confirm the Odoo sale order (action_confirm) and refresh the local copy."""
        order = self._get_order(db, order_id)
        if not order.is_linked:
            raise InvalidStateError(f"Order {order.external_order_id} is not linked to Odoo")
        header = self.reader.read_sale_order(order.odoo_sale_order_id)
        if header.state in NON_CONFIRMABLE_SALE_STATES:
            raise InvalidStateError(
                f"Sale order {header.name} cannot be confirmed from '{header.state}'",
                current_state=header.state,
                allowed_states=[SaleOrderState.DRAFT.value, SaleOrderState.SENT.value],
            )
        self.reader.confirm_sale_order(header.id)
        logger.info(f"Confirmed sale order {header.name}", extra={"order_id": order_id})
        return self.sync_one(db, header.id)

    def cancel_sale_order(self, db: Session, order_id: int) -> int:
        """Cancel the Odoo sale order (action_cancel) and refresh the local copy."""
        order = self._get_order(db, order_id)
        if not order.is_linked:
            raise InvalidStateError(f"Order {order.external_order_id} is not linked to Odoo")
        header = self.reader.read_sale_order(order.odoo_sale_order_id)
        if header.state == SaleOrderState.CANCEL.value:
            raise InvalidStateError(
                f"Sale order {header.name} is already cancelled",
                current_state=header.state,
                allowed_states=[s.value for s in SaleOrderState if s != SaleOrderState.CANCEL],
            )
        self.reader.cancel_sale_order(header.id)
        logger.info(f"Cancelled sale order {header.name}", extra={"order_id": order_id})
        return self.sync_one(db, header.id)
