"""
Allocation & Push Engine

Pushes locally prepared quantities onto an open Odoo picking of an order
and hands the picking to the validation state machine.

The prepared total is checked against the order-wide remaining quantity
before anything else. The target picking is the open one that can absorb
most of the prepared quantities; what it already records as done for a
product is subtracted before writing (read-modify-write), so re-running a
push with unchanged inputs writes nothing new.
"""
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.core.status_config import (
    DELIVERY_STATE_RANK,
    UNCONFIRMED_SALE_STATES,
    is_open_picking_state,
)
from pickbridge.exceptions import (
    NoOpenFulfillmentError,
    NotFoundError,
    NothingToPushError,
    OdooRPCError,
    OverAllocationError,
)
from pickbridge.logging_config import get_logger
from pickbridge.models import SalesOrder
from pickbridge.schemas.fulfillment import (
    AllocationLine,
    AllocationPlan,
    Movement,
    ProductAllocation,
    PushResult,
)
from pickbridge.schemas.odoo import PickingSummary, SaleOrderHeader
from pickbridge.services.odoo_reader import OdooFulfillmentReader
from pickbridge.services.picking_validation import PickingValidator
from pickbridge.services.remaining import done_by_product, remaining_by_product

logger = get_logger(__name__)

# Quantities closer than this are considered equal
EPSILON = 1e-6


def _round(qty: float) -> float:
    return round(qty, 6)


def _by_rank(pickings: Sequence[PickingSummary]) -> List[PickingSummary]:
    """Open pickings, highest delivery rank first, lowest id breaking ties."""
    candidates = [p for p in pickings if is_open_picking_state(p.state or "")]
    return sorted(candidates, key=lambda p: (-DELIVERY_STATE_RANK.get(p.state or "", -1), p.id))


# ============================================================================
# Pure helpers
# ============================================================================

def select_open_picking(pickings: Sequence[PickingSummary]) -> Optional[PickingSummary]:
    """Open picking with the highest delivery rank; lowest id breaks ties."""
    ranked = _by_rank(pickings)
    return ranked[0] if ranked else None


def capacity_by_picking(movements: Sequence[Movement]) -> Dict[int, Dict[int, float]]:
    """Open demand per picking and product."""
    capacity: Dict[int, Dict[int, float]] = defaultdict(lambda: defaultdict(float))
    for m in movements:
        if m.picking_id is None or m.product_id is None:
            continue
        capacity[m.picking_id][m.product_id] += m.remaining
    return {pid: dict(products) for pid, products in capacity.items()}


def select_push_picking(
    pickings: Sequence[PickingSummary],
    movements: Sequence[Movement],
    prepared_by_product: Mapping[int, float],
) -> Optional[PickingSummary]:
    """
    Open picking able to absorb the largest share of the prepared quantities.

    Pickings without capacity for any prepared product are never chosen.
    Equal coverage falls back to delivery rank, then lowest id.
    """
    capacity = capacity_by_picking(movements)
    best: Optional[PickingSummary] = None
    best_coverage = EPSILON
    for picking in _by_rank(pickings):
        open_demand = capacity.get(picking.id, {})
        coverage = sum(
            min(qty, open_demand.get(product_id, 0.0)) for product_id, qty in prepared_by_product.items()
        )
        if coverage > best_coverage + EPSILON:
            best, best_coverage = picking, coverage
    return best


def select_pending_picking(
    pickings: Sequence[PickingSummary],
    movements: Sequence[Movement],
    prepared_by_product: Mapping[int, float],
) -> Optional[PickingSummary]:
    """
    Open picking that already records exactly the prepared quantities as done.

    This is the state left behind by a push whose validation failed: the
    quantities are written but the picking was never validated.
    """
    for picking in _by_rank(pickings):
        done = done_by_product(movements, picking.id)
        if all(abs(done.get(pid, 0.0) - qty) <= EPSILON for pid, qty in prepared_by_product.items()):
            return picking
    return None


def compute_push_quantities(
    prepared_by_product: Mapping[int, float],
    movements: Sequence[Movement],
    picking_id: int,
) -> Dict[int, float]:
    """Prepared minus what the target picking already holds as done, floored at 0."""
    already_done = done_by_product(movements, picking_id)
    return {
        product_id: _round(max(float(qty) - already_done.get(product_id, 0.0), 0.0))
        for product_id, qty in prepared_by_product.items()
    }


def check_remaining_capacity(
    prepared_by_product: Mapping[int, float],
    remaining: Mapping[int, float],
    product_names: Optional[Mapping[int, str]] = None,
) -> None:
    """Raise OverAllocationError for the first product prepared beyond what it has left."""
    product_names = product_names or {}
    for product_id, qty in prepared_by_product.items():
        left = remaining.get(product_id, 0.0)
        if qty > left + EPSILON:
            raise OverAllocationError(
                product_id=product_id,
                product_name=product_names.get(product_id),
                requested=qty,
                remaining=left,
            )


def plan_allocation(
    picking_id: int,
    push_by_product: Mapping[int, float],
    movements: Sequence[Movement],
) -> AllocationPlan:
    """
    Distribute each product's push quantity greedily over the picking's movements.

    Movements are visited in remote order; each absorbs min(left, own
    remaining). The request is capped at the product's total capacity; the
    excess is reported as shortfall, never written.
    """
    picking_moves = [m for m in movements if m.picking_id == picking_id]
    plan = AllocationPlan(picking_id=picking_id)

    for product_id, requested in push_by_product.items():
        product_moves = [m for m in picking_moves if m.product_id == product_id]
        capacity = _round(sum(m.remaining for m in product_moves))
        name = next((m.product_name for m in product_moves if m.product_name), f"product {product_id}")
        allocation = ProductAllocation(
            product_id=product_id, product_name=name, requested=requested, capacity=capacity
        )

        left = min(requested, capacity)
        for move in product_moves:
            if left <= EPSILON:
                break
            take = _round(min(left, move.remaining))
            if take <= 0:
                continue
            allocation.lines.append(
                AllocationLine(move_id=move.move_id, product_id=product_id, current_done=move.done, taken=take)
            )
            left = _round(left - take)

        plan.products[product_id] = allocation

    return plan


# ============================================================================
# Engine
# ============================================================================

class AllocationEngine:
    """Push prepared quantities and validate the target picking."""

    def __init__(
        self,
        reader: OdooFulfillmentReader,
        validator: Optional[PickingValidator] = None,
        config: Optional[FulfillmentConfig] = None,
    ):
        self.reader = reader
        self.client = reader.client
        self.config = config or reader.config
        self.validator = validator or PickingValidator(self.client, self.config)

    def _load_order(self, db: Session, order_id: int) -> SalesOrder:
        order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
        if not order:
            raise NotFoundError("Sales order", order_id)
        return order

    def _read_header(self, order: SalesOrder) -> SaleOrderHeader:
        header = self.reader.read_sale_order(order.odoo_sale_order_id)
        if self.config.auto_confirm_on_push and header.state in UNCONFIRMED_SALE_STATES:
            logger.info(
                f"Auto-confirming sale order {header.name} before push",
                extra={"order_id": order.id, "odoo_id": header.id},
            )
            self.reader.confirm_sale_order(header.id)
            header = self.reader.read_sale_order(header.id)
        return header

    def _product_names(self, order: SalesOrder, movements: List[Movement]) -> Dict[int, str]:
        names = {line.odoo_product_id: line.name for line in order.lines if line.odoo_product_id}
        for m in movements:
            if m.product_id and m.product_name:
                names[m.product_id] = m.product_name
        return names

    def _choose_picking(
        self,
        order_ref: str,
        pickings: Sequence[PickingSummary],
        movements: List[Movement],
        prepared: Dict[int, float],
        product_names: Dict[int, str],
    ) -> PickingSummary:
        remaining = remaining_by_product(movements)
        try:
            check_remaining_capacity(prepared, remaining, product_names)
        except OverAllocationError:
            pending = select_pending_picking(pickings, movements, prepared)
            if pending is None:
                raise
            logger.info(
                f"Prepared quantities for {order_ref} are already recorded on picking "
                f"{pending.name}, validating it again",
                extra={"picking_id": pending.id},
            )
            return pending

        picking = select_push_picking(pickings, movements, prepared)
        if picking is None:
            raise NoOpenFulfillmentError(
                order_ref,
                reason="no open delivery has open demand for the prepared products",
                details={"products": sorted(prepared)},
            )
        return picking

    def _write_plan(self, plan: AllocationPlan, movements: List[Movement]) -> None:
        by_id = {m.move_id: m for m in movements}
        source = self.reader.done_source
        for line in plan.lines:
            movement = by_id[line.move_id]
            source.write_done(self.client, movement, _round(line.new_done))
            logger.info(
                f"Move {line.move_id}: done {line.current_done:g} -> {line.new_done:g}",
                extra={"picking_id": plan.picking_id, "product_id": line.product_id},
            )

    def push_prepared(
        self,
        db: Session,
        order_id: int,
        prepared_by_product: Mapping[int, float],
        create_backorder: bool,
    ) -> PushResult:
        """
        Push prepared quantities onto an open picking and validate it.

        Quantities the target picking cannot absorb are reported in
        PushResult.unplaced; the picking's remainder is then kept as a
        backorder whatever create_backorder says.

        Raises:
            NotFoundError: unknown local order
            NothingToPushError: no positive prepared quantity, or nothing to write
            NoOpenFulfillmentError: order not linked, not confirmed, or no open
                picking with demand for the prepared products
            OverAllocationError: a prepared quantity exceeds its remaining quantity
            ValidationFailedError: Odoo refused the validation
        """
        order = self._load_order(db, order_id)
        order_ref = order.odoo_name or order.external_order_id

        prepared = {int(pid): float(q) for pid, q in prepared_by_product.items() if q and float(q) > 0}
        if not prepared:
            raise NothingToPushError(order_ref)
        if not order.is_linked:
            raise NoOpenFulfillmentError(order_ref, reason="order is not linked to Odoo")

        header = self._read_header(order)
        pickings = self.reader.resolve_pickings(header)
        if select_open_picking(pickings) is None:
            raise NoOpenFulfillmentError(
                order_ref,
                remote_state=header.state,
                not_confirmed=header.state in UNCONFIRMED_SALE_STATES,
                details={"pickings": [{"id": p.id, "state": p.state} for p in pickings]},
            )

        movements = self.reader.read_movements([p.id for p in pickings])
        picking = self._choose_picking(
            order_ref, pickings, movements, prepared, self._product_names(order, movements)
        )
        push = compute_push_quantities(prepared, movements, picking.id)

        try:
            self.reader.assign_picking(picking.id)
        except OdooRPCError as e:
            logger.warning(
                f"action_assign on picking {picking.name} failed, continuing: {e.remote_message}",
                extra={"picking_id": picking.id},
            )

        picking_moves = self.reader.read_movements([picking.id])
        plan = plan_allocation(picking.id, {pid: q for pid, q in push.items() if q > 0}, picking_moves)

        already_done = done_by_product(picking_moves, picking.id)
        if plan.is_noop and not any(already_done.get(pid, 0.0) > EPSILON for pid in prepared):
            # Validating a picking that holds none of the prepared goods would ship the wrong demand
            raise NothingToPushError(order_ref, details={"picking_id": picking.id})

        unplaced = {pid: _round(alloc.shortfall) for pid, alloc in plan.products.items() if alloc.shortfall > EPSILON}
        for product_id, qty in unplaced.items():
            alloc = plan.products[product_id]
            logger.warning(
                f"{alloc.product_name}: {qty:g} of {alloc.requested:g} "
                f"could not be placed on picking {picking.name}",
                extra={"picking_id": picking.id, "product_id": product_id},
            )
        if unplaced and not create_backorder:
            logger.warning(
                f"Keeping the remainder of picking {picking.name} as a backorder: "
                "prepared quantities were left unplaced",
                extra={"picking_id": picking.id, "unplaced": unplaced},
            )
            create_backorder = True

        self._write_plan(plan, picking_moves)
        logger.info(
            f"Pushed {plan.total_allocated:g} unit(s) onto picking {picking.name} for {order_ref}"
            + (" (no change)" if plan.is_noop else ""),
            extra={"order_id": order.id, "picking_id": picking.id},
        )

        validation = self.validator.validate(picking.id, create_backorder)
        return PushResult(
            order_id=order.id,
            picking_id=picking.id,
            picking_name=picking.name,
            pushed={pid: _round(a.allocated) for pid, a in plan.products.items() if a.allocated > EPSILON},
            plan=plan,
            validation=validation,
            unplaced=unplaced,
        )
