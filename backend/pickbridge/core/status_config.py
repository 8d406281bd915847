"""Status Configuration

Status vocabularies mirrored from Odoo for sale orders, pickings and stock
moves, plus the precedence used to collapse several pickings into a single
delivery state per order.
"""
from enum import Enum
from typing import Dict, FrozenSet, List


# =============================================================================
# Sale Order Status (sale.order.state)
# =============================================================================

class SaleOrderState(str, Enum):
    """Valid state values for Odoo sale orders"""
    DRAFT = "draft"
    SENT = "sent"
    SALE = "sale"
    DONE = "done"
    CANCEL = "cancel"


# Orders that have not produced pickings yet
UNCONFIRMED_SALE_STATES: FrozenSet[str] = frozenset({
    SaleOrderState.DRAFT.value,
    SaleOrderState.SENT.value,
})

# Orders that can no longer be confirmed
NON_CONFIRMABLE_SALE_STATES: FrozenSet[str] = frozenset({
    SaleOrderState.SALE.value,
    SaleOrderState.DONE.value,
    SaleOrderState.CANCEL.value,
})


# =============================================================================
# Picking Status (stock.picking.state)
# =============================================================================

class PickingState(str, Enum):
    """Valid state values for Odoo pickings"""
    DRAFT = "draft"
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    DONE = "done"
    CANCEL = "cancel"


# Pickings that can no longer receive quantities
CLOSED_PICKING_STATES: FrozenSet[str] = frozenset({
    PickingState.DONE.value,
    PickingState.CANCEL.value,
})

# Precedence when several pickings describe one order (highest wins)
DELIVERY_STATE_RANK: Dict[str, int] = {
    PickingState.ASSIGNED.value: 40,
    PickingState.CONFIRMED.value: 30,
    PickingState.WAITING.value: 20,
    PickingState.DONE.value: 10,
    PickingState.DRAFT.value: 5,
    PickingState.CANCEL.value: 0,
}

# A "waiting" filter also shows pickings waiting on availability
DELIVERY_FILTER_ALIASES: Dict[str, FrozenSet[str]] = {
    PickingState.WAITING.value: frozenset({
        PickingState.WAITING.value,
        PickingState.CONFIRMED.value,
    }),
}


def is_open_picking_state(state: str) -> bool:
    """Check if a picking still accepts quantities"""
    return state not in CLOSED_PICKING_STATES


# =============================================================================
# Stock Move Status (stock.move.state)
# =============================================================================

class MoveState(str, Enum):
    """Stock move states that matter for remaining-quantity computation"""
    DRAFT = "draft"
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    PARTIALLY_AVAILABLE = "partially_available"
    ASSIGNED = "assigned"
    DONE = "done"
    CANCEL = "cancel"


# Moves that carry no open demand
SETTLED_MOVE_STATES: FrozenSet[str] = frozenset({
    MoveState.DONE.value,
    MoveState.CANCEL.value,
})


# =============================================================================
# Validation State Machine
# =============================================================================

class ValidationState(str, Enum):
    """States of one picking validation run"""
    ASSIGNED = "assigned"
    VALIDATING = "validating"
    DONE = "done"
    PARTIALLY_DONE_BACKORDER = "partially_done_backorder"
    FAILED = "failed"


VALIDATION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ValidationState.ASSIGNED: frozenset({ValidationState.VALIDATING}),
    ValidationState.VALIDATING: frozenset({
        ValidationState.DONE,
        ValidationState.PARTIALLY_DONE_BACKORDER,
        ValidationState.FAILED,
    }),
    ValidationState.DONE: frozenset(),  # Terminal state
    ValidationState.PARTIALLY_DONE_BACKORDER: frozenset(),  # Terminal state
    ValidationState.FAILED: frozenset(),  # Terminal state
}


def get_allowed_validation_transitions(current_state: str) -> List[str]:
    """Get list of allowed next states for a validation run"""
    return [s.value for s in VALIDATION_TRANSITIONS.get(current_state, frozenset())]


def is_valid_validation_transition(current_state: str, new_state: str) -> bool:
    """Check if a validation state transition is valid"""
    return new_state in VALIDATION_TRANSITIONS.get(current_state, frozenset())
