"""
Delivery-State Ranker

Collapses an order's pickings into one coarse delivery state.

Sources, in order: picking summaries embedded in the order's payload
snapshot, then odoo_pickings rows whose origin matches the order's Odoo name
or external reference. No data gives None, which is distinct from "cancel".
"""
import json
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from pickbridge.core.status_config import DELIVERY_FILTER_ALIASES, DELIVERY_STATE_RANK
from pickbridge.exceptions import NotFoundError
from pickbridge.logging_config import get_logger
from pickbridge.models import OdooPicking, SalesOrder

logger = get_logger(__name__)


def best_state(states: Iterable[Optional[str]]) -> Optional[str]:
    """Highest-ranked known state, or None when there is none."""
    best: Optional[str] = None
    for state in states:
        if state not in DELIVERY_STATE_RANK:
            continue
        if best is None or DELIVERY_STATE_RANK[state] > DELIVERY_STATE_RANK[best]:
            best = state
    return best


def states_from_payload(payload_json: Optional[str]) -> List[str]:
    """Picking states embedded in a stored order payload."""
    if not payload_json:
        return []
    try:
        payload = json.loads(payload_json)
    except ValueError:
        logger.warning("Stored order payload is not valid JSON, ignoring it")
        return []
    pickings = payload.get("pickings") if isinstance(payload, dict) else None
    if not isinstance(pickings, list):
        return []
    return [p["state"] for p in pickings if isinstance(p, dict) and p.get("state")]


def _pickings_by_origin(db: Session, refs: Sequence[str]) -> Dict[str, List[str]]:
    if not refs:
        return {}
    rows = (
        db.query(OdooPicking.origin, OdooPicking.state)
        .filter(OdooPicking.origin.in_(list(refs)))
        .all()
    )
    by_origin: Dict[str, List[str]] = {}
    for origin, state in rows:
        by_origin.setdefault(origin, []).append(state)
    return by_origin


def best_delivery_state(db: Session, order: SalesOrder) -> Optional[str]:
    """Delivery state of one order: payload first, local pickings as fallback."""
    state = best_state(states_from_payload(order.payload_json))
    if state is not None:
        return state
    by_origin = _pickings_by_origin(db, order.origin_refs)
    return best_state(s for ref in order.origin_refs for s in by_origin.get(ref, []))


def best_delivery_states(db: Session, orders: Sequence[SalesOrder]) -> Dict[int, Optional[str]]:
    """Bulk variant: one query covers every order that needs the fallback."""
    result: Dict[int, Optional[str]] = {}
    pending: List[SalesOrder] = []
    for order in orders:
        state = best_state(states_from_payload(order.payload_json))
        result[order.id] = state
        if state is None:
            pending.append(order)

    refs = sorted({ref for order in pending for ref in order.origin_refs})
    by_origin = _pickings_by_origin(db, refs)
    for order in pending:
        result[order.id] = best_state(s for ref in order.origin_refs for s in by_origin.get(ref, []))
    return result


def get_best_delivery_state(db: Session, order_id: int) -> Optional[str]:
    order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
    if not order:
        raise NotFoundError("Sales order", order_id)
    return best_delivery_state(db, order)


def matches_delivery_filter(state: Optional[str], target: Optional[str]) -> bool:
    """
    List filter on delivery state.

    An empty target matches everything; "waiting" also matches "confirmed";
    an unknown (None) state only matches an empty target.
    """
    if not target:
        return True
    if state is None:
        return False
    return state in DELIVERY_FILTER_ALIASES.get(target, frozenset({target}))
