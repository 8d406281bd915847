"""
Remaining-quantity calculator

Pure functions over Movement lists; no database or network access.
"""
from collections import defaultdict
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from pickbridge.schemas.fulfillment import Movement
from pickbridge.schemas.odoo import m2o_id


def remaining_by_product(movements: Iterable[Movement]) -> Dict[int, float]:
    """
    Open demand per product across all movements of an order.

    Each movement contributes max(demanded - done, 0); cancelled and done
    movements contribute 0. Movements without a product are ignored.
    Every product that appears gets a key, even when its remaining is 0.
    """
    remaining: Dict[int, float] = defaultdict(float)
    for movement in movements:
        if movement.product_id is None:
            continue
        remaining[movement.product_id] += movement.remaining
    return dict(remaining)


def demanded_and_done_by_product(movements: Iterable[Movement]) -> Dict[int, Dict[str, float]]:
    """Per-product demanded/done totals, as stored in an order snapshot's move_sum."""
    totals: Dict[int, Dict[str, float]] = {}
    for movement in movements:
        if movement.product_id is None:
            continue
        entry = totals.setdefault(movement.product_id, {"demanded": 0.0, "done": 0.0})
        entry["demanded"] += movement.demanded
        entry["done"] += movement.done
    return totals


def done_by_product(movements: Iterable[Movement], picking_id: Optional[int] = None) -> Dict[int, float]:
    """Done quantity per product, optionally restricted to one picking."""
    done: Dict[int, float] = defaultdict(float)
    for movement in movements:
        if movement.product_id is None:
            continue
        if picking_id is not None and movement.picking_id != picking_id:
            continue
        done[movement.product_id] += movement.done
    return dict(done)


def _line_value(line: Any, field: str) -> Any:
    if isinstance(line, Mapping):
        return line.get(field)
    return getattr(line, field, None)


def sum_done_from_move_lines(
    move_line_ids: Sequence[int],
    lines_by_id: Mapping[int, Any],
    product_id: Optional[int],
    field: str = "qty_done",
) -> float:
    """
    Sum the done field of a move's lines.

    Lines are records or dicts keyed by id. Lines belonging to another
    product are skipped; a missing or False value counts as 0.
    """
    total = 0.0
    for line_id in move_line_ids:
        line = lines_by_id.get(line_id)
        if line is None:
            continue
        line_product = m2o_id(_line_value(line, "product_id"))
        if product_id is not None and line_product is not None and line_product != product_id:
            continue
        value = _line_value(line, field)
        if value is None or value is False:
            continue
        total += float(value)
    return total
