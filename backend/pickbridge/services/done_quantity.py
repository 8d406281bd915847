"""
Fulfilled-quantity capability

Odoo versions disagree on where the "done" quantity of a stock move lives:
either an aggregate stock.move.quantity_done field, or the sum of the move's
stock.move.line records (qty_done, or quantity_done on some versions).
resolve_done_source() probes the schema once and returns the matching
implementation; callers never branch on field names themselves.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from pickbridge.exceptions import OdooRPCError
from pickbridge.integrations.odoo_client import OdooClient
from pickbridge.logging_config import get_logger
from pickbridge.schemas.fulfillment import Movement
from pickbridge.schemas.odoo import StockMoveLineRecord, StockMoveRecord, m2o_id, m2o_name, parse_record
from pickbridge.services.remaining import sum_done_from_move_lines

logger = get_logger(__name__)

MOVE_MODEL = "stock.move"
MOVE_LINE_MODEL = "stock.move.line"


class DoneQuantitySource(ABC):
    """Reads and writes the done quantity of stock moves."""

    name: str = "abstract"
    # Extra stock.move fields to request when reading moves
    move_fields: Tuple[str, ...] = ()

    @abstractmethod
    def done_by_move(self, client: OdooClient, moves: Sequence[StockMoveRecord]) -> Dict[int, float]:
        """Done quantity per move id."""

    @abstractmethod
    def write_done(self, client: OdooClient, movement: Movement, new_done: float) -> None:
        """Set the done total of one move to new_done."""


class MoveLineDoneQuantity(DoneQuantitySource):
    """Done = sum of the move's stock.move.line done field."""

    name = "move_line"

    def __init__(self, line_field: str = "qty_done", chunk_size: int = 200):
        self.line_field = line_field
        self.chunk_size = chunk_size

    def _read_lines(self, client: OdooClient, line_ids: Sequence[int]) -> Dict[int, StockMoveLineRecord]:
        lines: Dict[int, StockMoveLineRecord] = {}
        ids = list(dict.fromkeys(line_ids))
        for start in range(0, len(ids), self.chunk_size):
            chunk = ids[start:start + self.chunk_size]
            rows = client.read(MOVE_LINE_MODEL, chunk, ["id", "move_id", "product_id", self.line_field])
            for row in rows:
                record = parse_record(StockMoveLineRecord, row)
                lines[record.id] = record
        return lines

    def done_by_move(self, client: OdooClient, moves: Sequence[StockMoveRecord]) -> Dict[int, float]:
        all_line_ids = [line_id for move in moves for line_id in move.move_line_ids]
        lines_by_id = self._read_lines(client, all_line_ids) if all_line_ids else {}
        return {
            move.id: sum_done_from_move_lines(
                move.move_line_ids, lines_by_id, m2o_id(move.product_id), self.line_field
            )
            for move in moves
        }

    def write_done(self, client: OdooClient, movement: Movement, new_done: float) -> None:
        if not movement.move_line_ids:
            values = {
                "move_id": movement.move_id,
                "picking_id": movement.picking_id,
                "product_id": movement.product_id,
                "product_uom_id": movement.uom_id,
                "location_id": movement.location_id,
                "location_dest_id": movement.location_dest_id,
                self.line_field: new_done,
            }
            line_id = client.create(MOVE_LINE_MODEL, {k: v for k, v in values.items() if v is not None})
            movement.move_line_ids.append(line_id)
            logger.info(
                f"Created move line {line_id} on move {movement.move_id} with {new_done:g} done",
                extra={"move_id": movement.move_id, "move_line_id": line_id},
            )
            return

        # First line carries whatever the other lines do not already hold
        lines = self._read_lines(client, movement.move_line_ids)
        first_id, other_ids = movement.move_line_ids[0], movement.move_line_ids[1:]
        others_done = sum(lines[i].done for i in other_ids if i in lines)
        client.write(MOVE_LINE_MODEL, [first_id], {self.line_field: max(new_done - others_done, 0.0)})


class MoveFieldDoneQuantity(DoneQuantitySource):
    """Done = stock.move.quantity_done, written directly."""

    name = "move_field"
    move_fields = ("quantity_done",)

    def __init__(self, fallback: Optional[MoveLineDoneQuantity] = None, chunk_size: int = 200):
        self._fallback = fallback
        self.chunk_size = chunk_size

    def done_by_move(self, client: OdooClient, moves: Sequence[StockMoveRecord]) -> Dict[int, float]:
        return {move.id: float(move.quantity_done or 0.0) for move in moves}

    def _line_writer(self, client: OdooClient) -> MoveLineDoneQuantity:
        if self._fallback is None:
            line_field = "qty_done" if client.has_field(MOVE_LINE_MODEL, "qty_done") else "quantity_done"
            self._fallback = MoveLineDoneQuantity(line_field, chunk_size=self.chunk_size)
        return self._fallback

    def write_done(self, client: OdooClient, movement: Movement, new_done: float) -> None:
        try:
            client.write(MOVE_MODEL, [movement.move_id], {"quantity_done": new_done})
        except OdooRPCError as e:
            logger.warning(
                f"Odoo rejected quantity_done on move {movement.move_id}, writing move lines instead: "
                f"{e.remote_message}",
                extra={"move_id": movement.move_id},
            )
            self._line_writer(client).write_done(client, movement, new_done)


def resolve_done_source(client: OdooClient, chunk_size: int = 200) -> DoneQuantitySource:
    """Probe the remote schema once and pick the matching implementation."""
    if client.has_field(MOVE_MODEL, "quantity_done"):
        source: DoneQuantitySource = MoveFieldDoneQuantity(chunk_size=chunk_size)
    else:
        line_field = "qty_done" if client.has_field(MOVE_LINE_MODEL, "qty_done") else "quantity_done"
        source = MoveLineDoneQuantity(line_field, chunk_size=chunk_size)
    logger.info(f"Done quantities read through {source.name}")
    return source


def movement_from_record(record: StockMoveRecord, done: float) -> Movement:
    """Build the in-memory Movement for one stock.move."""
    return Movement(
        move_id=record.id,
        picking_id=m2o_id(record.picking_id),
        product_id=m2o_id(record.product_id),
        product_name=m2o_name(record.product_id) or "",
        demanded=float(record.product_uom_qty or 0.0),
        done=done,
        state=record.state,
        move_line_ids=list(record.move_line_ids),
        uom_id=m2o_id(record.product_uom),
        location_id=m2o_id(record.location_id),
        location_dest_id=m2o_id(record.location_dest_id),
    )


def movements_from_records(
    client: OdooClient,
    source: DoneQuantitySource,
    records: List[StockMoveRecord],
) -> List[Movement]:
    done = source.done_by_move(client, records)
    return [movement_from_record(r, done.get(r.id, 0.0)) for r in records]
