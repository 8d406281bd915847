"""
Remote Fulfillment Reader

Reads sale orders, pickings and stock moves from Odoo and shapes them into
the snapshot and Movement types used by the rest of the engine.
"""
from typing import Any, Dict, List, Optional, Sequence, Union

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.exceptions import NotFoundError
from pickbridge.integrations.odoo_client import OdooClient
from pickbridge.logging_config import get_logger
from pickbridge.schemas.fulfillment import Movement
from pickbridge.schemas.odoo import (
    MoveQuantity,
    PartnerInfo,
    PickingSummary,
    SaleOrderHeader,
    SaleOrderLineRecord,
    SaleOrderSnapshot,
    StockMoveRecord,
    m2o_id,
    parse_record,
)
from pickbridge.services.done_quantity import (
    DoneQuantitySource,
    movements_from_records,
    resolve_done_source,
)
from pickbridge.services.remaining import demanded_and_done_by_product, remaining_by_product

logger = get_logger(__name__)

SALE_ORDER_FIELDS = [
    "id", "name", "state", "date_order",
    "partner_id", "partner_shipping_id",
    "picking_ids", "amount_total", "currency_id", "delivery_status",
]
PARTNER_FIELDS = ["name", "street", "street2", "zip", "city", "country_id", "phone", "email"]
LINE_FIELDS = ["id", "product_id", "product_uom_qty", "product_uom", "name"]
PICKING_FIELDS = [
    "id", "name", "origin", "state", "picking_type_id",
    "scheduled_date", "write_date", "location_id", "location_dest_id",
]
PICKING_LIST_FIELDS = ["name", "origin", "partner_id", "scheduled_date", "state", "write_date"]
MOVE_FIELDS = [
    "id", "picking_id", "product_id", "product_uom", "product_uom_qty",
    "move_line_ids", "state", "location_id", "location_dest_id",
]


def build_date_domain(
    field: str,
    states: Optional[Sequence[str]] = None,
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> List[Any]:
    """Odoo domain filtering on state and a date range."""
    domain: List[Any] = []
    if states:
        domain.append(["state", "in", list(states)])
    if since:
        domain.append([field, ">=", since])
    if until:
        domain.append([field, "<=", until])
    return domain


class OdooFulfillmentReader:
    """Read side of the Odoo integration."""

    def __init__(self, client: OdooClient, config: Optional[FulfillmentConfig] = None):
        self.client = client
        self.config = config or FulfillmentConfig()
        self._done_source: Optional[DoneQuantitySource] = None

    @property
    def done_source(self) -> DoneQuantitySource:
        """Fulfilled-quantity capability, probed once per reader."""
        if self._done_source is None:
            self._done_source = resolve_done_source(
                self.client, chunk_size=self.config.move_line_chunk_size
            )
        return self._done_source

    # ------------------------------------------------------------------
    # Sale orders
    # ------------------------------------------------------------------

    def list_sale_orders_minimal(
        self, domain: Sequence[Any], limit: int = 500, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """id/name pairs for batch import, oldest first."""
        return self.client.search_read(
            "sale.order", domain, ["id", "name"], limit=limit, offset=offset, order="id asc"
        )

    def find_sale_order(self, reference: Union[int, str]) -> SaleOrderHeader:
        """Look a sale order up by Odoo id or by name (S00042)."""
        ref = str(reference).strip()
        domain = [["id", "=", int(ref)]] if ref.isdigit() else [["name", "=", ref]]
        rows = self.client.search_read("sale.order", domain, SALE_ORDER_FIELDS, limit=1)
        if not rows:
            raise NotFoundError("Odoo sale order", ref)
        return parse_record(SaleOrderHeader, rows[0])

    def read_sale_order(self, sale_order_id: int) -> SaleOrderHeader:
        rows = self.client.read("sale.order", [sale_order_id], SALE_ORDER_FIELDS)
        if not rows:
            raise NotFoundError("Odoo sale order", sale_order_id)
        return parse_record(SaleOrderHeader, rows[0])

    def fetch_partner(self, partner_id: Optional[int]) -> Optional[PartnerInfo]:
        """Shipping partner with its country code resolved."""
        if not partner_id:
            return None
        rows = self.client.read("res.partner", [partner_id], PARTNER_FIELDS)
        if not rows:
            return None
        partner = parse_record(PartnerInfo, rows[0])
        country_id = m2o_id(partner.country_id)
        if country_id:
            countries = self.client.read("res.country", [country_id], ["code"])
            if countries and countries[0].get("code"):
                partner.country_code = countries[0]["code"]
        return partner

    def fetch_lines(self, sale_order_id: int) -> List[SaleOrderLineRecord]:
        rows = self.client.search_read(
            "sale.order.line",
            [["order_id", "=", sale_order_id], ["display_type", "=", False]],
            LINE_FIELDS,
            limit=self.config.line_limit,
        )
        return [parse_record(SaleOrderLineRecord, row) for row in rows]

    def fetch_stock(self, product_ids: Sequence[int]) -> Dict[int, float]:
        """Stock on hand per product."""
        ids = sorted({pid for pid in product_ids if pid})
        if not ids:
            return {}
        rows = self.client.read("product.product", ids, ["qty_available"])
        return {int(row["id"]): float(row.get("qty_available") or 0.0) for row in rows}

    def confirm_sale_order(self, sale_order_id: int) -> None:
        self.client.call_kw("sale.order", "action_confirm", [[sale_order_id]])

    def cancel_sale_order(self, sale_order_id: int) -> None:
        self.client.call_kw("sale.order", "action_cancel", [[sale_order_id]])

    # ------------------------------------------------------------------
    # Pickings & moves
    # ------------------------------------------------------------------

    def resolve_pickings(self, header: SaleOrderHeader) -> List[PickingSummary]:
        """picking_ids first; origin match on the order name as the fallback."""
        if header.picking_ids:
            rows = self.client.read("stock.picking", header.picking_ids, PICKING_FIELDS)
        else:
            rows = self.client.search_read(
                "stock.picking",
                [["origin", "=", header.name]],
                PICKING_FIELDS,
                limit=self.config.origin_picking_limit,
            )
            if rows:
                logger.info(
                    f"Sale order {header.name} has no picking_ids, matched {len(rows)} picking(s) by origin",
                    extra={"sale_order": header.name},
                )
        return [parse_record(PickingSummary, row) for row in rows]

    def list_pickings(
        self, domain: Sequence[Any], limit: int = 500, offset: int = 0
    ) -> List[PickingSummary]:
        rows = self.client.search_read(
            "stock.picking", domain, PICKING_LIST_FIELDS,
            limit=limit, offset=offset, order="scheduled_date desc",
        )
        return [parse_record(PickingSummary, row) for row in rows]

    def read_movements(self, picking_ids: Sequence[int]) -> List[Movement]:
        """Movements of the given pickings in remote order, with done resolved."""
        if not picking_ids:
            return []
        source = self.done_source
        rows = self.client.search_read(
            "stock.move",
            [["picking_id", "in", list(picking_ids)]],
            MOVE_FIELDS + list(source.move_fields),
            limit=self.config.move_limit,
        )
        records = [parse_record(StockMoveRecord, row) for row in rows]
        return movements_from_records(self.client, source, records)

    def assign_picking(self, picking_id: int) -> None:
        """Reserve stock on a picking (action_assign)."""
        self.client.call_kw("stock.picking", "action_assign", [[picking_id]])

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def fetch_sale_order(self, reference: Union[int, str]) -> SaleOrderSnapshot:
        """Header, shipping partner, lines, pickings and demanded/done aggregates."""
        header = self.find_sale_order(reference)
        partner = self.fetch_partner(header.shipping_partner_id)
        lines = self.fetch_lines(header.id)
        pickings = self.resolve_pickings(header)
        movements = self.read_movements([p.id for p in pickings])
        move_sum = {
            pid: MoveQuantity(**totals)
            for pid, totals in demanded_and_done_by_product(movements).items()
        }
        stock = self.fetch_stock([line.odoo_product_id for line in lines])
        logger.debug(
            f"Fetched {header.name}: {len(lines)} lines, {len(pickings)} pickings, {len(movements)} moves"
        )
        return SaleOrderSnapshot(
            so=header,
            partner=partner,
            lines=lines,
            pickings=pickings,
            move_sum=move_sum,
            stock_by_product=stock,
        )

    def get_remaining(self, reference: Union[int, str]) -> Dict[int, float]:
        """Open demand per product across all of the order's pickings."""
        header = self.find_sale_order(reference)
        pickings = self.resolve_pickings(header)
        return remaining_by_product(self.read_movements([p.id for p in pickings]))
