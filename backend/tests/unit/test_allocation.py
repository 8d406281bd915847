"""
Unit Tests for the Allocation & Push Engine

Pure planning helpers first, then the engine against the fake Odoo with a
two-delivery order: product P demanded 10 on an open delivery and 5 on a
delivery that is already done.
"""
import pytest

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.core.status_config import ValidationState
from pickbridge.exceptions import (
    NoOpenFulfillmentError,
    NothingToPushError,
    NotFoundError,
    OverAllocationError,
)
from pickbridge.schemas.fulfillment import Movement
from pickbridge.schemas.odoo import PickingSummary
from pickbridge.services.allocation import (
    AllocationEngine,
    check_remaining_capacity,
    compute_push_quantities,
    plan_allocation,
    select_open_picking,
    select_pending_picking,
    select_push_picking,
)
from pickbridge.services.odoo_reader import OdooFulfillmentReader
from tests.factories import create_test_line, create_test_order


def _move(move_id, product_id, demanded, done=0.0, picking_id=1, state="assigned"):
    return Movement(
        move_id=move_id, picking_id=picking_id, product_id=product_id,
        product_name="P", demanded=demanded, done=done, state=state,
    )


# ============================================================================
# Pure helpers
# ============================================================================

class TestSelectOpenPicking:

    def test_highest_rank_wins(self):
        pickings = [
            PickingSummary(id=3, state="waiting"),
            PickingSummary(id=4, state="assigned"),
            PickingSummary(id=2, state="done"),
        ]
        assert select_open_picking(pickings).id == 4

    def test_lowest_id_breaks_ties(self):
        pickings = [PickingSummary(id=9, state="assigned"), PickingSummary(id=5, state="assigned")]
        assert select_open_picking(pickings).id == 5

    def test_none_when_all_closed(self):
        pickings = [PickingSummary(id=1, state="done"), PickingSummary(id=2, state="cancel")]
        assert select_open_picking(pickings) is None


class TestSelectPushPicking:

    def test_picking_without_capacity_is_skipped(self):
        # First delivery fully done but not validated yet, second untouched
        pickings = [PickingSummary(id=7, state="assigned"), PickingSummary(id=8, state="assigned")]
        moves = [_move(1, 7, 5, done=5, picking_id=7), _move(2, 7, 10, picking_id=8)]
        assert select_push_picking(pickings, moves, {7: 10}).id == 8

    def test_largest_coverage_beats_rank(self):
        pickings = [PickingSummary(id=1, state="assigned"), PickingSummary(id=2, state="confirmed")]
        moves = [_move(1, 7, 2, picking_id=1), _move(2, 7, 6, picking_id=2)]
        assert select_push_picking(pickings, moves, {7: 5}).id == 2

    def test_equal_coverage_falls_back_to_rank(self):
        pickings = [PickingSummary(id=1, state="confirmed"), PickingSummary(id=2, state="assigned")]
        moves = [_move(1, 7, 5, picking_id=1), _move(2, 7, 5, picking_id=2)]
        assert select_push_picking(pickings, moves, {7: 5}).id == 2

    def test_none_without_open_demand(self):
        pickings = [PickingSummary(id=1, state="assigned")]
        moves = [_move(1, 7, 5, done=5, picking_id=1)]
        assert select_push_picking(pickings, moves, {7: 1}) is None

    def test_pending_picking_holds_exactly_the_prepared_quantities(self):
        pickings = [PickingSummary(id=1, state="assigned"), PickingSummary(id=2, state="assigned")]
        moves = [_move(1, 7, 5, done=3, picking_id=1), _move(2, 7, 10, done=10, picking_id=2)]
        assert select_pending_picking(pickings, moves, {7: 10}).id == 2
        assert select_pending_picking(pickings, moves, {7: 4}) is None


class TestPushQuantities:

    def test_subtracts_done_on_target_picking_only(self):
        moves = [_move(1, 7, 10, done=3, picking_id=1), _move(2, 7, 5, done=5, picking_id=2)]
        assert compute_push_quantities({7: 8}, moves, picking_id=1) == {7: 5.0}

    def test_floors_at_zero(self):
        moves = [_move(1, 7, 10, done=6)]
        assert compute_push_quantities({7: 4}, moves, picking_id=1) == {7: 0.0}

    def test_capacity_check_cites_both_quantities(self):
        with pytest.raises(OverAllocationError) as exc:
            check_remaining_capacity({7: 12}, {7: 10}, {7: "Mug"})
        assert "12 > 10" in exc.value.message
        assert exc.value.details["product"] == "Mug"
        assert exc.value.details["requested"] == 12
        assert exc.value.error_code == "OVER_ALLOCATION"

    def test_capacity_check_unknown_product_has_nothing_left(self):
        with pytest.raises(OverAllocationError):
            check_remaining_capacity({99: 1}, {7: 10})

    def test_capacity_check_tolerates_rounding(self):
        check_remaining_capacity({7: 10.0000001}, {7: 10.0})


class TestPlanAllocation:

    def test_greedy_in_remote_order(self):
        moves = [_move(1, 7, 4), _move(2, 7, 6), _move(3, 8, 2)]
        plan = plan_allocation(1, {7: 7}, moves)
        assert [(line.move_id, line.taken) for line in plan.lines] == [(1, 4.0), (2, 3.0)]
        assert plan.total_allocated == 7.0
        assert not plan.has_shortfall

    def test_never_exceeds_capacity(self):
        moves = [_move(1, 7, 4, done=1)]
        plan = plan_allocation(1, {7: 10}, moves)
        assert plan.lines[0].taken == 3.0
        assert plan.lines[0].new_done == 4.0
        assert plan.products[7].shortfall == 7.0
        assert plan.has_shortfall

    def test_moves_of_other_pickings_are_untouched(self):
        moves = [_move(1, 7, 4, picking_id=2), _move(2, 7, 4, picking_id=1)]
        plan = plan_allocation(1, {7: 4}, moves)
        assert [line.move_id for line in plan.lines] == [2]

    def test_second_run_with_same_input_is_a_noop(self):
        moves = [_move(1, 7, 10)]
        first = plan_allocation(1, compute_push_quantities({7: 4}, moves, 1), moves)
        moves[0].done = first.lines[0].new_done

        push = compute_push_quantities({7: 4}, moves, 1)
        second = plan_allocation(1, {pid: q for pid, q in push.items() if q > 0}, moves)
        assert second.is_noop


# ============================================================================
# Engine
# ============================================================================

@pytest.fixture
def two_deliveries(fake_odoo, db_session):
    """P demanded 10 (open, done 0) and 5 (done 5) on two deliveries of S00042."""
    product = fake_odoo.add_product("Widget P")
    so_id = fake_odoo.add_sale_order("S00042", [(product, 15)], create_picking=False)
    open_picking = fake_odoo.add_picking(so_id, [(product, 10)], state="assigned")
    fake_odoo.add_picking(so_id, [(product, 5, 5)], state="done")

    order = create_test_order(db_session, odoo_name="S00042", odoo_sale_order_id=so_id)
    db_session.commit()
    return order, product, open_picking


@pytest.fixture
def engine(fake_odoo):
    config = FulfillmentConfig()
    return AllocationEngine(OdooFulfillmentReader(fake_odoo, config), config=config)


class TestAllocationEngine:

    def test_remaining_counts_only_open_demand(self, engine, two_deliveries):
        order, product, _ = two_deliveries
        assert engine.reader.get_remaining("S00042") == {product: 10.0}

    def test_push_over_remaining_is_refused(self, engine, two_deliveries, db_session, fake_odoo):
        order, product, open_picking = two_deliveries
        with pytest.raises(OverAllocationError) as exc:
            engine.push_prepared(db_session, order.id, {product: 12}, create_backorder=True)
        assert "12 > 10" in exc.value.message
        # Nothing written, nothing validated
        assert fake_odoo.move_done(fake_odoo.moves_of(open_picking)[0]["id"]) == 0.0
        assert fake_odoo.called("stock.picking", "button_validate") == 0

    def test_push_lands_on_the_open_delivery(self, engine, two_deliveries, db_session, fake_odoo):
        order, product, open_picking = two_deliveries
        result = engine.push_prepared(db_session, order.id, {product: 10}, create_backorder=True)

        assert result.picking_id == open_picking
        assert result.pushed == {product: 10.0}
        assert [line.taken for line in result.plan.lines] == [10.0]
        assert result.validation.state == ValidationState.DONE
        assert fake_odoo.picking(open_picking)["state"] == "done"

    def test_partial_push_leaves_a_backorder(self, engine, two_deliveries, db_session, fake_odoo):
        order, product, open_picking = two_deliveries
        result = engine.push_prepared(db_session, order.id, {product: 4}, create_backorder=True)

        assert result.validation.state == ValidationState.PARTIALLY_DONE_BACKORDER
        assert len(result.validation.backorder_ids) == 1
        backorder = fake_odoo.picking(result.validation.backorder_ids[0])
        assert backorder["backorder_id"] == open_picking
        assert engine.reader.get_remaining("S00042") == {product: 6.0}

    def test_action_assign_failure_is_not_fatal(self, engine, two_deliveries, db_session, fake_odoo):
        from pickbridge.exceptions import OdooRPCError

        order, product, _ = two_deliveries
        fake_odoo.failures[("stock.picking", "action_assign")] = OdooRPCError("Nothing to check the availability for")
        result = engine.push_prepared(db_session, order.id, {product: 10}, create_backorder=True)
        assert result.validation.succeeded

    def test_nothing_prepared(self, engine, two_deliveries, db_session):
        order, product, _ = two_deliveries
        with pytest.raises(NothingToPushError):
            engine.push_prepared(db_session, order.id, {product: 0}, create_backorder=True)

    def test_unknown_order(self, engine, db_session):
        with pytest.raises(NotFoundError):
            engine.push_prepared(db_session, 404, {1: 1}, create_backorder=True)

    def test_unconfirmed_order_has_no_open_delivery(self, engine, fake_odoo, db_session):
        product = fake_odoo.add_product("Draft thing")
        so_id = fake_odoo.add_sale_order("S00077", [(product, 2)], state="draft")
        order = create_test_order(db_session, odoo_name="S00077", odoo_sale_order_id=so_id)
        db_session.commit()

        with pytest.raises(NoOpenFulfillmentError) as exc:
            engine.push_prepared(db_session, order.id, {product: 2}, create_backorder=True)
        assert exc.value.details["not_confirmed"] is True
        assert "Confirm it first" in exc.value.message

    def test_auto_confirm_on_push(self, fake_odoo, db_session):
        config = FulfillmentConfig(auto_confirm_on_push=True)
        engine = AllocationEngine(OdooFulfillmentReader(fake_odoo, config), config=config)
        product = fake_odoo.add_product("Draft thing")
        so_id = fake_odoo.add_sale_order("S00078", [(product, 2)], state="sent")
        order = create_test_order(db_session, odoo_name="S00078", odoo_sale_order_id=so_id)
        db_session.commit()

        result = engine.push_prepared(db_session, order.id, {product: 2}, create_backorder=True)
        assert fake_odoo.called("sale.order", "action_confirm") == 1
        assert result.validation.state == ValidationState.DONE

    def test_unlinked_order(self, engine, db_session):
        order = create_test_order(db_session, odoo_name="S00090")
        order.odoo_sale_order_id = None
        db_session.commit()
        create_test_line(db_session, order, odoo_product_id=7, quantity=1)

        with pytest.raises(NoOpenFulfillmentError):
            engine.push_prepared(db_session, order.id, {7: 1}, create_backorder=True)


@pytest.fixture
def two_open_deliveries(fake_odoo, db_session):
    """P on two assigned deliveries of S00043: 5 demanded / 5 done, then 10 demanded / 0 done."""
    product = fake_odoo.add_product("Widget P")
    so_id = fake_odoo.add_sale_order("S00043", [(product, 15)], create_picking=False)
    first = fake_odoo.add_picking(so_id, [(product, 5, 5)], state="assigned")
    second = fake_odoo.add_picking(so_id, [(product, 10)], state="assigned")

    order = create_test_order(db_session, odoo_name="S00043", odoo_sale_order_id=so_id)
    db_session.commit()
    return order, product, first, second


class TestTwoOpenDeliveries:

    def test_remaining_ignores_done_quantities_on_open_delivery(self, engine, two_open_deliveries):
        order, product, _, _ = two_open_deliveries
        assert engine.reader.get_remaining("S00043") == {product: 10.0}

    def test_prepared_total_over_remaining_is_refused(self, engine, two_open_deliveries, db_session, fake_odoo):
        order, product, first, second = two_open_deliveries
        with pytest.raises(OverAllocationError) as exc:
            engine.push_prepared(db_session, order.id, {product: 12}, create_backorder=True)

        assert "12 > 10" in exc.value.message
        assert exc.value.details["requested"] == 12
        assert exc.value.details["remaining"] == 10
        assert fake_odoo.called("stock.move", "write") == 0
        assert fake_odoo.called("stock.picking", "button_validate") == 0

    def test_push_lands_on_the_delivery_with_capacity(self, engine, two_open_deliveries, db_session, fake_odoo):
        order, product, first, second = two_open_deliveries
        result = engine.push_prepared(db_session, order.id, {product: 10}, create_backorder=True)

        assert result.picking_id == second
        assert result.pushed == {product: 10.0}
        assert result.unplaced == {}
        assert fake_odoo.move_done(fake_odoo.moves_of(second)[0]["id"]) == 10.0
        assert fake_odoo.picking(second)["state"] == "done"
        # The other delivery is neither written nor validated
        assert fake_odoo.move_done(fake_odoo.moves_of(first)[0]["id"]) == 5.0
        assert fake_odoo.picking(first)["state"] == "assigned"

    def test_rerun_after_failed_validation_validates_the_same_delivery(
        self, engine, two_open_deliveries, db_session, fake_odoo
    ):
        from pickbridge.exceptions import OdooRPCError, ValidationFailedError

        order, product, first, second = two_open_deliveries
        fake_odoo.fail_once[("stock.picking", "button_validate")] = OdooRPCError("Warehouse is locked")
        with pytest.raises(ValidationFailedError):
            engine.push_prepared(db_session, order.id, {product: 10}, create_backorder=True)

        result = engine.push_prepared(db_session, order.id, {product: 10}, create_backorder=True)

        assert result.picking_id == second
        assert result.plan.is_noop
        assert fake_odoo.move_done(fake_odoo.moves_of(second)[0]["id"]) == 10.0
        assert fake_odoo.picking(second)["state"] == "done"


class TestUnplacedQuantities:

    @pytest.fixture
    def split_demand(self, fake_odoo, db_session):
        """P on two assigned deliveries (5 and 10); the second also carries R 5."""
        p = fake_odoo.add_product("Widget P")
        r = fake_odoo.add_product("Widget R")
        so_id = fake_odoo.add_sale_order("S00044", [(p, 15), (r, 5)], create_picking=False)
        small = fake_odoo.add_picking(so_id, [(p, 5)], state="assigned")
        large = fake_odoo.add_picking(so_id, [(p, 10), (r, 5)], state="assigned")
        order = create_test_order(db_session, odoo_name="S00044", odoo_sale_order_id=so_id)
        db_session.commit()
        return order, p, r, small, large

    def test_unplaced_quantity_keeps_the_backorder(self, engine, split_demand, db_session, fake_odoo):
        order, p, r, small, large = split_demand
        result = engine.push_prepared(db_session, order.id, {p: 12}, create_backorder=False)

        assert result.picking_id == large
        assert result.pushed == {p: 10.0}
        assert result.unplaced == {p: 2.0}
        # Dropping the remainder was overridden: R stays open on a backorder
        assert result.validation.state == ValidationState.PARTIALLY_DONE_BACKORDER
        assert fake_odoo.called("stock.backorder.confirmation", "process") == 1
        assert fake_odoo.called("stock.backorder.confirmation", "process_cancel_backorder") == 0
        backorder_moves = fake_odoo.moves_of(result.validation.backorder_ids[0])
        assert [(m["product_id"], m["product_uom_qty"]) for m in backorder_moves] == [(r, 5.0)]
        assert fake_odoo.move_done(fake_odoo.moves_of(small)[0]["id"]) == 0.0

    def test_fully_placed_push_follows_the_requested_policy(self, engine, split_demand, db_session, fake_odoo):
        order, p, r, small, large = split_demand
        result = engine.push_prepared(db_session, order.id, {p: 10}, create_backorder=False)

        assert result.unplaced == {}
        assert result.validation.state == ValidationState.DONE
        assert fake_odoo.called("stock.backorder.confirmation", "process_cancel_backorder") == 1
