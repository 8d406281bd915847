"""
Unit Tests for the picking validation state machine

Drives PickingValidator against the fake Odoo: plain success, the
immediate-transfer wizard, the backorder wizard with both policies, the
forced backorder retry on an ambiguous-quantity error, and failures.
"""
import pytest

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.core.status_config import (
    ValidationState,
    get_allowed_validation_transitions,
    is_valid_validation_transition,
)
from pickbridge.exceptions import OdooRPCError, RemoteUnavailableError, ValidationFailedError
from pickbridge.schemas.fulfillment import (
    NeedsBackorderConfirmation,
    NeedsImmediateTransfer,
    ValidateSuccess,
)
from pickbridge.services.picking_validation import (
    PickingValidator,
    parse_validate_response,
    wizard_context,
)
from tests.fake_odoo import FakeOdoo


def _picking(odoo, moves):
    product = odoo.add_product("Mug")
    so_id = odoo.add_sale_order("S00100", [(product, 1)], create_picking=False)
    return odoo.add_picking(so_id, [(product, *m) for m in moves], state="assigned")


class TestParseValidateResponse:

    def test_true_is_success(self):
        assert isinstance(parse_validate_response(True), ValidateSuccess)

    def test_immediate_transfer_wizard(self):
        response = parse_validate_response(
            {"res_model": "stock.immediate.transfer", "res_id": 12, "context": {"a": 1}}
        )
        assert response == NeedsImmediateTransfer(wizard_id=12, context={"a": 1})

    def test_backorder_wizard_without_id(self):
        response = parse_validate_response({"res_model": "stock.backorder.confirmation", "res_id": False})
        assert response == NeedsBackorderConfirmation(wizard_id=None)

    def test_unrelated_action_is_success(self):
        assert isinstance(parse_validate_response({"res_model": "ir.actions.report"}), ValidateSuccess)

    def test_wizard_context_points_at_picking(self):
        context = wizard_context(7, {"lang": "fr_FR"})
        assert context["active_ids"] == [7]
        assert context["button_validate_picking_ids"] == [7]
        assert context["lang"] == "fr_FR"


class TestTransitions:

    def test_terminal_states_have_no_exit(self):
        for state in (ValidationState.DONE, ValidationState.PARTIALLY_DONE_BACKORDER, ValidationState.FAILED):
            assert get_allowed_validation_transitions(state) == []

    def test_assigned_only_moves_to_validating(self):
        assert is_valid_validation_transition(ValidationState.ASSIGNED, ValidationState.VALIDATING)
        assert not is_valid_validation_transition(ValidationState.ASSIGNED, ValidationState.DONE)


class TestPickingValidator:

    def test_fully_done_picking(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(3, 3)])
        result = PickingValidator(odoo).validate(picking_id, create_backorder=True)

        assert result.state == ValidationState.DONE
        assert result.steps == ["button_validate"]
        assert result.backorder_ids == []
        assert odoo.picking(picking_id)["state"] == "done"

    @pytest.mark.parametrize("wizard_res_id", [True, False])
    def test_immediate_transfer(self, wizard_res_id):
        odoo = FakeOdoo(wizard_res_id=wizard_res_id)
        picking_id = _picking(odoo, [(3, 0)])
        result = PickingValidator(odoo).validate(picking_id, create_backorder=True)

        assert result.state == ValidationState.DONE
        assert result.steps == ["button_validate", "immediate_transfer"]
        assert odoo.called("stock.immediate.transfer", "create") == (0 if wizard_res_id else 1)

    @pytest.mark.parametrize("wizard_res_id", [True, False])
    def test_backorder_kept(self, wizard_res_id):
        odoo = FakeOdoo(wizard_res_id=wizard_res_id)
        picking_id = _picking(odoo, [(10, 4)])
        result = PickingValidator(odoo).validate(picking_id, create_backorder=True)

        assert result.state == ValidationState.PARTIALLY_DONE_BACKORDER
        assert result.steps == ["button_validate", "backorder"]
        assert len(result.backorder_ids) == 1
        backorder_moves = odoo.moves_of(result.backorder_ids[0])
        assert [m["product_uom_qty"] for m in backorder_moves] == [6.0]

    def test_backorder_dropped(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 4), (5, 0)])
        result = PickingValidator(odoo).validate(picking_id, create_backorder=False)

        assert result.state == ValidationState.DONE
        assert result.steps == ["button_validate", "cancel_backorder"]
        assert odoo.called("stock.backorder.confirmation", "process_cancel_backorder") == 1
        assert odoo.search_read("stock.picking", [["backorder_id", "=", picking_id]], ["id"]) == []

    def test_ambiguous_quantity_error_forces_backorder(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 4)])
        odoo.failures[("stock.picking", "button_validate")] = OdooRPCError(
            "You cannot validate a transfer if no quantities are reserved nor done."
        )
        result = PickingValidator(odoo).validate(picking_id, create_backorder=True)

        assert result.forced_backorder is True
        assert result.state == ValidationState.PARTIALLY_DONE_BACKORDER
        assert odoo.called("stock.backorder.confirmation", "create") == 1
        # The forced confirmation finished the picking; no second validate
        assert odoo.called("stock.picking", "button_validate") == 1

    def test_forced_backorder_then_validate_is_retried_once(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 10)])
        odoo.fail_once[("stock.picking", "button_validate")] = OdooRPCError(
            "You cannot validate a transfer if no quantities are reserved nor done."
        )
        # The confirmation is accepted but leaves the picking open
        odoo._backorder_process = lambda call_args, kwargs: True

        result = PickingValidator(odoo).validate(picking_id, create_backorder=True)

        assert result.forced_backorder is True
        assert result.state == ValidationState.DONE
        assert result.steps == ["button_validate", "backorder", "button_validate"]
        assert odoo.called("stock.picking", "button_validate") == 2
        assert odoo.picking(picking_id)["state"] == "done"

    def test_failing_retry_after_forced_backorder_fails(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 4)])
        message = "You cannot validate a transfer if no quantities are reserved nor done."
        odoo.failures[("stock.picking", "button_validate")] = OdooRPCError(message)
        odoo._backorder_process = lambda call_args, kwargs: True

        with pytest.raises(ValidationFailedError) as exc:
            PickingValidator(odoo).validate(picking_id, create_backorder=True)

        assert exc.value.remote_message == message
        assert exc.value.details["steps"] == ["button_validate", "backorder", "button_validate"]
        assert exc.value.details["forced_backorder"] is True
        assert odoo.called("stock.picking", "button_validate") == 2
        assert odoo.picking(picking_id)["state"] == "assigned"

    def test_ambiguous_patterns_are_configurable(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 4)])
        odoo.failures[("stock.picking", "button_validate")] = OdooRPCError(
            "You cannot validate a transfer if no quantities are reserved nor done."
        )
        config = FulfillmentConfig(ambiguous_quantity_patterns=("lot number",))

        with pytest.raises(ValidationFailedError):
            PickingValidator(odoo, config).validate(picking_id, create_backorder=True)

    def test_other_remote_error_fails(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 10)])
        odoo.failures[("stock.picking", "button_validate")] = OdooRPCError("Warehouse is locked")

        with pytest.raises(ValidationFailedError) as exc:
            PickingValidator(odoo).validate(picking_id, create_backorder=True)
        assert exc.value.remote_message == "Warehouse is locked"
        assert exc.value.details["picking_id"] == picking_id
        assert odoo.picking(picking_id)["state"] == "assigned"

    def test_wizard_error_fails(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 4)])
        odoo.failures[("stock.backorder.confirmation", "process")] = OdooRPCError("Lot required")

        with pytest.raises(ValidationFailedError) as exc:
            PickingValidator(odoo).validate(picking_id, create_backorder=True)
        assert exc.value.details["steps"] == ["button_validate", "backorder"]

    def test_transport_error_propagates_unchanged(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 10)])
        odoo.failures[("stock.picking", "button_validate")] = RemoteUnavailableError("timed out", timeout=5)

        with pytest.raises(RemoteUnavailableError):
            PickingValidator(odoo).validate(picking_id, create_backorder=True)

    def test_picking_not_done_afterwards_fails(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 10)])
        # Odoo answers True but leaves the picking open
        odoo._button_validate = lambda call_args, kwargs: True

        with pytest.raises(ValidationFailedError) as exc:
            PickingValidator(odoo).validate(picking_id, create_backorder=True)
        assert "still 'assigned'" in exc.value.remote_message

    def test_endless_wizard_chain_is_bounded(self):
        odoo = FakeOdoo()
        picking_id = _picking(odoo, [(10, 4)])
        odoo._backorder_process = lambda call_args, kwargs: {
            "res_model": "stock.backorder.confirmation", "res_id": 1, "context": {},
        }

        with pytest.raises(ValidationFailedError) as exc:
            PickingValidator(odoo, FulfillmentConfig(max_validation_steps=3)).validate(
                picking_id, create_backorder=True
            )
        assert "after 3 steps" in exc.value.remote_message
