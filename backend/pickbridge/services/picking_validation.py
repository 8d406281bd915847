"""
Picking validation state machine

assigned -> validating -> done | partially_done_backorder | failed

button_validate answers either True or a wizard action. Wizard actions are
parsed into a tagged union and dispatched in a bounded loop, since processing
one wizard may return another (an immediate transfer followed by a backorder
confirmation). A validation error matching a known ambiguous-quantity
signature triggers one forced backorder confirmation, followed by a single
button_validate retry when the picking is still open afterwards; any other
remote error, or the retry failing, leaves the picking assigned and raises
ValidationFailedError.
"""
from typing import Any, Dict, List, Optional

from pickbridge.core.fulfillment_config import FulfillmentConfig
from pickbridge.core.status_config import (
    PickingState,
    ValidationState,
    is_valid_validation_transition,
)
from pickbridge.exceptions import InvalidStateError, OdooRPCError, ValidationFailedError
from pickbridge.integrations.odoo_client import OdooClient
from pickbridge.logging_config import get_logger
from pickbridge.schemas.fulfillment import (
    NeedsBackorderConfirmation,
    NeedsImmediateTransfer,
    ValidateResponse,
    ValidateSuccess,
    ValidationResult,
)

logger = get_logger(__name__)

PICKING_MODEL = "stock.picking"
IMMEDIATE_TRANSFER_MODEL = "stock.immediate.transfer"
BACKORDER_MODEL = "stock.backorder.confirmation"


def parse_validate_response(result: Any) -> ValidateResponse:
    """Turn a button_validate / wizard result into a typed response."""
    if not isinstance(result, dict):
        return ValidateSuccess()
    res_model = result.get("res_model")
    wizard_id = result.get("res_id") or None
    context = result.get("context") or {}
    if res_model == IMMEDIATE_TRANSFER_MODEL:
        return NeedsImmediateTransfer(wizard_id=wizard_id, context=context)
    if res_model == BACKORDER_MODEL:
        return NeedsBackorderConfirmation(wizard_id=wizard_id, context=context)
    # Other actions (reports, messages) do not block validation; the final
    # picking state is checked afterwards.
    logger.info(f"button_validate returned an action for {res_model}, treating as success")
    return ValidateSuccess()


def wizard_context(picking_id: int, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Context a confirmation wizard needs to find its picking."""
    context = dict(extra or {})
    context.update({
        "active_model": PICKING_MODEL,
        "active_ids": [picking_id],
        "active_id": picking_id,
        "button_validate_picking_ids": [picking_id],
    })
    return context


class _ValidationRun:
    """Mutable state of one validation attempt."""

    def __init__(self, picking_id: int):
        self.result = ValidationResult(picking_id=picking_id, state=ValidationState.ASSIGNED)

    @property
    def state(self) -> ValidationState:
        return self.result.state

    def transition(self, new_state: ValidationState) -> None:
        if not is_valid_validation_transition(self.state, new_state):
            raise InvalidStateError(
                f"Cannot move validation of picking {self.result.picking_id} "
                f"from {self.state.value} to {new_state.value}",
                current_state=self.state.value,
            )
        logger.debug(f"Picking {self.result.picking_id}: {self.state.value} -> {new_state.value}")
        self.result.state = new_state

    def step(self, label: str) -> None:
        self.result.steps.append(label)


class PickingValidator:
    """Drives stock.picking.button_validate to a final state."""

    def __init__(self, client: OdooClient, config: Optional[FulfillmentConfig] = None):
        self.client = client
        self.config = config or FulfillmentConfig()

    def validate(self, picking_id: int, create_backorder: bool) -> ValidationResult:
        """
        Validate one picking and apply the backorder policy.

        Args:
            picking_id: Odoo stock.picking id, expected in state assigned
            create_backorder: keep the unfulfilled remainder as a backorder
                picking (True) or drop it (False)

        Raises:
            ValidationFailedError: Odoo refused the validation
            RemoteUnavailableError: transport failure (propagated unchanged)
        """
        run = _ValidationRun(picking_id)
        run.transition(ValidationState.VALIDATING)
        run.step("button_validate")

        try:
            raw = self.client.call_kw(PICKING_MODEL, "button_validate", [[picking_id]])
        except OdooRPCError as e:
            if not self.config.is_ambiguous_quantity_error(e.remote_message):
                self._fail(run, e.remote_message)
            logger.warning(
                f"Picking {picking_id}: ambiguous quantity on validate, forcing a backorder confirmation",
                extra={"picking_id": picking_id, "remote_message": e.remote_message},
            )
            run.result.forced_backorder = True
            response: ValidateResponse = NeedsBackorderConfirmation(wizard_id=None)
        else:
            response = parse_validate_response(raw)

        try:
            backorder_processed = self._dispatch(run, response, create_backorder)
            if run.result.forced_backorder and self._picking_state(picking_id) != PickingState.DONE.value:
                logger.info(
                    f"Picking {picking_id}: still open after the forced backorder confirmation, "
                    "retrying button_validate once",
                    extra={"picking_id": picking_id},
                )
                run.step("button_validate")
                raw = self.client.call_kw(PICKING_MODEL, "button_validate", [[picking_id]])
                if self._dispatch(run, parse_validate_response(raw), create_backorder):
                    backorder_processed = True
        except OdooRPCError as e:
            self._fail(run, e.remote_message)

        self._check_done(run)

        if backorder_processed and create_backorder:
            run.result.backorder_ids = self._find_backorders(picking_id)
        final = (
            ValidationState.PARTIALLY_DONE_BACKORDER
            if run.result.backorder_ids
            else ValidationState.DONE
        )
        run.transition(final)
        logger.info(
            f"Picking {picking_id} validated: {final.value}"
            + (f", backorders {run.result.backorder_ids}" if run.result.backorder_ids else ""),
            extra={"picking_id": picking_id, "steps": run.result.steps},
        )
        return run.result

    # ------------------------------------------------------------------

    def _dispatch(self, run: _ValidationRun, response: ValidateResponse, create_backorder: bool) -> bool:
        """Process chained wizards until success. Returns True if a backorder wizard was processed."""
        picking_id = run.result.picking_id
        backorder_processed = False
        for _ in range(self.config.max_validation_steps):
            if isinstance(response, ValidateSuccess):
                return backorder_processed
            if isinstance(response, NeedsImmediateTransfer):
                run.step("immediate_transfer")
                response = self._process_immediate_transfer(picking_id, response)
            elif isinstance(response, NeedsBackorderConfirmation):
                run.step("backorder" if create_backorder else "cancel_backorder")
                response = self._process_backorder(picking_id, response, create_backorder)
                backorder_processed = True
        if isinstance(response, ValidateSuccess):
            return backorder_processed
        self._fail(run, f"validation still asks for confirmation after {self.config.max_validation_steps} steps")
        return backorder_processed  # pragma: no cover

    def _process_immediate_transfer(self, picking_id: int, response: NeedsImmediateTransfer) -> ValidateResponse:
        context = wizard_context(picking_id, response.context)
        wizard_id = response.wizard_id
        if not wizard_id:
            wizard_id = self.client.create(
                IMMEDIATE_TRANSFER_MODEL, {"pick_ids": [[6, 0, [picking_id]]]}, context=context
            )
        result = self.client.call_kw(IMMEDIATE_TRANSFER_MODEL, "process", [[wizard_id]], {"context": context})
        return parse_validate_response(result)

    def _process_backorder(
        self, picking_id: int, response: NeedsBackorderConfirmation, create_backorder: bool
    ) -> ValidateResponse:
        context = wizard_context(picking_id, response.context)
        wizard_id = response.wizard_id
        if not wizard_id:
            wizard_id = self.client.create(BACKORDER_MODEL, {}, context=context)
        method = "process" if create_backorder else "process_cancel_backorder"
        result = self.client.call_kw(BACKORDER_MODEL, method, [[wizard_id]], {"context": context})
        return parse_validate_response(result)

    def _picking_state(self, picking_id: int) -> Optional[str]:
        rows = self.client.read(PICKING_MODEL, [picking_id], ["state"])
        return rows[0].get("state") if rows else None

    def _check_done(self, run: _ValidationRun) -> None:
        state = self._picking_state(run.result.picking_id)
        if state != PickingState.DONE.value:
            self._fail(run, f"picking is still '{state}' after validation")

    def _find_backorders(self, picking_id: int) -> List[int]:
        rows = self.client.search_read(PICKING_MODEL, [["backorder_id", "=", picking_id]], ["id"])
        return [int(row["id"]) for row in rows]

    def _fail(self, run: _ValidationRun, remote_message: str) -> None:
        run.transition(ValidationState.FAILED)
        logger.error(
            f"Validation of picking {run.result.picking_id} failed: {remote_message}",
            extra={"picking_id": run.result.picking_id, "steps": run.result.steps},
        )
        raise ValidationFailedError(
            remote_message,
            picking_id=run.result.picking_id,
            details={"steps": list(run.result.steps), "forced_backorder": run.result.forced_backorder},
        )
