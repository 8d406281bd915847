"""
pickbridge - Custom Exception Hierarchy

Provides structured, typed exceptions with error codes for consistent
error handling across the fulfillment engine.

Usage:
    from pickbridge.exceptions import OverAllocationError, NoOpenFulfillmentError

    # In a service
    raise OverAllocationError(product_id=7, product_name="Mug", requested=12, remaining=10)

    # Surfacing to an operator
    except PickBridgeException as e:
        print(e.to_dict())
"""
from typing import Any, Dict, List, Optional


class PickBridgeException(Exception):
    """
    Base exception for all pickbridge errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "NOT_FOUND", "OVER_ALLOCATION")
        retryable: Whether the same call may succeed if simply repeated
        details: Additional context for the operator
    """

    error_code: str = "PICKBRIDGE_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for CLI/JSON output."""
        result = {
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# Input / Payload Errors
# ===================


class InvalidPayloadError(PickBridgeException):
    """Raised when remote data is malformed. Not retryable without fixing the source."""

    error_code = "INVALID_PAYLOAD"

    def __init__(
        self,
        message: str = "Invalid remote payload",
        *,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class ConfigurationError(PickBridgeException):
    """Raised when required settings are missing or inconsistent."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid configuration",
        *,
        missing: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if missing:
            details["missing"] = missing
        super().__init__(message, details=details)


class NotFoundError(PickBridgeException):
    """Raised when a local or remote record is not found."""

    error_code = "NOT_FOUND"

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Any = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if resource_id is not None:
            details["resource_id"] = str(resource_id)
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, details=details)


class InvalidStateError(PickBridgeException):
    """Raised when an operation is invalid for the current state."""

    error_code = "INVALID_STATE"

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states
        super().__init__(message, details=details)


# ===================
# Business Rule Errors
# ===================


class BusinessRuleError(PickBridgeException):
    """Raised when a fulfillment rule is violated."""

    error_code = "BUSINESS_RULE_ERROR"

    def __init__(
        self,
        message: str = "Business rule violation",
        *,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if rule:
            details["rule"] = rule
        super().__init__(message, details=details)


class OverAllocationError(BusinessRuleError):
    """Raised when a prepared quantity exceeds what is still left to fulfill."""

    error_code = "OVER_ALLOCATION"

    def __init__(
        self,
        *,
        product_id: int,
        requested: float,
        remaining: float,
        product_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["product_id"] = product_id
        details["product"] = product_name
        details["requested"] = requested
        details["remaining"] = remaining
        label = product_name or f"product {product_id}"
        message = (
            f"Cannot push {requested:g} of {label}: "
            f"only {remaining:g} left to fulfill ({requested:g} > {remaining:g})"
        )
        super().__init__(message, rule="remaining_capacity", details=details)


class NoOpenFulfillmentError(BusinessRuleError):
    """Raised when an order has no open picking to push quantities onto."""

    error_code = "NO_OPEN_FULFILLMENT"

    def __init__(
        self,
        order_ref: str,
        *,
        remote_state: Optional[str] = None,
        not_confirmed: bool = False,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["order"] = order_ref
        if remote_state:
            details["remote_state"] = remote_state
        details["not_confirmed"] = not_confirmed
        if reason:
            details["reason"] = reason
            message = f"No open delivery for {order_ref}: {reason}"
        elif not_confirmed:
            message = (
                f"No delivery for {order_ref}: the sale order is still "
                f"'{remote_state}' in Odoo. Confirm it first."
            )
        else:
            message = (
                f"No open delivery for {order_ref} "
                "(all pickings done or cancelled, or origin does not match)"
            )
        super().__init__(message, rule="open_fulfillment", details=details)


class NothingToPushError(BusinessRuleError):
    """Raised when a push is requested without any prepared quantity."""

    error_code = "NOTHING_TO_PUSH"

    def __init__(
        self,
        order_ref: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["order"] = order_ref
        super().__init__(
            f"No prepared quantity to push for {order_ref}",
            rule="prepared_quantity",
            details=details,
        )


# ===================
# Remote Errors
# ===================


class IntegrationError(PickBridgeException):
    """Raised when the Odoo integration fails."""

    error_code = "INTEGRATION_ERROR"

    def __init__(
        self,
        service: str,
        message: str = "External service error",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["service"] = service
        super().__init__(f"{service}: {message}", details=details)


class OdooRPCError(IntegrationError):
    """Raised when Odoo answers a JSON-RPC call with an error member."""

    error_code = "ODOO_RPC_ERROR"

    def __init__(
        self,
        remote_message: str,
        *,
        exception_name: Optional[str] = None,
        model: Optional[str] = None,
        method: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["remote_message"] = remote_message
        if exception_name:
            details["exception_name"] = exception_name
        if model:
            details["model"] = model
        if method:
            details["method"] = method
        self.remote_message = remote_message
        self.exception_name = exception_name
        super().__init__("Odoo", remote_message, details=details)


class ValidationFailedError(IntegrationError):
    """Raised when Odoo rejects the validation of a picking."""

    error_code = "VALIDATION_FAILED"
    retryable = True

    def __init__(
        self,
        remote_message: str,
        *,
        picking_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["remote_message"] = remote_message
        if picking_id is not None:
            details["picking_id"] = picking_id
        self.remote_message = remote_message
        super().__init__("Odoo", f"picking validation refused: {remote_message}", details=details)


class AuthenticationError(PickBridgeException):
    """Raised when authentication against Odoo fails."""

    error_code = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str = "Authentication required",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class AuthExpiredError(AuthenticationError):
    """Raised when the Odoo session is rejected even after one re-login."""

    error_code = "AUTH_EXPIRED"
    retryable = True

    def __init__(
        self,
        message: str = "Odoo session expired or credentials rejected",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class ServiceUnavailableError(PickBridgeException):
    """Raised when a service is temporarily unavailable."""

    error_code = "SERVICE_UNAVAILABLE"
    retryable = True

    def __init__(
        self,
        service: str = "Service",
        message: str = "temporarily unavailable",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["service"] = service
        super().__init__(f"{service} {message}", details=details)


class RemoteUnavailableError(ServiceUnavailableError):
    """Raised on network failures and timeouts talking to Odoo."""

    error_code = "REMOTE_UNAVAILABLE"

    def __init__(
        self,
        message: str = "unreachable",
        *,
        timeout: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if timeout is not None:
            details["timeout_seconds"] = timeout
        super().__init__("Odoo", message, details=details)


# ===================
# Sync / Storage Errors
# ===================


class PartialSyncError(PickBridgeException):
    """One failed item of a batch sync. Counted, never fatal to the batch."""

    error_code = "PARTIAL_SYNC_ERROR"
    retryable = True

    def __init__(
        self,
        message: str = "Batch sync completed with errors",
        *,
        reference: Optional[str] = None,
        cause: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if reference is not None:
            details["reference"] = reference
        if cause:
            details["cause"] = cause
        self.reference = reference
        super().__init__(message, details=details)


class DatabaseError(PickBridgeException):
    """Raised when a local database operation fails."""

    error_code = "DATABASE_ERROR"

    def __init__(
        self,
        message: str = "Database operation failed",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
