"""
Fulfillment engine result types

Plain dataclasses passed between the reader, the allocation engine, the
validation state machine and the service facade.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pickbridge.core.status_config import SETTLED_MOVE_STATES, ValidationState
from pickbridge.exceptions import PartialSyncError


# ============================================================================
# Movements
# ============================================================================

@dataclass
class Movement:
    """One product-level demand entry inside a picking (a stock.move)"""
    move_id: int
    picking_id: Optional[int]
    product_id: Optional[int]
    product_name: str
    demanded: float
    done: float = 0.0
    state: Optional[str] = None
    move_line_ids: List[int] = field(default_factory=list)
    uom_id: Optional[int] = None
    location_id: Optional[int] = None
    location_dest_id: Optional[int] = None

    @property
    def remaining(self) -> float:
        """Open demand on this movement, never negative."""
        if self.state in SETTLED_MOVE_STATES:
            return 0.0
        return max(self.demanded - self.done, 0.0)


# ============================================================================
# Allocation
# ============================================================================

@dataclass
class AllocationLine:
    """Quantity taken by one movement"""
    move_id: int
    product_id: int
    current_done: float
    taken: float

    @property
    def new_done(self) -> float:
        return self.current_done + self.taken


@dataclass
class ProductAllocation:
    """Greedy distribution of one product's push quantity"""
    product_id: int
    product_name: str
    requested: float
    capacity: float
    lines: List[AllocationLine] = field(default_factory=list)

    @property
    def allocated(self) -> float:
        return sum(line.taken for line in self.lines)

    @property
    def shortfall(self) -> float:
        return max(self.requested - self.allocated, 0.0)


@dataclass
class AllocationPlan:
    """What will be written onto the open picking"""
    picking_id: int
    products: Dict[int, ProductAllocation] = field(default_factory=dict)

    @property
    def lines(self) -> List[AllocationLine]:
        return [line for alloc in self.products.values() for line in alloc.lines if line.taken > 0]

    @property
    def has_shortfall(self) -> bool:
        return any(alloc.shortfall > 0 for alloc in self.products.values())

    @property
    def total_allocated(self) -> float:
        return sum(alloc.allocated for alloc in self.products.values())

    @property
    def is_noop(self) -> bool:
        return not self.lines


# ============================================================================
# Validation
# ============================================================================

@dataclass(frozen=True)
class ValidateSuccess:
    """button_validate (or a wizard) finished the picking"""


@dataclass(frozen=True)
class NeedsImmediateTransfer:
    """Odoo asks to confirm an immediate transfer (stock.immediate.transfer)"""
    wizard_id: Optional[int]
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NeedsBackorderConfirmation:
    """Odoo asks whether the remainder becomes a backorder (stock.backorder.confirmation)"""
    wizard_id: Optional[int]
    context: Dict[str, Any] = field(default_factory=dict)


ValidateResponse = Union[ValidateSuccess, NeedsImmediateTransfer, NeedsBackorderConfirmation]


@dataclass
class ValidationResult:
    """Outcome of one validation run"""
    picking_id: int
    state: ValidationState
    backorder_ids: List[int] = field(default_factory=list)
    steps: List[str] = field(default_factory=list)
    forced_backorder: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state in (ValidationState.DONE, ValidationState.PARTIALLY_DONE_BACKORDER)


# ============================================================================
# Facade results
# ============================================================================

@dataclass
class PushResult:
    """Result of push_and_validate"""
    order_id: int
    picking_id: int
    picking_name: Optional[str]
    pushed: Dict[int, float]
    plan: AllocationPlan
    validation: ValidationResult
    # Prepared quantities the picking could not absorb, by product
    unplaced: Dict[int, float] = field(default_factory=dict)
    resynced: bool = False


@dataclass
class SyncBatchResult:
    """Result of a batch import; failures are counted, never fatal"""
    imported: int = 0
    errors: int = 0
    last_ref: Optional[str] = None
    failures: List[PartialSyncError] = field(default_factory=list)

    def record_failure(self, failure: PartialSyncError) -> None:
        self.errors += 1
        self.failures.append(failure)

    def raise_for_errors(self) -> None:
        """Raise a summary PartialSyncError when any item failed."""
        if not self.errors:
            return
        raise PartialSyncError(
            f"{self.errors} of {self.imported + self.errors} orders failed to sync",
            details={
                "imported": self.imported,
                "errors": self.errors,
                "failed_references": [f.reference for f in self.failures],
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"imported": self.imported, "errors": self.errors, "last_ref": self.last_ref}


# ============================================================================
# Carrier
# ============================================================================

@dataclass
class ShipmentLabel:
    """What a carrier gateway hands back"""
    tracking_number: Optional[str]
    label_bytes: Optional[bytes]
    mime_type: Optional[str] = None


@dataclass
class AttachShipmentResult:
    order_id: int
    tracking_number: Optional[str]
    carrier: Optional[str]
    label: Optional[ShipmentLabel] = None
    warnings: List[str] = field(default_factory=list)
