"""Fulfillment engine configuration

Engine toggles are passed into the services explicitly instead of being read
from the environment at call time. Build one from settings with
FulfillmentConfig.from_settings(), or construct it directly in tests.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple

from pickbridge.core.settings import DEFAULT_AMBIGUOUS_QTY_PATTERNS, Settings, get_settings


@dataclass(frozen=True)
class FulfillmentConfig:
    """Explicit configuration for the push/validate flow."""

    # Confirm draft/sent sale orders before pushing prepared quantities
    auto_confirm_on_push: bool = False
    # Backorder policy used when the caller does not pass one
    create_backorder_default: bool = True
    label_format: str = "PDF"
    # Lower-cased substrings of validation errors that warrant a forced backorder retry
    ambiguous_quantity_patterns: Tuple[str, ...] = field(
        default_factory=lambda: tuple(p.lower() for p in DEFAULT_AMBIGUOUS_QTY_PATTERNS)
    )
    # Bounded chain of wizard round trips during validation
    max_validation_steps: int = 4
    # search_read limits on remote lookups
    line_limit: int = 1000
    move_limit: int = 2000
    origin_picking_limit: int = 100
    move_line_chunk_size: int = 200

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FulfillmentConfig":
        settings = settings or get_settings()
        return cls(
            auto_confirm_on_push=settings.ODOO_AUTOCONFIRM_ON_PUSH,
            create_backorder_default=settings.ODOO_CREATE_BACKORDER,
            label_format=settings.DEFAULT_LABEL_FORMAT,
            ambiguous_quantity_patterns=tuple(
                p.lower() for p in settings.ODOO_AMBIGUOUS_QTY_PATTERNS
            ),
        )

    def is_ambiguous_quantity_error(self, message: Optional[str]) -> bool:
        """True when a remote validation error matches a known ambiguous-quantity signature."""
        if not message:
            return False
        lowered = message.lower()
        return any(pattern in lowered for pattern in self.ambiguous_quantity_patterns)
