"""Listing state machine: statuses, transitions, fees and the escrow reference model."""

from lockmarket_core.market.errors import (
    ListingExpiredError,
    ListingValidationError,
    MarketError,
    PreconditionError,
)
from lockmarket_core.market.escrow import EscrowMarketplace
from lockmarket_core.market.fees import Settlement, calculate_fee, split_payment, to_decimal
from lockmarket_core.market.state import (
    effective_status,
    ensure_buyable,
    ensure_cancellable,
    is_expired,
    transition,
)

__all__ = [
    "EscrowMarketplace",
    "ListingExpiredError",
    "ListingValidationError",
    "MarketError",
    "PreconditionError",
    "Settlement",
    "calculate_fee",
    "effective_status",
    "ensure_buyable",
    "ensure_cancellable",
    "is_expired",
    "split_payment",
    "to_decimal",
    "transition",
]
