"""Pydantic domain models."""

from lockmarket_core.models.events import (
    DomainEvent,
    ListingCancelled,
    Lock,
    NFTListed,
    NFTSold,
    Transfer,
    Withdraw,
)
from lockmarket_core.models.market import (
    Listing,
    ListingStatus,
    PaymentToken,
    Position,
    PositionStatus,
    UsdValue,
)

__all__ = [
    "DomainEvent",
    "Listing",
    "ListingCancelled",
    "ListingStatus",
    "Lock",
    "NFTListed",
    "NFTSold",
    "PaymentToken",
    "Position",
    "PositionStatus",
    "Transfer",
    "UsdValue",
    "Withdraw",
]
