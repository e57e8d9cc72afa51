"""Marketplace read models: positions, listings, payment tokens, valuations."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel


class ListingStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not ListingStatus.ACTIVE


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PaymentToken(BaseModel):
    """Registry entry; immutable once registered."""

    address: str
    symbol: str
    name: str
    decimals: int


class Position(BaseModel):
    token_id: int
    owner_address: str
    locked_amount_raw: int | None = None
    locked_amount: Decimal | None = None
    lock_start: datetime | None = None
    lock_end: datetime | None = None
    transferable: bool = True
    status: PositionStatus = PositionStatus.OPEN
    closure_type: str | None = None


class Listing(BaseModel):
    id: int | None = None
    token_id: int
    seller_address: str
    price_amount: int
    payment_token_address: str | None
    duration_seconds: int
    created_at: datetime
    deadline: datetime
    status: ListingStatus = ListingStatus.ACTIVE
    buyer_address: str | None = None
    sold_at: datetime | None = None
    cancelled_at: datetime | None = None
    transaction_hash: str | None = None
    block_number: int | None = None


ValuationBasis = Literal["spot", "historical", "current_fallback", "unavailable"]


class UsdValue(BaseModel):
    """Result of valuing a listing in USD.

    ``basis`` tells callers which price was used; ``approximate`` is set when a
    historical valuation had to fall back to the current spot price.
    """

    amount: Decimal | None
    usd_price: Decimal | None
    basis: ValuationBasis
    approximate: bool = False

    @property
    def available(self) -> bool:
        return self.amount is not None
