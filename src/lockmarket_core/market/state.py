"""Listing lifecycle: ``active -> {sold, cancelled, expired}``, all terminal states absorbing.

``expired`` has no explicit transition. Any ``active`` listing whose deadline
is in the past is treated as expired at read time, even when the mirror has
not materialised that fact yet, and buy/cancel attempts against it fail.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from lockmarket_core.market.errors import ListingExpiredError, PreconditionError
from lockmarket_core.models.market import ListingStatus


class ListingLike(Protocol):
    """Anything carrying the fields the predicates need (ORM row or pydantic model)."""

    token_id: int
    seller_address: str
    status: str
    deadline: datetime


def is_expired(deadline: datetime, now: datetime) -> bool:
    """True once ``now`` is strictly past the deadline; ``now == deadline`` is still buyable."""
    return deadline < now


def effective_status(status: str | ListingStatus, deadline: datetime, now: datetime) -> ListingStatus:
    """Stored status with the read-time expiry rule applied."""
    status = ListingStatus(status)
    if status is ListingStatus.ACTIVE and is_expired(deadline, now):
        return ListingStatus.EXPIRED
    return status


def transition(current: str | ListingStatus, target: ListingStatus) -> ListingStatus:
    """Validate a status change and return the new status.

    Only ``active`` may move, and only to a terminal state.
    """
    current = ListingStatus(current)
    if current.is_terminal:
        raise PreconditionError(f"listing is {current.value}; terminal states are absorbing")
    if target is ListingStatus.ACTIVE:
        raise PreconditionError("a listing cannot transition back to active")
    return target


def ensure_buyable(listing: ListingLike, buyer: str, now: datetime) -> None:
    """Raise unless ``buyer`` may buy ``listing`` at ``now``."""
    status = effective_status(listing.status, listing.deadline, now)
    if status is ListingStatus.EXPIRED:
        raise ListingExpiredError(
            f"listing for token {listing.token_id} expired at {listing.deadline.isoformat()}"
        )
    if status is not ListingStatus.ACTIVE:
        raise PreconditionError(f"listing for token {listing.token_id} is {status.value}")
    if buyer.lower() == listing.seller_address.lower():
        raise PreconditionError("seller cannot buy their own listing")


def ensure_cancellable(listing: ListingLike, caller: str, now: datetime) -> None:
    """Raise unless ``caller`` may cancel ``listing`` at ``now``."""
    status = effective_status(listing.status, listing.deadline, now)
    if status is ListingStatus.EXPIRED:
        raise ListingExpiredError(
            f"listing for token {listing.token_id} expired at {listing.deadline.isoformat()}"
        )
    if status is not ListingStatus.ACTIVE:
        raise PreconditionError(f"listing for token {listing.token_id} is {status.value}")
    if caller.lower() != listing.seller_address.lower():
        raise PreconditionError("only the seller can cancel a listing")
