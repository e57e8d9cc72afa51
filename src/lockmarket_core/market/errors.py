"""Errors raised by listing state-machine operations.

Both classes are local and terminal: they are returned to the caller before
any side effect and are never retried.
"""

from __future__ import annotations


class MarketError(Exception):
    """Base class for marketplace operation failures."""


class ListingValidationError(MarketError):
    """Malformed or out-of-range input (non-positive price, unknown token, ...)."""


class PreconditionError(MarketError):
    """Operation attempted against a listing or position in the wrong state."""


class ListingExpiredError(PreconditionError):
    """The listing is still ``active`` in storage but its deadline has passed."""
