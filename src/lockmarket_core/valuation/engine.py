"""USD valuation of listings: spot for live listings, historical for sales.

Every USD figure in the read models goes through :func:`valuate` so the
"price at sale time" rule is applied in exactly one place.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from lockmarket_core.market.fees import to_decimal
from lockmarket_core.market.tokens import get_payment_token
from lockmarket_core.models.market import ListingStatus, PaymentToken, UsdValue
from lockmarket_core.oracle.mirror import current_price, price_as_of


def _amount_of(listing) -> int:
    raw = getattr(listing, "price_raw", None)
    return raw if raw is not None else listing.price_amount


def value_amount(
    session: Session,
    amount: int,
    token: PaymentToken | None,
    as_of: datetime | None = None,
) -> UsdValue:
    """Value ``amount`` smallest units of ``token``.

    With ``as_of`` the price in effect at that instant is used, falling back
    to the current price (``approximate=True``) when no earlier sample exists.
    """
    if token is None:
        return UsdValue(amount=None, usd_price=None, basis="unavailable")

    human = to_decimal(amount, token.decimals)
    if as_of is not None:
        price = price_as_of(session, token.address, as_of)
        if price is not None:
            return UsdValue(amount=human * price, usd_price=price, basis="historical")
        price = current_price(session, token.address)
        if price is not None:
            return UsdValue(
                amount=human * price, usd_price=price, basis="current_fallback", approximate=True,
            )
        return UsdValue(amount=None, usd_price=None, basis="unavailable")

    price = current_price(session, token.address)
    if price is None:
        return UsdValue(amount=None, usd_price=None, basis="unavailable")
    return UsdValue(amount=human * price, usd_price=price, basis="spot")


def valuate(
    session: Session,
    listing,
    tokens: dict[str, PaymentToken] | None = None,
) -> UsdValue:
    """USD value of a listing (ORM row or :class:`Listing`).

    Sold listings are valued at the price in effect at ``sold_at``; every other
    status uses the current spot price.
    """
    address = listing.payment_token_address
    if tokens is not None:
        token = tokens.get(address) if address else None
    else:
        token = get_payment_token(session, address)

    as_of = None
    if ListingStatus(listing.status) is ListingStatus.SOLD:
        as_of = listing.sold_at
    return value_amount(session, _amount_of(listing), token, as_of)


def unit_price_usd(value: UsdValue, locked_amount: Decimal | None) -> Decimal | None:
    """USD paid per locked token; the only figure comparable across payment tokens."""
    if value.amount is None or not locked_amount:
        return None
    return value.amount / Decimal(locked_amount)
