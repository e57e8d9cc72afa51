"""Platform fee arithmetic: pure functions on integer token amounts."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Context, Decimal

BPS_DENOMINATOR = 10_000

# Wide enough for any uint256 amount.
_EXACT = Context(prec=80)


@dataclass(frozen=True)
class Settlement:
    """How a sale price is split between the fee recipient and the seller."""

    price: int
    fee: int
    seller_amount: int


def calculate_fee(price: int, fee_bps: int) -> int:
    """Platform fee, floored so it never exceeds ``fee_bps`` of the price."""
    if price < 0:
        raise ValueError("price must be non-negative")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError(f"fee_bps out of range: {fee_bps}")
    return price * fee_bps // BPS_DENOMINATOR


def split_payment(price: int, fee_bps: int) -> Settlement:
    """fee + seller_amount == price, exactly."""
    fee = calculate_fee(price, fee_bps)
    return Settlement(price=price, fee=fee, seller_amount=price - fee)


def to_decimal(amount: int, decimals: int) -> Decimal:
    """Convert a smallest-unit integer amount to a human-readable Decimal."""
    return Decimal(amount).scaleb(-decimals, context=_EXACT)
