"""Windowed sales statistics valued at historical prices."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from lockmarket_core.db.tables import ListingRow, PositionRow
from lockmarket_core.market.fees import to_decimal
from lockmarket_core.market.tokens import payment_token_map
from lockmarket_core.models.market import ListingStatus
from lockmarket_core.valuation.engine import valuate

_DAYS_RE = re.compile(r"^([1-9][0-9]*)d$")
_ALL_TIME = ("total", "all")


class InvalidPeriodError(ValueError):
    """A stats period that is neither ``<N>d`` nor ``total``/``all``."""


def parse_period(period: str) -> int | None:
    """``"30d"`` → 30; ``"total"``/``"all"`` → None (no lower bound)."""
    normalised = period.strip().lower()
    if normalised in _ALL_TIME:
        return None
    match = _DAYS_RE.match(normalised)
    if match is None:
        raise InvalidPeriodError(f"invalid period {period!r}; expected '<N>d' or 'total'")
    return int(match.group(1))


@dataclass
class TokenStats:
    sales_count: int = 0
    volume: Decimal = Decimal(0)
    usd_value: Decimal = Decimal(0)

    def to_dict(self) -> dict:
        return {
            "salesCount": self.sales_count,
            "volume": float(self.volume),
            "usdValue": float(self.usd_value),
        }


@dataclass
class WindowStats:
    period: str
    sales_count: int = 0
    total_locked_amount: Decimal = Decimal(0)
    total_usd_value: Decimal = Decimal(0)
    # Sales valued at the current price because no sample preceded the sale.
    approximate_count: int = 0
    # Sales with no USD price at all; excluded from totalUsdValue.
    unvalued_count: int = 0
    by_token: dict[str, TokenStats] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "salesCount": self.sales_count,
            "totalLockedAmount": float(self.total_locked_amount),
            "totalUsdValue": float(self.total_usd_value),
            "approximateCount": self.approximate_count,
            "unvaluedCount": self.unvalued_count,
            "byToken": {symbol: s.to_dict() for symbol, s in sorted(self.by_token.items())},
        }


def stats_for_window(session: Session, period: str, now: datetime) -> WindowStats:
    """Aggregate sold listings in the window ending at ``now``."""
    days = parse_period(period)
    query = (
        select(ListingRow, PositionRow.locked_amount)
        .outerjoin(PositionRow, PositionRow.token_id == ListingRow.token_id)
        .where(ListingRow.status == ListingStatus.SOLD.value)
    )
    if days is not None:
        try:
            since = now - timedelta(days=days)
        except OverflowError:
            # Reaches past the earliest representable date: all-time.
            since = None
        if since is not None:
            query = query.where(ListingRow.sold_at >= since)
    query = query.order_by(ListingRow.sold_at)

    tokens = payment_token_map(session)
    stats = WindowStats(period="total" if days is None else f"{days}d")
    for listing, locked_amount in session.execute(query).all():
        stats.sales_count += 1
        if locked_amount is not None:
            stats.total_locked_amount += Decimal(locked_amount)

        value = valuate(session, listing, tokens)
        if value.amount is None:
            stats.unvalued_count += 1
        else:
            stats.total_usd_value += value.amount
        if value.approximate:
            stats.approximate_count += 1

        token = tokens.get(listing.payment_token_address or "")
        symbol = token.symbol if token else "UNKNOWN"
        bucket = stats.by_token.setdefault(symbol, TokenStats())
        bucket.sales_count += 1
        if token is not None:
            bucket.volume += to_decimal(listing.price_raw, token.decimals)
        if value.amount is not None:
            bucket.usd_value += value.amount
    return stats
