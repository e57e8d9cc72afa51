"""Price summary for the native reward token: spot, 24h change, 4-hour sparkline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

import numpy as np
from sqlalchemy.orm import Session

from lockmarket_core.oracle.mirror import latest_sample, sample_as_of, samples_between

SPARKLINE_WINDOW = timedelta(hours=24)
SPARKLINE_BUCKET = timedelta(hours=4)


@dataclass
class PriceSummary:
    price_usd: float | None = None
    change_24h: float | None = None
    last_updated: datetime | None = None
    sparkline: list[float] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "priceUsd": self.price_usd,
            "change24h": self.change_24h,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "sparkline": self.sparkline,
        }


def percent_change(current: Decimal, previous: Decimal) -> float | None:
    """Relative change in percent; None when the baseline is zero."""
    if previous == 0:
        return None
    return float((current - previous) / previous * 100)


def bucket_means(
    points: list[tuple[datetime, float]],
    start: datetime,
    bucket: timedelta,
    n_buckets: int,
) -> list[float]:
    """Mean of the points falling in each bucket; empty buckets are skipped."""
    if not points:
        return []
    offsets = np.array([(ts - start).total_seconds() for ts, _ in points], dtype=np.float64)
    values = np.array([v for _, v in points], dtype=np.float64)
    idx = np.floor(offsets / bucket.total_seconds()).astype(np.int64)
    idx = np.clip(idx, 0, n_buckets - 1)
    out: list[float] = []
    for b in range(n_buckets):
        mask = idx == b
        if mask.any():
            out.append(float(np.mean(values[mask])))
    return out


def price_summary(session: Session, token_address: str, now: datetime) -> PriceSummary:
    """Build the ``{priceUsd, change24h, lastUpdated, sparkline}`` read model."""
    latest = latest_sample(session, token_address)
    if latest is None:
        return PriceSummary()

    current = Decimal(str(latest.usd_price))
    day_ago = sample_as_of(session, token_address, now - SPARKLINE_WINDOW)
    change = None
    if day_ago is not None:
        change = percent_change(current, Decimal(str(day_ago.usd_price)))

    start = now - SPARKLINE_WINDOW
    window = samples_between(session, token_address, start, now)
    sparkline = bucket_means(
        [(row.recorded_at, float(row.usd_price)) for row in window],
        start,
        SPARKLINE_BUCKET,
        int(SPARKLINE_WINDOW / SPARKLINE_BUCKET),
    )

    return PriceSummary(
        price_usd=float(current),
        change_24h=change,
        last_updated=latest.recorded_at,
        sparkline=sparkline,
    )
