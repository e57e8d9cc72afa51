"""Valuation & aggregation: USD values, windowed stats, read-model queries."""

from lockmarket_core.valuation.cache import StatsCache
from lockmarket_core.valuation.engine import unit_price_usd, valuate, value_amount
from lockmarket_core.valuation.queries import (
    ListingFilter,
    list_active_listings,
    listing_detail,
    marketplace_activity,
    owner_positions,
    position_activity,
    position_detail,
)
from lockmarket_core.valuation.stats import InvalidPeriodError, WindowStats, parse_period, stats_for_window

__all__ = [
    "InvalidPeriodError",
    "ListingFilter",
    "StatsCache",
    "WindowStats",
    "list_active_listings",
    "listing_detail",
    "marketplace_activity",
    "owner_positions",
    "parse_period",
    "position_activity",
    "position_detail",
    "stats_for_window",
    "unit_price_usd",
    "valuate",
    "value_amount",
]
