"""Price oracle mirror: feed client, periodic sampler and point-in-time lookups."""

from lockmarket_core.oracle.feed import PriceFeedClient, PriceFeedError
from lockmarket_core.oracle.mirror import (
    current_price,
    latest_sample,
    price_as_of,
    record_sample,
    sample_as_of,
    samples_between,
)
from lockmarket_core.oracle.sampler import PriceSampler
from lockmarket_core.oracle.summary import PriceSummary, price_summary

__all__ = [
    "PriceFeedClient",
    "PriceFeedError",
    "PriceSampler",
    "PriceSummary",
    "current_price",
    "latest_sample",
    "price_as_of",
    "price_summary",
    "record_sample",
    "sample_as_of",
    "samples_between",
]
