"""Import all table modules so Base.metadata knows about them."""

from lockmarket_core.db.tables.chain import ChainBlockRow, DomainEventRow, IngestCursorRow
from lockmarket_core.db.tables.marketplace import ListingRow, PositionRow, ReconciliationFlagRow
from lockmarket_core.db.tables.pricing import PaymentTokenRow, PriceSampleRow

__all__ = [
    "ChainBlockRow",
    "DomainEventRow",
    "IngestCursorRow",
    "ListingRow",
    "PaymentTokenRow",
    "PositionRow",
    "PriceSampleRow",
    "ReconciliationFlagRow",
]
