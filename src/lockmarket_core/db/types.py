"""Column types for on-chain values.

``Uint256`` keeps token amounts exact (they routinely exceed 2**63), and
``UtcDateTime`` guarantees every timestamp read back is tz-aware UTC on
both Postgres and SQLite.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Text
from sqlalchemy.types import DateTime, TypeDecorator


class Uint256(TypeDecorator):
    """Arbitrary-size non-negative integer stored as its decimal string."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError(f"Uint256 column cannot store negative value {value}")
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class UtcDateTime(TypeDecorator):
    """Timezone-aware datetime, normalised to UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            # SQLite compares timestamps as strings; keep one naive format.
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
