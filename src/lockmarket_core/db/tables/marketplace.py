"""SQLAlchemy ORM models for the mirrored marketplace state (positions, listings)."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Index, Integer, Numeric, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lockmarket_core.db.base import SCHEMA, Base
from lockmarket_core.db.types import Uint256, UtcDateTime

_ACTIVE_ONLY = text("status = 'active'")


class PositionRow(Base):
    """One locked-token NFT."""

    __tablename__ = "positions"
    __table_args__ = (
        CheckConstraint(
            "lock_start IS NULL OR lock_end IS NULL OR lock_end >= lock_start",
            name="ck_positions_lock_window",
        ),
        Index("ix_positions_owner", "owner_address"),
        {"schema": SCHEMA},
    )

    token_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    owner_address: Mapped[str] = mapped_column(Text, nullable=False)
    provider_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    locked_amount_raw: Mapped[int | None] = mapped_column(Uint256, nullable=True)
    locked_amount: Mapped[Decimal | None] = mapped_column(Numeric, nullable=True)
    lock_start: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    lock_end: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    transferable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="open")
    closure_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    last_block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class ListingRow(Base):
    """A sale offer for a position; at most one ``active`` row per token."""

    __tablename__ = "listings"
    __table_args__ = (
        Index(
            "uq_listings_active_token",
            "token_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("ix_listings_status_sold_at", "status", "sold_at"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    token_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    seller_address: Mapped[str] = mapped_column(Text, nullable=False)
    price_raw: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    price_formatted: Mapped[Decimal] = mapped_column(Numeric, nullable=False, default=0)
    payment_token_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    deadline: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")
    buyer_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    sold_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    platform_fee_raw: Mapped[int | None] = mapped_column(Uint256, nullable=True)
    seller_amount_raw: Mapped[int | None] = mapped_column(Uint256, nullable=True)
    transaction_hash: Mapped[str] = mapped_column(Text, nullable=False)
    sale_transaction_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)


class ReconciliationFlagRow(Base):
    """An anomaly seen while projecting events, kept for operator review."""

    __tablename__ = "reconciliation_flags"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    token_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    detail: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
