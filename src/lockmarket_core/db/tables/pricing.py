"""SQLAlchemy ORM models for payment tokens and their USD price history."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Index, Integer, Numeric, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lockmarket_core.db.base import SCHEMA, Base
from lockmarket_core.db.types import UtcDateTime


class PaymentTokenRow(Base):
    __tablename__ = "payment_tokens"
    __table_args__ = {"schema": SCHEMA}

    address: Mapped[str] = mapped_column(Text, primary_key=True)
    symbol: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False)
    price_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    registered_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


class PriceSampleRow(Base):
    """Append-only USD price observation; never updated or deleted."""

    __tablename__ = "price_samples"
    __table_args__ = (
        UniqueConstraint("token_address", "recorded_at", name="uq_price_samples_token_time"),
        Index("ix_price_samples_token_time", "token_address", "recorded_at"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    token_address: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    usd_price: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
