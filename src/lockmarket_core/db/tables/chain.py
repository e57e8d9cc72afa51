"""SQLAlchemy ORM models for ingestion bookkeeping: events, block hashes, cursors."""

from datetime import datetime

from sqlalchemy import BigInteger, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from lockmarket_core.db.base import SCHEMA, Base
from lockmarket_core.db.types import UtcDateTime


class DomainEventRow(Base):
    """A decoded chain log. ``(transaction_hash, log_index)`` is the idempotency key."""

    __tablename__ = "domain_events"
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uq_domain_events_tx_log"),
        Index("ix_domain_events_position", "block_number", "log_index"),
        Index("ix_domain_events_token", "token_id", "block_number"),
        {"schema": SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    transaction_hash: Mapped[str] = mapped_column(Text, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_timestamp: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    contract_address: Mapped[str] = mapped_column(Text, nullable=False)
    event_name: Mapped[str] = mapped_column(Text, nullable=False)
    token_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    decoded_data: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)


class ChainBlockRow(Base):
    """Hash of every block the indexer has materialised events from."""

    __tablename__ = "chain_blocks"
    __table_args__ = {"schema": SCHEMA}

    number: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    hash: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)


class IngestCursorRow(Base):
    """Durable ``(block_number, log_index)`` watermark per ingestion stream."""

    __tablename__ = "ingest_cursors"
    __table_args__ = {"schema": SCHEMA}

    name: Mapped[str] = mapped_column(Text, primary_key=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    updated_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
