"""Create the marketplace mirror tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "lockmarket"


def upgrade() -> None:
    # Schema is created by env.py before migrations run.

    # --- reference data ---
    op.create_table(
        "payment_tokens",
        sa.Column("address", sa.Text, primary_key=True),
        sa.Column("symbol", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("decimals", sa.Integer, nullable=False),
        sa.Column("price_id", sa.Text, nullable=True),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=True),
        schema=SCHEMA,
    )

    op.create_table(
        "price_samples",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("token_address", sa.Text, nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("usd_price", sa.Numeric, nullable=False),
        sa.Column("source", sa.Text, nullable=True),
        sa.UniqueConstraint("token_address", "recorded_at", name="uq_price_samples_token_time"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_price_samples_token_time", "price_samples", ["token_address", "recorded_at"], schema=SCHEMA,
    )

    # --- mirrored marketplace state ---
    op.create_table(
        "positions",
        sa.Column("token_id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("owner_address", sa.Text, nullable=False),
        sa.Column("provider_address", sa.Text, nullable=True),
        sa.Column("locked_amount_raw", sa.Text, nullable=True),
        sa.Column("locked_amount", sa.Numeric, nullable=True),
        sa.Column("lock_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transferable", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("status", sa.Text, nullable=False, server_default="open"),
        sa.Column("closure_type", sa.Text, nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_block_number", sa.BigInteger, nullable=True),
        sa.CheckConstraint(
            "lock_start IS NULL OR lock_end IS NULL OR lock_end >= lock_start",
            name="ck_positions_lock_window",
        ),
        schema=SCHEMA,
    )
    op.create_index("ix_positions_owner", "positions", ["owner_address"], schema=SCHEMA)

    op.create_table(
        "listings",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("token_id", sa.BigInteger, nullable=False),
        sa.Column("seller_address", sa.Text, nullable=False),
        sa.Column("price_raw", sa.Text, nullable=False),
        sa.Column("price_formatted", sa.Numeric, nullable=False),
        sa.Column("payment_token_address", sa.Text, nullable=True),
        sa.Column("duration_seconds", sa.BigInteger, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("buyer_address", sa.Text, nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("platform_fee_raw", sa.Text, nullable=True),
        sa.Column("seller_amount_raw", sa.Text, nullable=True),
        sa.Column("transaction_hash", sa.Text, nullable=False),
        sa.Column("sale_transaction_hash", sa.Text, nullable=True),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        schema=SCHEMA,
    )
    op.create_index("ix_lockmarket_listings_token_id", "listings", ["token_id"], schema=SCHEMA)
    op.create_index("ix_listings_status_sold_at", "listings", ["status", "sold_at"], schema=SCHEMA)
    op.create_index(
        "uq_listings_active_token",
        "listings",
        ["token_id"],
        unique=True,
        schema=SCHEMA,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "reconciliation_flags",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("token_id", sa.BigInteger, nullable=False),
        sa.Column("kind", sa.Text, nullable=False),
        sa.Column("transaction_hash", sa.Text, nullable=True),
        sa.Column("log_index", sa.Integer, nullable=True),
        sa.Column("block_number", sa.BigInteger, nullable=True),
        sa.Column("detail", postgresql.JSONB, nullable=True),
        sa.Column("resolved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_lockmarket_reconciliation_flags_token_id", "reconciliation_flags", ["token_id"], schema=SCHEMA,
    )

    # --- ingestion bookkeeping ---
    op.create_table(
        "domain_events",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("transaction_hash", sa.Text, nullable=False),
        sa.Column("log_index", sa.Integer, nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        sa.Column("block_hash", sa.Text, nullable=True),
        sa.Column("block_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("contract_address", sa.Text, nullable=False),
        sa.Column("event_name", sa.Text, nullable=False),
        sa.Column("token_id", sa.BigInteger, nullable=False),
        sa.Column("decoded_data", postgresql.JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("transaction_hash", "log_index", name="uq_domain_events_tx_log"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_domain_events_position", "domain_events", ["block_number", "log_index"], schema=SCHEMA,
    )
    op.create_index(
        "ix_domain_events_token", "domain_events", ["token_id", "block_number"], schema=SCHEMA,
    )

    op.create_table(
        "chain_blocks",
        sa.Column("number", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("hash", sa.Text, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        schema=SCHEMA,
    )

    op.create_table(
        "ingest_cursors",
        sa.Column("name", sa.Text, primary_key=True),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        sa.Column("log_index", sa.Integer, nullable=False, server_default="-1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        schema=SCHEMA,
    )


def downgrade() -> None:
    op.drop_table("ingest_cursors", schema=SCHEMA)
    op.drop_table("chain_blocks", schema=SCHEMA)
    op.drop_table("domain_events", schema=SCHEMA)
    op.drop_table("reconciliation_flags", schema=SCHEMA)
    op.drop_table("listings", schema=SCHEMA)
    op.drop_table("positions", schema=SCHEMA)
    op.drop_table("price_samples", schema=SCHEMA)
    op.drop_table("payment_tokens", schema=SCHEMA)
