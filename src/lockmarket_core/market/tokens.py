"""Payment-token registry: reference data, immutable once registered."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from lockmarket_core.config.schema import PaymentTokenConfig
from lockmarket_core.db.tables.pricing import PaymentTokenRow
from lockmarket_core.models.market import PaymentToken

log = structlog.get_logger("payment_tokens")


def register_payment_tokens(session: Session, tokens: Iterable[PaymentTokenConfig]) -> int:
    """Insert tokens that are not registered yet. Returns the number inserted.

    An already-registered address is left untouched; differing metadata is
    logged, not applied.
    """
    inserted = 0
    now = datetime.now(timezone.utc)
    for token in tokens:
        existing = session.get(PaymentTokenRow, token.address)
        if existing is not None:
            if (existing.symbol, existing.name, existing.decimals) != (
                token.symbol, token.name, token.decimals,
            ):
                log.warning(
                    "payment_token_metadata_conflict",
                    address=token.address,
                    registered_symbol=existing.symbol,
                    registered_decimals=existing.decimals,
                    configured_symbol=token.symbol,
                    configured_decimals=token.decimals,
                )
            continue
        session.add(PaymentTokenRow(
            address=token.address,
            symbol=token.symbol,
            name=token.name,
            decimals=token.decimals,
            price_id=token.price_id,
            registered_at=now,
        ))
        inserted += 1
    if inserted:
        session.commit()
        log.info("payment_tokens_registered", count=inserted)
    return inserted


def get_payment_token(session: Session, address: str | None) -> PaymentToken | None:
    """Look up a registered token by address (case-insensitive)."""
    if address is None:
        return None
    row = session.get(PaymentTokenRow, address.lower())
    if row is None:
        return None
    return PaymentToken(address=row.address, symbol=row.symbol, name=row.name, decimals=row.decimals)


def payment_token_map(session: Session) -> dict[str, PaymentToken]:
    """All registered tokens keyed by address."""
    rows = session.execute(select(PaymentTokenRow)).scalars().all()
    return {
        r.address: PaymentToken(address=r.address, symbol=r.symbol, name=r.name, decimals=r.decimals)
        for r in rows
    }
