"""Price oracle mirror: append-only USD price samples per payment token."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lockmarket_core.db.tables.pricing import PriceSampleRow

log = structlog.get_logger("price_mirror")


def record_sample(
    session: Session,
    token_address: str,
    usd_price: Decimal,
    observed_at: datetime,
    source: str | None = None,
) -> bool:
    """Append a sample. Returns False if one already exists for that instant.

    Existing samples are never overwritten.
    """
    token_address = token_address.lower()
    if usd_price < 0:
        raise ValueError(f"negative USD price for {token_address}: {usd_price}")

    exists = session.execute(
        select(PriceSampleRow.id).where(
            PriceSampleRow.token_address == token_address,
            PriceSampleRow.recorded_at == observed_at,
        )
    ).first()
    if exists is not None:
        log.debug("price_sample_duplicate", token=token_address, observed_at=observed_at.isoformat())
        return False

    session.add(PriceSampleRow(
        token_address=token_address,
        recorded_at=observed_at,
        usd_price=usd_price,
        source=source,
    ))
    try:
        session.commit()
    except IntegrityError:
        # Lost a race with another writer for the same instant.
        session.rollback()
        return False
    return True


def latest_sample(session: Session, token_address: str) -> PriceSampleRow | None:
    """The sample with the greatest ``recorded_at`` for a token."""
    return session.execute(
        select(PriceSampleRow)
        .where(PriceSampleRow.token_address == token_address.lower())
        .order_by(desc(PriceSampleRow.recorded_at))
        .limit(1)
    ).scalar_one_or_none()


def sample_as_of(session: Session, token_address: str, timestamp: datetime) -> PriceSampleRow | None:
    """The most recent sample with ``recorded_at <= timestamp``."""
    return session.execute(
        select(PriceSampleRow)
        .where(
            PriceSampleRow.token_address == token_address.lower(),
            PriceSampleRow.recorded_at <= timestamp,
        )
        .order_by(desc(PriceSampleRow.recorded_at))
        .limit(1)
    ).scalar_one_or_none()


def current_price(session: Session, token_address: str) -> Decimal | None:
    """Latest USD price, or None if the token has never been sampled."""
    row = latest_sample(session, token_address)
    if row is None:
        return None
    return Decimal(str(row.usd_price))


def price_as_of(session: Session, token_address: str, timestamp: datetime) -> Decimal | None:
    """USD price in effect at ``timestamp``, or None if no sample precedes it."""
    row = sample_as_of(session, token_address, timestamp)
    if row is None:
        return None
    return Decimal(str(row.usd_price))


def samples_between(
    session: Session,
    token_address: str,
    start: datetime,
    end: datetime,
) -> list[PriceSampleRow]:
    """Samples with ``start <= recorded_at <= end``, oldest first."""
    return list(session.execute(
        select(PriceSampleRow)
        .where(
            PriceSampleRow.token_address == token_address.lower(),
            PriceSampleRow.recorded_at >= start,
            PriceSampleRow.recorded_at <= end,
        )
        .order_by(PriceSampleRow.recorded_at)
    ).scalars().all())
