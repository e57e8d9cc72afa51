"""Periodic price sampler: independent producer feeding the price mirror."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy.orm import Session

from lockmarket_core.config.schema import PaymentTokenConfig
from lockmarket_core.oracle.feed import PriceFeedClient, PriceFeedError
from lockmarket_core.oracle.mirror import record_sample

log = structlog.get_logger("price_sampler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class PriceSampler:
    """Polls the feed every ``interval_s`` and appends one sample per token.

    A failed tick is skipped; consumers tolerate gaps in the series.
    """

    def __init__(
        self,
        feed: PriceFeedClient,
        session: Session,
        tokens: list[PaymentTokenConfig],
        interval_s: float = 300.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._feed = feed
        self._session = session
        self._tokens = [t for t in tokens if t.price_id]
        self._interval_s = interval_s
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._running = False

    async def tick(self) -> int:
        """Sample every configured token once. Returns the number of samples written."""
        observed_at = self._clock()
        try:
            prices = await self._feed.get_usd_prices([t.price_id for t in self._tokens])
        except PriceFeedError as exc:
            log.warning("price_tick_skipped", reason=str(exc))
            return 0

        written = 0
        for token in self._tokens:
            price = prices.get(token.price_id)
            if price is None:
                log.warning("price_missing", symbol=token.symbol, price_id=token.price_id)
                continue
            if record_sample(self._session, token.address, price, observed_at, source="feed"):
                written += 1
        log.info("price_tick", samples=written, observed_at=observed_at.isoformat())
        return written

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info("price_sampler_started", tokens=[t.symbol for t in self._tokens])

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("price_sampler_stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._session.rollback()
                log.exception("price_tick_error")
            await asyncio.sleep(self._interval_s)
