"""Event ingestion loop: poll confirmed blocks, decode, apply, advance the watermark.

Only blocks at least ``confirmations`` deep are materialised. The hash of
every block the pipeline has read is kept in ``chain_blocks``; if the node
later reports a different hash at one of those heights, everything from the
fork point up is rolled back and re-read from the new canonical chain.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lockmarket_core.chain.rpc import BlockHeader, RpcError
from lockmarket_core.db.tables import ChainBlockRow, IngestCursorRow
from lockmarket_core.ingest.decoder import DecodeError, decode_log
from lockmarket_core.ingest.projector import Projector, StorageError
from lockmarket_core.ingest.shards import ShardedApplier

log = structlog.get_logger("ingest")

# How many stored block hashes are compared when looking for a fork point.
REORG_SEARCH_DEPTH = 256


class EventSource(Protocol):
    async def latest_block(self) -> int: ...

    async def get_block(self, number: int) -> BlockHeader: ...

    async def get_logs(self, from_block: int, to_block: int, addresses: list[str]) -> list[dict]: ...


def _hex_int(value: str | int) -> int:
    return int(value, 16) if isinstance(value, str) else value


def load_cursor(session: Session, name: str) -> tuple[int, int] | None:
    row = session.get(IngestCursorRow, name)
    if row is None:
        return None
    return (row.block_number, row.log_index)


def save_cursor(session: Session, name: str, block_number: int, log_index: int) -> None:
    """Stage the watermark; the caller commits."""
    row = session.get(IngestCursorRow, name)
    now = datetime.now(timezone.utc)
    if row is None:
        session.add(IngestCursorRow(
            name=name, block_number=block_number, log_index=log_index, updated_at=now,
        ))
    else:
        row.block_number = block_number
        row.log_index = log_index
        row.updated_at = now


class IngestionPipeline:
    """Single-writer ingestion for one chain / contract set."""

    def __init__(
        self,
        source: EventSource,
        session: Session,
        projector: Projector,
        addresses: list[str],
        cursor_name: str = "marketplace",
        start_block: int = 0,
        confirmations: int = 12,
        max_block_range: int = 2000,
        num_workers: int = 4,
        queue_size: int = 1000,
        poll_interval_s: float = 6.0,
        retry_initial_s: float = 1.0,
        retry_max_s: float = 60.0,
    ) -> None:
        self._source = source
        self._session = session
        self._projector = projector
        self._addresses = [a.lower() for a in addresses]
        self.cursor_name = cursor_name
        self.start_block = start_block
        self.confirmations = confirmations
        self.max_block_range = max_block_range
        self.poll_interval_s = poll_interval_s
        self.retry_initial_s = retry_initial_s
        self.retry_max_s = retry_max_s
        self._applier = ShardedApplier(
            lambda event: projector.apply(session, event),
            num_workers=num_workers,
            queue_size=queue_size,
        )
        self._stop = asyncio.Event()
        self.caught_up = False

    # ── One polling step ─────────────────────────────────────

    async def run_once(self) -> int:
        """Process the next confirmed block range. Returns the number of events applied."""
        if not self._applier.running:
            await self._applier.start()

        head = await self._source.latest_block()
        safe = head - self.confirmations
        await self._check_canonical()

        cursor = load_cursor(self._session, self.cursor_name)
        if cursor is None:
            from_block, applied_upto = self.start_block, (self.start_block, -1)
        else:
            from_block = max(cursor[0], self.start_block)
            applied_upto = cursor

        if from_block > safe:
            self.caught_up = True
            return 0
        to_block = min(safe, from_block + self.max_block_range - 1)

        raw_logs = await self._source.get_logs(from_block, to_block, self._addresses)
        headers: dict[int, BlockHeader] = {}
        watermark = (to_block, applied_upto[1] if applied_upto[0] == to_block else -1)
        submitted = 0

        for raw in raw_logs:
            try:
                position = (_hex_int(raw["blockNumber"]), _hex_int(raw["logIndex"]))
            except (KeyError, TypeError, ValueError):
                log.warning("event_skipped_undecodable", reason="missing log position", raw=raw)
                continue
            if position <= applied_upto:
                continue
            if position[0] == to_block:
                watermark = max(watermark, position)

            header = headers.get(position[0])
            if header is None:
                header = await self._source.get_block(position[0])
                headers[position[0]] = header
            try:
                event = decode_log(raw, header)
            except DecodeError as exc:
                log.warning(
                    "event_skipped_undecodable",
                    tx_hash=exc.transaction_hash,
                    log_index=exc.log_index,
                    block_number=position[0],
                    reason=str(exc),
                )
                continue
            await self._applier.submit(event)
            submitted += 1

        # Every event is durably applied before the watermark moves.
        outcomes = await self._applier.drain()

        if to_block not in headers:
            headers[to_block] = await self._source.get_block(to_block)
        try:
            for header in headers.values():
                self._session.merge(ChainBlockRow(
                    number=header.number, hash=header.hash, timestamp=header.timestamp,
                ))
            save_cursor(self._session, self.cursor_name, *watermark)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StorageError(str(exc)) from exc

        applied = outcomes.get("applied", 0)
        self.caught_up = to_block >= safe
        log.info(
            "batch_applied",
            from_block=from_block,
            to_block=to_block,
            head=head,
            submitted=submitted,
            applied=applied,
            ignored=outcomes.get("ignored", 0),
        )
        return applied

    async def _check_canonical(self) -> None:
        """Roll back to the fork point if a stored block hash is no longer canonical."""
        stored = self._session.execute(
            select(ChainBlockRow).order_by(desc(ChainBlockRow.number)).limit(REORG_SEARCH_DEPTH)
        ).scalars().all()
        if not stored:
            return

        # Only blocks with logs and batch ends are stored, so the fork may sit
        # anywhere above the newest stored block that still matches.
        fork_height = None
        diverged = False
        for row in stored:
            header = await self._source.get_block(row.number)
            if header.hash == row.hash:
                if diverged:
                    fork_height = row.number + 1
                break
            diverged = True
        else:
            fork_height = stored[-1].number
        if fork_height is None:
            return

        log.warning("reorg_detected", fork_height=fork_height, stored_head=stored[0].number)
        self._projector.rollback_from(self._session, fork_height)
        try:
            save_cursor(self._session, self.cursor_name, fork_height - 1, -1)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StorageError(str(exc)) from exc

    # ── Long-running loop ────────────────────────────────────

    async def run(self) -> None:
        """Poll until :meth:`stop`; transport and storage failures back off and retry."""
        delay = self.retry_initial_s
        while not self._stop.is_set():
            try:
                await self.run_once()
                delay = self.retry_initial_s
                wait = self.poll_interval_s if self.caught_up else 0.0
            except asyncio.CancelledError:
                raise
            except (RpcError, StorageError) as exc:
                self._session.rollback()
                log.warning("ingest_retry", error=str(exc), retry_in_s=delay)
                wait, delay = delay, min(delay * 2, self.retry_max_s)
            except Exception:
                self._session.rollback()
                log.exception("ingest_error", retry_in_s=delay)
                wait, delay = delay, min(delay * 2, self.retry_max_s)
            if wait:
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass
        await self._applier.stop()
        log.info("ingest_stopped")

    def stop(self) -> None:
        """Request shutdown; the batch in flight completes first."""
        self._stop.set()
