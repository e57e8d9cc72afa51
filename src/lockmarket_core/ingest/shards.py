"""Fixed-size worker pool that applies events sharded by token id.

Every event for a given token lands on the same shard queue, so per-token
order is preserved while independent tokens proceed concurrently.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable

import structlog

from lockmarket_core.models.events import DomainEvent

log = structlog.get_logger("shards")


def shard_for(token_id: int, num_workers: int) -> int:
    return hash(token_id) % num_workers


class ShardedApplier:
    """Feeds events to ``handler`` from ``num_workers`` shard queues.

    After a handler failure the shard discards the rest of the batch; the
    failure is re-raised from :meth:`drain` so the caller keeps its watermark.
    """

    def __init__(
        self,
        handler: Callable[[DomainEvent], object],
        num_workers: int = 4,
        queue_size: int = 1000,
    ) -> None:
        if num_workers < 1:
            raise ValueError("num_workers must be >= 1")
        self._handler = handler
        self.num_workers = num_workers
        self._queue_size = queue_size
        self._queues: list[asyncio.Queue] = []
        self._tasks: list[asyncio.Task] = []
        self._errors: list[BaseException | None] = [None] * num_workers
        self._outcomes: Counter = Counter()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._queues = [asyncio.Queue(maxsize=self._queue_size) for _ in range(self.num_workers)]
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"ingest-shard-{i}")
            for i in range(self.num_workers)
        ]
        log.debug("shards_started", workers=self.num_workers)

    async def submit(self, event: DomainEvent) -> None:
        """Enqueue an event; waits while its shard queue is full."""
        if not self._tasks:
            raise RuntimeError("ShardedApplier.start() has not been called")
        await self._queues[shard_for(event.token_id, self.num_workers)].put(event)

    async def drain(self) -> Counter:
        """Wait until every queued event is handled. Returns outcome counts."""
        await asyncio.gather(*(q.join() for q in self._queues))
        errors = [e for e in self._errors if e is not None]
        outcomes = self._outcomes
        self._errors = [None] * self.num_workers
        self._outcomes = Counter()
        if errors:
            raise errors[0]
        return outcomes

    async def stop(self) -> None:
        """Finish queued work, then shut the workers down."""
        if not self._tasks:
            return
        for q in self._queues:
            await q.put(None)
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.debug("shards_stopped")

    async def _worker(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            event = await queue.get()
            try:
                if event is None:
                    return
                if self._errors[index] is not None:
                    continue
                try:
                    outcome = self._handler(event)
                    self._outcomes[getattr(outcome, "value", outcome)] += 1
                except Exception as exc:
                    self._errors[index] = exc
                    log.error(
                        "shard_apply_failed",
                        shard=index,
                        token_id=event.token_id,
                        tx_hash=event.transaction_hash,
                        error=str(exc),
                    )
            finally:
                queue.task_done()
            # Let other shards run between events.
            await asyncio.sleep(0)
