"""Tests for the ingestion loop against an in-memory chain."""

import asyncio

import pytest
from sqlalchemy import select

from lockmarket_core.chain.rpc import RpcError
from lockmarket_core.config.schema import AppConfig
from lockmarket_core.db.tables import ChainBlockRow, DomainEventRow, ListingRow
from lockmarket_core.ingest.pipeline import IngestionPipeline, load_cursor
from lockmarket_core.ingest.projector import Projector, StorageError
from lockmarket_core.ingest.runner import build_pipeline

from helpers import (
    BUYER,
    MARKETPLACE,
    ONE_USDC,
    POSITION_NFT,
    SELLER,
    cancelled,
    header,
    listed,
    make_log,
    transfer,
)


class FakeChain:
    """Serves logs and headers; ``forks`` maps a height to the branch it is on."""

    def __init__(self, head=0):
        self.head = head
        self.logs: list[dict] = []
        self.forks: dict[int, str] = {}
        self.rpc_failures = 0
        self.on_latest = None
        self.latest_calls = 0

    def add(self, payload, block, log_index=0):
        self.logs.append(make_log(payload, block, log_index, fork=self.forks.get(block, "a")))

    def reorg(self, from_block, fork="b"):
        """Drop logs from ``from_block`` up and move those heights to ``fork``."""
        self.logs = [l for l in self.logs if int(l["blockNumber"], 16) < from_block]
        for n in range(from_block, self.head + 1):
            self.forks[n] = fork

    async def latest_block(self):
        self.latest_calls += 1
        if self.on_latest is not None:
            self.on_latest(self.latest_calls)
        if self.rpc_failures:
            self.rpc_failures -= 1
            raise RpcError("node unavailable")
        return self.head

    async def get_block(self, number):
        return header(number, self.forks.get(number, "a"))

    async def get_logs(self, from_block, to_block, addresses):
        assert set(addresses) == {MARKETPLACE, POSITION_NFT}
        found = [l for l in self.logs if from_block <= int(l["blockNumber"], 16) <= to_block]
        return sorted(found, key=lambda l: (int(l["blockNumber"], 16), int(l["logIndex"], 16)))


class FlakyProjector(Projector):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def apply(self, session, event):
        if self.failures:
            self.failures -= 1
            raise StorageError("connection reset")
        return super().apply(session, event)


@pytest.fixture
def session(registered_tokens):
    return registered_tokens


def _pipeline(chain, session, projector=None, **kwargs):
    kwargs.setdefault("confirmations", 2)
    kwargs.setdefault("num_workers", 2)
    kwargs.setdefault("retry_initial_s", 0)
    kwargs.setdefault("poll_interval_s", 0)
    return IngestionPipeline(
        chain,
        session,
        projector or Projector(),
        addresses=[MARKETPLACE, POSITION_NFT],
        **kwargs,
    )


def _listings(session):
    return session.execute(select(ListingRow).order_by(ListingRow.id)).scalars().all()


def _event_count(session):
    return len(session.execute(select(DomainEventRow)).scalars().all())


class TestRunOnce:
    def test_only_confirmed_blocks_are_applied(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, 10 * ONE_USDC), 5)
        chain.add(listed(2, 20 * ONE_USDC), 10)

        async def scenario():
            pipeline = _pipeline(chain, session, confirmations=5)
            first = await pipeline.run_once()
            cursor = load_cursor(session, "marketplace")
            chain.head = 20
            second = await pipeline.run_once()
            return first, cursor, second

        first, cursor, second = asyncio.run(scenario())
        assert first == 1
        assert cursor == (7, -1)
        assert second == 1
        assert sorted(l.token_id for l in _listings(session)) == [1, 2]
        assert load_cursor(session, "marketplace") == (15, -1)

    def test_nothing_to_do_when_caught_up(self, session):
        chain = FakeChain(head=1)

        async def scenario():
            pipeline = _pipeline(chain, session, start_block=5)
            applied = await pipeline.run_once()
            return applied, pipeline.caught_up

        assert asyncio.run(scenario()) == (0, True)
        assert load_cursor(session, "marketplace") is None

    def test_block_range_is_capped(self, session):
        chain = FakeChain(head=100)
        chain.add(listed(1, ONE_USDC), 3)
        chain.add(listed(2, ONE_USDC), 40)

        async def scenario():
            pipeline = _pipeline(chain, session, max_block_range=10)
            applied = await pipeline.run_once()
            return applied, pipeline.caught_up

        assert asyncio.run(scenario()) == (1, False)
        assert load_cursor(session, "marketplace") == (9, -1)

    def test_watermark_records_last_log_in_final_block(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 10, 0)
        chain.add(listed(2, ONE_USDC), 10, 3)

        asyncio.run(_pipeline(chain, session).run_once())
        assert load_cursor(session, "marketplace") == (10, 3)

    def test_restart_resumes_without_duplicates(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 10, 0)
        chain.add(listed(2, ONE_USDC), 10, 1)

        async def scenario():
            first = _pipeline(chain, session)
            await first.run_once()

            chain.add(cancelled(1), 10, 2)
            chain.head = 14
            second = _pipeline(chain, session)
            return await second.run_once()

        assert asyncio.run(scenario()) == 1
        assert _event_count(session) == 3
        assert {l.token_id: l.status for l in _listings(session)} == {1: "cancelled", 2: "active"}

    def test_undecodable_log_is_skipped(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 4)
        bad = make_log(transfer(2, SELLER, BUYER), 5)
        bad["topics"] = bad["topics"][:3]
        chain.logs.append(bad)
        chain.add(cancelled(1), 6)

        applied = asyncio.run(_pipeline(chain, session).run_once())
        assert applied == 2
        assert load_cursor(session, "marketplace") == (10, -1)

    def test_storage_failure_keeps_watermark(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 4)
        chain.add(cancelled(1), 6)
        projector = FlakyProjector(failures=1)

        async def scenario():
            pipeline = _pipeline(chain, session, projector, num_workers=1)
            with pytest.raises(StorageError):
                await pipeline.run_once()
            assert load_cursor(session, "marketplace") is None
            return await pipeline.run_once()

        assert asyncio.run(scenario()) == 2
        assert [l.status for l in _listings(session)] == ["cancelled"]

    def test_block_headers_are_recorded(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 4)

        asyncio.run(_pipeline(chain, session).run_once())
        numbers = session.execute(select(ChainBlockRow.number).order_by(ChainBlockRow.number)).scalars().all()
        assert numbers == [4, 10]


class TestReorg:
    def test_orphaned_events_are_rolled_back_and_replaced(self, session):
        chain = FakeChain(head=20)
        chain.add(listed(1, 10 * ONE_USDC), 5)
        chain.add(listed(2, 20 * ONE_USDC), 12)

        async def scenario():
            pipeline = _pipeline(chain, session)
            await pipeline.run_once()

            chain.reorg(from_block=10)
            chain.add(listed(2, 25 * ONE_USDC), 13)
            chain.head = 22
            await pipeline.run_once()

        asyncio.run(scenario())
        listings = _listings(session)
        assert {l.token_id: l.price_raw for l in listings} == {1: 10 * ONE_USDC, 2: 25 * ONE_USDC}
        assert all(l.status == "active" for l in listings)
        hashes = dict(session.execute(select(ChainBlockRow.number, ChainBlockRow.hash)).all())
        assert hashes[5] == header(5).hash
        assert hashes[20] == header(20, "b").hash
        assert load_cursor(session, "marketplace") == (20, -1)

    def test_no_rollback_when_chain_is_unchanged(self, session):
        chain = FakeChain(head=20)
        chain.add(listed(1, 10 * ONE_USDC), 5)

        async def scenario():
            pipeline = _pipeline(chain, session)
            await pipeline.run_once()
            chain.head = 25
            await pipeline.run_once()

        asyncio.run(scenario())
        assert _event_count(session) == 1
        assert load_cursor(session, "marketplace") == (23, -1)

    def test_reorg_between_stored_blocks_rereads_the_gap(self, session):
        chain = FakeChain(head=30)
        chain.add(listed(1, 10 * ONE_USDC), 5)

        async def scenario():
            pipeline = _pipeline(chain, session, max_block_range=10)
            for _ in range(5):
                await pipeline.run_once()
            stored = set(session.execute(select(ChainBlockRow.number)).scalars().all())
            assert 12 not in stored and 15 not in stored

            chain.reorg(from_block=12)
            chain.add(listed(2, 20 * ONE_USDC), 15)
            for _ in range(5):
                await pipeline.run_once()

        asyncio.run(scenario())
        prices = {l.token_id: l.price_raw for l in _listings(session)}
        assert prices == {1: 10 * ONE_USDC, 2: 20 * ONE_USDC}
        assert load_cursor(session, "marketplace") == (28, -1)

    def test_reorg_below_every_stored_block_rolls_back_from_the_oldest(self, session):
        chain = FakeChain(head=20)
        chain.add(listed(1, 10 * ONE_USDC), 5)

        async def scenario():
            pipeline = _pipeline(chain, session)
            await pipeline.run_once()

            chain.reorg(from_block=3)
            chain.add(listed(1, 30 * ONE_USDC), 5)
            await pipeline.run_once()

        asyncio.run(scenario())
        (listing,) = _listings(session)
        assert listing.price_raw == 30 * ONE_USDC
        hashes = dict(session.execute(select(ChainBlockRow.number, ChainBlockRow.hash)).all())
        assert hashes[5] == header(5, "b").hash


class TestRunLoop:
    def test_stop_ends_loop(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 4)

        async def scenario():
            pipeline = _pipeline(chain, session)

            def on_latest(calls):
                if calls == 2:
                    pipeline.stop()

            chain.on_latest = on_latest
            await asyncio.wait_for(pipeline.run(), timeout=5)

        asyncio.run(scenario())
        assert chain.latest_calls == 2
        assert len(_listings(session)) == 1

    def test_rpc_errors_are_retried(self, session):
        chain = FakeChain(head=12)
        chain.add(listed(1, ONE_USDC), 4)
        chain.rpc_failures = 2

        async def scenario():
            pipeline = _pipeline(chain, session)

            def on_latest(calls):
                if calls == 3:
                    pipeline.stop()

            chain.on_latest = on_latest
            await asyncio.wait_for(pipeline.run(), timeout=5)

        asyncio.run(scenario())
        assert chain.latest_calls == 3
        assert len(_listings(session)) == 1


class TestBuildPipeline:
    def test_wires_config(self, session):
        config = AppConfig.model_validate({
            "chain": {"start_block": 100, "confirmations": 3, "max_block_range": 50},
            "ingest": {"cursor_name": "hemi-mainnet", "num_workers": 2},
        })
        pipeline = build_pipeline(config, FakeChain(), session)
        assert pipeline.start_block == 100
        assert pipeline.confirmations == 3
        assert pipeline.max_block_range == 50
        assert pipeline.cursor_name == "hemi-mainnet"
