"""Indexer process: wires config, RPC client, projector and pipeline together."""

from __future__ import annotations

import asyncio
import signal

import structlog

from lockmarket_core.chain.rpc import ChainRpcClient
from lockmarket_core.config import AppConfig, load_config
from lockmarket_core.db import init_engine
from lockmarket_core.db.engine import get_session
from lockmarket_core.ingest.pipeline import IngestionPipeline
from lockmarket_core.ingest.projector import Projector
from lockmarket_core.logging import setup_logging
from lockmarket_core.market.tokens import register_payment_tokens

log = structlog.get_logger("ingest")


def build_pipeline(config: AppConfig, client: ChainRpcClient, session) -> IngestionPipeline:
    chain, ingest = config.chain, config.ingest
    return IngestionPipeline(
        source=client,
        session=session,
        projector=Projector(lock_token_decimals=config.market.lock_token_decimals),
        addresses=[chain.marketplace_address, chain.position_nft_address],
        cursor_name=ingest.cursor_name,
        start_block=chain.start_block,
        confirmations=chain.confirmations,
        max_block_range=chain.max_block_range,
        num_workers=ingest.num_workers,
        queue_size=ingest.queue_size,
        poll_interval_s=chain.poll_interval_s,
        retry_initial_s=ingest.retry_initial_s,
        retry_max_s=ingest.retry_max_s,
    )


async def run_loop(config: AppConfig) -> None:
    init_engine(config.database.url)
    session_gen = get_session()
    session = next(session_gen)
    client = ChainRpcClient(
        config.chain.rpc_url,
        timeout_s=config.chain.request_timeout_s,
        max_retries=config.chain.max_retries,
    )
    pipeline = build_pipeline(config, client, session)

    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, pipeline.stop)

    log.info(
        "ingest_starting",
        rpc_url=config.chain.rpc_url,
        confirmations=config.chain.confirmations,
        workers=config.ingest.num_workers,
    )
    try:
        register_payment_tokens(session, config.payment_tokens)
        await pipeline.run()
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        session.close()
        await client.close()


def main(config_path: str | None = None) -> None:
    """Load config, set up logging and run the indexer until stopped."""
    config = load_config(config_path or "config.yaml")
    setup_logging(level=config.logging.level, log_format=config.logging.format)
    asyncio.run(run_loop(config))
