"""Price sampler process.

Run: python -m lockmarket_core.oracle [--config config.yaml]
"""

from __future__ import annotations

import argparse
import asyncio

from lockmarket_core.config import load_config
from lockmarket_core.db import init_engine
from lockmarket_core.db.engine import get_session
from lockmarket_core.logging import get_logger, setup_logging
from lockmarket_core.market.tokens import register_payment_tokens
from lockmarket_core.oracle.feed import PriceFeedClient
from lockmarket_core.oracle.sampler import PriceSampler

log = get_logger(__name__)


async def run(config_path: str | None = None) -> None:
    cfg = load_config(config_path)
    setup_logging(level=cfg.logging.level, log_format=cfg.logging.format)

    init_engine(cfg.database.url)
    session_gen = get_session()
    session = next(session_gen)

    feed = PriceFeedClient(base_url=cfg.price_feed.base_url, timeout_s=cfg.price_feed.timeout_s)
    sampler = PriceSampler(feed, session, cfg.payment_tokens, interval_s=cfg.price_feed.interval_s)

    log.info("starting price sampler", interval_s=cfg.price_feed.interval_s)
    try:
        register_payment_tokens(session, cfg.payment_tokens)
        await sampler.start()
        # The sampler loop runs until cancelled.
        await asyncio.Event().wait()
    finally:
        await sampler.stop()
        session.close()
        await feed.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="USD price sampler")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    args = parser.parse_args()
    asyncio.run(run(args.config))


if __name__ == "__main__":
    main()
