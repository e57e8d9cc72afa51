"""Allow running the indexer as: python -m lockmarket_core.ingest [--config path]."""

import argparse

from lockmarket_core.ingest.runner import main

parser = argparse.ArgumentParser(description="Marketplace event indexer")
parser.add_argument("--config", default=None, help="Path to config.yaml")
args = parser.parse_args()
main(config_path=args.config)
