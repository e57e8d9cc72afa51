"""Event ingestion: decode chain logs and project them onto the read models."""

from lockmarket_core.ingest.decoder import DecodeError, decode_log
from lockmarket_core.ingest.pipeline import IngestionPipeline, load_cursor, save_cursor
from lockmarket_core.ingest.projector import ApplyOutcome, FlagKind, Projector, StorageError
from lockmarket_core.ingest.shards import ShardedApplier, shard_for

__all__ = [
    "ApplyOutcome",
    "DecodeError",
    "FlagKind",
    "IngestionPipeline",
    "Projector",
    "ShardedApplier",
    "StorageError",
    "decode_log",
    "load_cursor",
    "save_cursor",
    "shard_for",
]
