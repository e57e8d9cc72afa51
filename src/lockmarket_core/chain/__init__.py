"""Chain access: JSON-RPC client and event ABI codec."""

from lockmarket_core.chain.abi import EVENT_SPECS, LogDecodeError, decode_raw, encode_log, topic_for
from lockmarket_core.chain.rpc import BlockHeader, ChainRpcClient, RpcError

__all__ = [
    "EVENT_SPECS",
    "BlockHeader",
    "ChainRpcClient",
    "LogDecodeError",
    "RpcError",
    "decode_raw",
    "encode_log",
    "topic_for",
]
