"""Event ABI codec for the marketplace and position-NFT contracts.

Each event is described by its canonical signature and an ordered list of
arguments; indexed arguments travel in ``topics[1:]``, the rest are
ABI-encoded in ``data``. Decoded values are keyed by the payload field
names used in :mod:`lockmarket_core.models.events`.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_abi import decode, encode
from web3 import Web3


class LogDecodeError(ValueError):
    """A raw log does not match any known event layout."""


@dataclass(frozen=True)
class EventArg:
    field: str
    abi_type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    name: str
    args: tuple[EventArg, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(a.abi_type for a in self.args)})"

    @property
    def topic0(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.signature))

    @property
    def indexed(self) -> tuple[EventArg, ...]:
        return tuple(a for a in self.args if a.indexed)

    @property
    def unindexed(self) -> tuple[EventArg, ...]:
        return tuple(a for a in self.args if not a.indexed)


EVENT_SPECS: tuple[EventSpec, ...] = (
    EventSpec("NFTListed", (
        EventArg("token_id", "uint256", indexed=True),
        EventArg("seller", "address", indexed=True),
        EventArg("price", "uint256"),
        EventArg("payment_token", "address"),
        EventArg("duration", "uint256"),
        EventArg("deadline", "uint256"),
    )),
    EventSpec("NFTSold", (
        EventArg("token_id", "uint256", indexed=True),
        EventArg("seller", "address", indexed=True),
        EventArg("buyer", "address", indexed=True),
        EventArg("price", "uint256"),
        EventArg("payment_token", "address"),
        EventArg("platform_fee", "uint256"),
        EventArg("seller_amount", "uint256"),
    )),
    EventSpec("ListingCancelled", (
        EventArg("token_id", "uint256", indexed=True),
        EventArg("seller", "address", indexed=True),
    )),
    EventSpec("Transfer", (
        EventArg("from_address", "address", indexed=True),
        EventArg("to_address", "address", indexed=True),
        EventArg("token_id", "uint256", indexed=True),
    )),
    EventSpec("Lock", (
        EventArg("provider", "address", indexed=True),
        EventArg("token_id", "uint256", indexed=True),
        EventArg("value", "uint256"),
        EventArg("locktime", "uint256"),
        EventArg("deposit_type", "uint8"),
        EventArg("ts", "uint256"),
    )),
    EventSpec("Withdraw", (
        EventArg("provider", "address", indexed=True),
        EventArg("token_id", "uint256", indexed=True),
        EventArg("value", "uint256"),
        EventArg("ts", "uint256"),
    )),
)

_BY_NAME = {spec.name: spec for spec in EVENT_SPECS}
_BY_TOPIC = {spec.topic0: spec for spec in EVENT_SPECS}


def topic_for(event_name: str) -> str:
    """topic0 (keccak of the canonical signature) for a known event."""
    return _BY_NAME[event_name].topic0


def _hex_to_bytes(value: str) -> bytes:
    value = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(value)


def _decode_topic(abi_type: str, topic: str) -> int | str:
    raw = _hex_to_bytes(topic)
    if len(raw) != 32:
        raise LogDecodeError(f"topic is {len(raw)} bytes, expected 32")
    if abi_type == "address":
        return "0x" + raw[-20:].hex()
    return int.from_bytes(raw, "big")


def _encode_topic(abi_type: str, value: int | str) -> str:
    if abi_type == "address":
        return "0x" + "00" * 12 + str(value).lower().removeprefix("0x")
    return "0x" + int(value).to_bytes(32, "big").hex()


def decode_raw(raw: dict) -> tuple[str, dict]:
    """Decode a raw ``eth_getLogs`` entry into ``(event_name, fields)``."""
    topics = [t.lower() for t in raw.get("topics") or []]
    if not topics:
        raise LogDecodeError("log has no topics")
    spec = _BY_TOPIC.get(topics[0])
    if spec is None:
        raise LogDecodeError(f"unknown topic0 {topics[0]}")
    # ERC-20 Transfer shares topic0 with ERC-721 but indexes only two arguments.
    if len(topics) - 1 != len(spec.indexed):
        raise LogDecodeError(
            f"{spec.name} expects {len(spec.indexed)} indexed topics, got {len(topics) - 1}"
        )

    fields: dict = {}
    for arg, topic in zip(spec.indexed, topics[1:]):
        fields[arg.field] = _decode_topic(arg.abi_type, topic)

    unindexed = spec.unindexed
    if unindexed:
        values = decode([a.abi_type for a in unindexed], _hex_to_bytes(raw.get("data") or "0x"))
        for arg, value in zip(unindexed, values):
            fields[arg.field] = value.lower() if arg.abi_type == "address" else value
    return spec.name, fields


def encode_log(
    event_name: str,
    fields: dict,
    *,
    address: str,
    block_number: int,
    log_index: int,
    transaction_hash: str,
    block_hash: str | None = None,
) -> dict:
    """Build a raw log in ``eth_getLogs`` format. Inverse of :func:`decode_raw`."""
    spec = _BY_NAME[event_name]
    topics = [spec.topic0] + [_encode_topic(a.abi_type, fields[a.field]) for a in spec.indexed]
    unindexed = spec.unindexed
    data = encode(
        [a.abi_type for a in unindexed],
        [Web3.to_checksum_address(fields[a.field]) if a.abi_type == "address" else fields[a.field]
         for a in unindexed],
    )
    return {
        "address": address.lower(),
        "topics": topics,
        "data": "0x" + data.hex(),
        "blockNumber": hex(block_number),
        "blockHash": block_hash,
        "transactionHash": transaction_hash,
        "logIndex": hex(log_index),
        "removed": False,
    }
