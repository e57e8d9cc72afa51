"""Raw chain log → :class:`DomainEvent`."""

from __future__ import annotations

from eth_abi.exceptions import DecodingError
from pydantic import TypeAdapter, ValidationError

from lockmarket_core.chain.abi import LogDecodeError, decode_raw
from lockmarket_core.chain.rpc import BlockHeader
from lockmarket_core.models.events import DomainEvent, EventPayload

_payload_adapter: TypeAdapter = TypeAdapter(EventPayload)

# Integers above this lose precision in JSON consumers that parse numbers as doubles.
_JSON_SAFE_INT = 2**53 - 1


class DecodeError(Exception):
    """A chain log could not be turned into a known domain event."""

    def __init__(self, message: str, raw: dict | None = None) -> None:
        super().__init__(message)
        self.raw = raw or {}

    @property
    def transaction_hash(self) -> str | None:
        return self.raw.get("transactionHash")

    @property
    def log_index(self) -> int | None:
        value = self.raw.get("logIndex")
        if value is None:
            return None
        return int(value, 16) if isinstance(value, str) else value


def _hex_int(value: str | int) -> int:
    return int(value, 16) if isinstance(value, str) else value


def decode_log(raw: dict, header: BlockHeader) -> DomainEvent:
    """Decode one ``eth_getLogs`` entry. Raises :class:`DecodeError` on any mismatch."""
    try:
        event_name, fields = decode_raw(raw)
        payload = _payload_adapter.validate_python({"event_name": event_name, **fields})
        block_number = _hex_int(raw["blockNumber"])
        if block_number != header.number:
            raise DecodeError(f"log block {block_number} does not match header {header.number}", raw)
        return DomainEvent(
            transaction_hash=raw["transactionHash"],
            log_index=_hex_int(raw["logIndex"]),
            block_number=block_number,
            block_hash=raw.get("blockHash") or header.hash,
            block_timestamp=header.timestamp,
            contract_address=raw["address"],
            payload=payload,
        )
    except DecodeError:
        raise
    except (LogDecodeError, DecodingError, ValidationError, KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"undecodable log: {exc}", raw) from exc


def payload_to_json(event: DomainEvent) -> dict:
    """Payload as stored in ``domain_events.decoded_data``; large integers become strings."""
    data = event.payload.model_dump()
    return {
        key: str(value) if isinstance(value, int) and not isinstance(value, bool)
        and value > _JSON_SAFE_INT else value
        for key, value in data.items()
    }
