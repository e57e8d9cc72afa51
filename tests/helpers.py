"""Builders for chain events and raw logs shared by the ingestion tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from lockmarket_core.chain.abi import encode_log
from lockmarket_core.chain.rpc import BlockHeader
from lockmarket_core.config.schema import HEMI_ADDRESS, USDC_ADDRESS
from lockmarket_core.models.events import DomainEvent

MARKETPLACE = "0xcd50d0bdd9aeba8d1218ad5cf909946cecdfe095"
POSITION_NFT = "0x6c26476010ef735b70c75460f75855b9ed1142bf"

SELLER = "0x1111111111111111111111111111111111111111"
BUYER = "0x2222222222222222222222222222222222222222"
OTHER = "0x3333333333333333333333333333333333333333"
ZERO = "0x0000000000000000000000000000000000000000"

HEMI = HEMI_ADDRESS
USDC = USDC_ADDRESS

GENESIS = datetime(2026, 1, 1, tzinfo=timezone.utc)
BLOCK_TIME = timedelta(seconds=12)

ONE_HEMI = 10**18
ONE_USDC = 10**6


def block_time(number: int) -> datetime:
    return GENESIS + number * BLOCK_TIME


def block_hash(number: int, fork: str = "a") -> str:
    return "0x" + f"{fork}{number:x}".rjust(64, "0")


def tx_hash(n: int) -> str:
    return "0x" + f"{n:x}".rjust(64, "0")


def contract_for(payload: dict) -> str:
    if payload["event_name"] in ("Transfer", "Lock", "Withdraw"):
        return POSITION_NFT
    return MARKETPLACE


def make_event(payload: dict, block: int, log_index: int = 0, tx: int | None = None) -> DomainEvent:
    """A DomainEvent at ``block`` whose timestamp follows the 12s block clock."""
    return DomainEvent(
        transaction_hash=tx_hash(tx if tx is not None else block * 1000 + log_index),
        log_index=log_index,
        block_number=block,
        block_hash=block_hash(block),
        block_timestamp=block_time(block),
        contract_address=contract_for(payload),
        payload=payload,
    )


def make_log(payload: dict, block: int, log_index: int = 0, tx: int | None = None, fork: str = "a") -> dict:
    """A raw ``eth_getLogs`` entry for ``payload``."""
    fields = {k: v for k, v in payload.items() if k != "event_name"}
    if payload["event_name"] == "NFTListed" and "deadline" not in fields:
        fields["deadline"] = int(block_time(block).timestamp()) + fields["duration"]
    return encode_log(
        payload["event_name"],
        fields,
        address=contract_for(payload),
        block_number=block,
        log_index=log_index,
        transaction_hash=tx_hash(tx if tx is not None else block * 1000 + log_index),
        block_hash=block_hash(block, fork),
    )


def header(number: int, fork: str = "a") -> BlockHeader:
    return BlockHeader(number=number, hash=block_hash(number, fork), timestamp=block_time(number))


# ── Payload builders ─────────────────────────────────────────


def listed(token_id, price, payment_token=USDC, seller=SELLER, duration=7 * 86400, listed_at_block=None):
    payload = {
        "event_name": "NFTListed",
        "token_id": token_id,
        "seller": seller,
        "price": price,
        "payment_token": payment_token,
        "duration": duration,
    }
    if listed_at_block is not None:
        payload["deadline"] = int(block_time(listed_at_block).timestamp()) + duration
    return payload


def sold(token_id, price, payment_token=USDC, seller=SELLER, buyer=BUYER, fee_bps=500):
    fee = price * fee_bps // 10_000
    return {
        "event_name": "NFTSold",
        "token_id": token_id,
        "seller": seller,
        "buyer": buyer,
        "price": price,
        "payment_token": payment_token,
        "platform_fee": fee,
        "seller_amount": price - fee,
    }


def cancelled(token_id, seller=SELLER):
    return {"event_name": "ListingCancelled", "token_id": token_id, "seller": seller}


def transfer(token_id, from_address, to_address):
    return {
        "event_name": "Transfer",
        "token_id": token_id,
        "from_address": from_address,
        "to_address": to_address,
    }


def lock(token_id, value, start_block, lock_days=365, provider=SELLER):
    ts = int(block_time(start_block).timestamp())
    return {
        "event_name": "Lock",
        "token_id": token_id,
        "provider": provider,
        "value": value,
        "locktime": ts + lock_days * 86400,
        "deposit_type": 1,
        "ts": ts,
    }


def withdraw(token_id, value, at_block, provider=SELLER):
    return {
        "event_name": "Withdraw",
        "token_id": token_id,
        "provider": provider,
        "value": value,
        "ts": int(block_time(at_block).timestamp()),
    }
