"""Domain events: decoded chain logs, the ingestion pipeline's unit of work."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Token ids are mirrored into BIGINT columns.
MAX_TOKEN_ID = 2**63 - 1

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Largest unix timestamp a datetime can represent (9999-12-31T23:59:59Z).
MAX_TIMESTAMP = 253_402_300_799


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: int = Field(ge=0, le=MAX_TOKEN_ID)

    @field_validator(
        "seller", "buyer", "payment_token", "from_address", "to_address", "provider",
        mode="before", check_fields=False,
    )
    @classmethod
    def _lower_address(cls, value: str) -> str:
        if not isinstance(value, str) or not value.startswith("0x"):
            raise ValueError(f"not an address: {value!r}")
        return value.lower()


class NFTListed(_Payload):
    event_name: Literal["NFTListed"] = "NFTListed"
    seller: str
    price: int = Field(gt=0)
    payment_token: str
    duration: int = Field(gt=0, le=MAX_TIMESTAMP)
    deadline: int | None = Field(default=None, ge=0, le=MAX_TIMESTAMP)


class NFTSold(_Payload):
    event_name: Literal["NFTSold"] = "NFTSold"
    seller: str
    buyer: str
    price: int = Field(ge=0)
    payment_token: str
    platform_fee: int = Field(ge=0)
    seller_amount: int = Field(ge=0)


class ListingCancelled(_Payload):
    event_name: Literal["ListingCancelled"] = "ListingCancelled"
    seller: str


class Transfer(_Payload):
    event_name: Literal["Transfer"] = "Transfer"
    from_address: str
    to_address: str

    @property
    def is_mint(self) -> bool:
        return self.from_address == ZERO_ADDRESS

    @property
    def is_burn(self) -> bool:
        return self.to_address == ZERO_ADDRESS


class Lock(_Payload):
    event_name: Literal["Lock"] = "Lock"
    provider: str
    value: int = Field(ge=0)
    locktime: int = Field(ge=0, le=MAX_TIMESTAMP)
    deposit_type: int = 0
    ts: int = Field(ge=0, le=MAX_TIMESTAMP)

    @model_validator(mode="after")
    def _unlock_not_before_start(self) -> Lock:
        if self.locktime < self.ts:
            raise ValueError(f"lock ends ({self.locktime}) before it starts ({self.ts})")
        return self


class Withdraw(_Payload):
    event_name: Literal["Withdraw"] = "Withdraw"
    provider: str
    value: int = Field(ge=0)
    ts: int = Field(ge=0, le=MAX_TIMESTAMP)


EventPayload = Annotated[
    Union[NFTListed, NFTSold, ListingCancelled, Transfer, Lock, Withdraw],
    Field(discriminator="event_name"),
]


class DomainEvent(BaseModel):
    """One decoded log with its chain provenance. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    transaction_hash: str
    log_index: int = Field(ge=0)
    block_number: int = Field(ge=0)
    block_hash: str | None = None
    block_timestamp: datetime
    contract_address: str
    payload: EventPayload

    @field_validator("transaction_hash", "contract_address", "block_hash")
    @classmethod
    def _lower_hex(cls, value: str | None) -> str | None:
        return value.lower() if value is not None else None

    @property
    def event_name(self) -> str:
        return self.payload.event_name

    @property
    def token_id(self) -> int:
        return self.payload.token_id

    @property
    def key(self) -> tuple[str, int]:
        """Idempotency key."""
        return (self.transaction_hash, self.log_index)

    @property
    def position(self) -> tuple[int, int]:
        """Ordering key within the chain's log."""
        return (self.block_number, self.log_index)
