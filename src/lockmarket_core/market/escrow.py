"""Reference model of the escrow contract's listing semantics.

The deployed marketplace contract is the authority; this in-memory model
reproduces the contract the indexer mirrors, so the projection rules can be
checked against it and so consumers can dry-run a ``list``/``buy``/``cancel``
before sending a transaction. Every operation validates all preconditions
before mutating anything, and every successful operation appends the payloads
the chain would emit to :attr:`EscrowMarketplace.emitted`.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from lockmarket_core.market.errors import ListingValidationError, PreconditionError
from lockmarket_core.market.fees import Settlement, split_payment
from lockmarket_core.market.state import ensure_buyable, ensure_cancellable, is_expired, transition
from lockmarket_core.models.events import ZERO_ADDRESS, ListingCancelled, NFTListed, NFTSold, Transfer
from lockmarket_core.models.market import Listing, ListingStatus, PaymentToken

log = structlog.get_logger("escrow")


@dataclass
class _Nft:
    owner: str
    transferable: bool = True
    marketplace_approved: bool = False


class EscrowMarketplace:
    """In-memory marketplace: NFT custody, ERC-20 balances and listings."""

    def __init__(
        self,
        payment_tokens: Iterable[PaymentToken],
        fee_bps: int = 500,
        fee_recipient: str = ZERO_ADDRESS,
    ) -> None:
        self.fee_bps = fee_bps
        self.fee_recipient = fee_recipient.lower()
        self._tokens = {t.address.lower(): t for t in payment_tokens}
        self._nfts: dict[int, _Nft] = {}
        self._balances: dict[tuple[str, str], int] = defaultdict(int)
        self._allowances: dict[tuple[str, str], int] = defaultdict(int)
        self._listings: dict[int, Listing] = {}
        self.history: list[Listing] = []
        self.emitted: list[NFTListed | NFTSold | ListingCancelled | Transfer] = []

    # ── Setup helpers (positions and balances) ───────────────

    def mint(self, token_id: int, owner: str, transferable: bool = True) -> None:
        self._nfts[token_id] = _Nft(owner=owner.lower(), transferable=transferable)
        self.emitted.append(Transfer(token_id=token_id, from_address=ZERO_ADDRESS, to_address=owner))

    def set_transferable(self, token_id: int, transferable: bool) -> None:
        self._nft(token_id).transferable = transferable

    def approve_marketplace(self, owner: str, token_id: int) -> None:
        nft = self._nft(token_id)
        if nft.owner != owner.lower():
            raise PreconditionError(f"{owner} does not own token {token_id}")
        nft.marketplace_approved = True

    def credit(self, token: str, account: str, amount: int) -> None:
        self._balances[(token.lower(), account.lower())] += amount

    def approve_spend(self, token: str, owner: str, amount: int) -> None:
        self._allowances[(token.lower(), owner.lower())] = amount

    def balance_of(self, token: str, account: str) -> int:
        return self._balances[(token.lower(), account.lower())]

    def owner_of(self, token_id: int) -> str:
        return self._nft(token_id).owner

    def active_listing(self, token_id: int) -> Listing | None:
        listing = self._listings.get(token_id)
        if listing is None or listing.status is not ListingStatus.ACTIVE:
            return None
        return listing

    # ── Operations ───────────────────────────────────────────

    def list(
        self,
        caller: str,
        token_id: int,
        price: int,
        payment_token: str,
        duration_seconds: int,
        now: datetime,
    ) -> Listing:
        """Create an active listing; the NFT is reserved until settlement."""
        caller = caller.lower()
        payment_token = payment_token.lower()
        if price <= 0:
            raise ListingValidationError("price must be greater than zero")
        if duration_seconds <= 0:
            raise ListingValidationError("duration must be greater than zero")
        if payment_token not in self._tokens:
            raise ListingValidationError(f"payment token {payment_token} is not registered")

        nft = self._nft(token_id)
        if nft.owner != caller:
            raise PreconditionError(f"{caller} does not own token {token_id}")
        if not nft.transferable:
            raise PreconditionError(f"token {token_id} is not transferable")
        if not nft.marketplace_approved:
            raise PreconditionError(f"marketplace is not approved for token {token_id}")

        current = self.active_listing(token_id)
        if current is not None:
            if not is_expired(current.deadline, now):
                raise ListingValidationError(f"token {token_id} already has an active listing")
            current.status = transition(current.status, ListingStatus.EXPIRED)

        listing = Listing(
            id=len(self.history) + 1,
            token_id=token_id,
            seller_address=caller,
            price_amount=price,
            payment_token_address=payment_token,
            duration_seconds=duration_seconds,
            created_at=now,
            deadline=now + timedelta(seconds=duration_seconds),
        )
        self._listings[token_id] = listing
        self.history.append(listing)
        self.emitted.append(NFTListed(
            token_id=token_id,
            seller=caller,
            price=price,
            payment_token=payment_token,
            duration=duration_seconds,
            deadline=int(listing.deadline.timestamp()),
        ))
        log.debug("escrow_listed", token_id=token_id, price=price, payment_token=payment_token)
        return listing

    def buy(self, caller: str, token_id: int, now: datetime) -> Settlement:
        """Settle a sale atomically: fee and proceeds move, then the NFT."""
        buyer = caller.lower()
        listing = self._listings.get(token_id)
        if listing is None:
            raise PreconditionError(f"token {token_id} has no listing")
        ensure_buyable(listing, buyer, now)

        nft = self._nft(token_id)
        if nft.owner != listing.seller_address or not nft.marketplace_approved:
            raise PreconditionError(f"seller no longer controls token {token_id}")
        if not nft.transferable:
            raise PreconditionError(f"token {token_id} is not transferable")

        token = listing.payment_token_address
        if self._allowances[(token, buyer)] < listing.price_amount:
            raise PreconditionError("insufficient payment-token allowance")
        if self._balances[(token, buyer)] < listing.price_amount:
            raise PreconditionError("insufficient payment-token balance")

        settlement = split_payment(listing.price_amount, self.fee_bps)

        # All checks passed; nothing below can fail.
        self._allowances[(token, buyer)] -= settlement.price
        self._balances[(token, buyer)] -= settlement.price
        self._balances[(token, self.fee_recipient)] += settlement.fee
        self._balances[(token, listing.seller_address)] += settlement.seller_amount
        nft.owner = buyer
        nft.marketplace_approved = False
        listing.status = transition(listing.status, ListingStatus.SOLD)
        listing.buyer_address = buyer
        listing.sold_at = now

        self.emitted.append(Transfer(
            token_id=token_id, from_address=listing.seller_address, to_address=buyer,
        ))
        self.emitted.append(NFTSold(
            token_id=token_id,
            seller=listing.seller_address,
            buyer=buyer,
            price=settlement.price,
            payment_token=token,
            platform_fee=settlement.fee,
            seller_amount=settlement.seller_amount,
        ))
        log.debug("escrow_sold", token_id=token_id, fee=settlement.fee)
        return settlement

    def cancel(self, caller: str, token_id: int, now: datetime) -> Listing:
        """Withdraw an active listing. No funds move and no fee is charged."""
        listing = self._listings.get(token_id)
        if listing is None:
            raise PreconditionError(f"token {token_id} has no listing")
        ensure_cancellable(listing, caller, now)

        listing.status = transition(listing.status, ListingStatus.CANCELLED)
        listing.cancelled_at = now
        self.emitted.append(ListingCancelled(token_id=token_id, seller=listing.seller_address))
        return listing

    def _nft(self, token_id: int) -> _Nft:
        nft = self._nfts.get(token_id)
        if nft is None:
            raise PreconditionError(f"token {token_id} does not exist")
        return nft
