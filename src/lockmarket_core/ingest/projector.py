"""Idempotent projection of domain events onto the mirrored read models.

``Projector.apply`` is the only writer of ``listings``, ``positions`` and
``reconciliation_flags``. Each event is applied in its own transaction: the
``domain_events`` row (the idempotency key) and every derived mutation commit
together or not at all.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from lockmarket_core.db.tables import (
    ChainBlockRow,
    DomainEventRow,
    ListingRow,
    PaymentTokenRow,
    PositionRow,
    ReconciliationFlagRow,
)
from lockmarket_core.ingest.decoder import payload_to_json
from lockmarket_core.market.fees import to_decimal
from lockmarket_core.models.events import (
    DomainEvent,
    ListingCancelled,
    Lock,
    NFTListed,
    NFTSold,
    Transfer,
    Withdraw,
)
from lockmarket_core.models.market import ListingStatus, PositionStatus

log = structlog.get_logger("projector")

# Decimals assumed for a payment token that was never registered.
DEFAULT_DECIMALS = 18


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"


class StorageError(Exception):
    """A durable write failed; the event was not applied."""


class FlagKind:
    SUPERSEDED_LISTING = "superseded_listing"
    MISSING_LISTING_FOR_SALE = "missing_listing_for_sale"
    MISSING_LISTING_FOR_CANCEL = "missing_listing_for_cancel"
    SOLD_AFTER_DEADLINE = "sold_after_deadline"
    LOCKED_AMOUNT_MISMATCH = "locked_amount_mismatch"


def _from_unix(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def event_from_row(row: DomainEventRow) -> DomainEvent:
    return DomainEvent(
        transaction_hash=row.transaction_hash,
        log_index=row.log_index,
        block_number=row.block_number,
        block_hash=row.block_hash,
        block_timestamp=row.block_timestamp,
        contract_address=row.contract_address,
        payload=row.decoded_data,
    )


class Projector:
    """Applies :class:`DomainEvent` instances to a SQLAlchemy session."""

    def __init__(self, lock_token_decimals: int = 18) -> None:
        self.lock_token_decimals = lock_token_decimals
        self._decimals: dict[str, int] = {}

    # ── Public API ───────────────────────────────────────────

    def apply(self, session: Session, event: DomainEvent) -> ApplyOutcome:
        """Apply one event. Re-applying an already-stored event is a no-op."""
        try:
            if self._is_applied(session, event):
                log.debug("event_ignored", tx_hash=event.transaction_hash, log_index=event.log_index)
                return ApplyOutcome.IGNORED

            session.add(DomainEventRow(
                transaction_hash=event.transaction_hash,
                log_index=event.log_index,
                block_number=event.block_number,
                block_hash=event.block_hash,
                block_timestamp=event.block_timestamp,
                contract_address=event.contract_address,
                event_name=event.event_name,
                token_id=event.token_id,
                decoded_data=payload_to_json(event),
                created_at=datetime.now(timezone.utc),
            ))
            self._project(session, event)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            # Another writer stored the same key first.
            if self._is_applied(session, event):
                return ApplyOutcome.IGNORED
            raise StorageError(str(exc)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc)) from exc

        log.debug(
            "event_applied",
            event_name=event.event_name,
            token_id=event.token_id,
            block_number=event.block_number,
            tx_hash=event.transaction_hash,
        )
        return ApplyOutcome.APPLIED

    def rollback_from(self, session: Session, height: int) -> set[int]:
        """Undo everything derived from blocks ``>= height``.

        Events at or above ``height`` are deleted; the listings, positions and
        flags of every token they touched are rebuilt by replaying that token's
        remaining events. Returns the affected token ids.
        """
        try:
            touched = set(session.execute(
                select(DomainEventRow.token_id)
                .where(DomainEventRow.block_number >= height)
                .distinct()
            ).scalars().all())

            session.execute(delete(DomainEventRow).where(DomainEventRow.block_number >= height))
            session.execute(delete(ChainBlockRow).where(ChainBlockRow.number >= height))

            if touched:
                token_ids = sorted(touched)
                session.execute(delete(ListingRow).where(ListingRow.token_id.in_(token_ids)))
                session.execute(delete(PositionRow).where(PositionRow.token_id.in_(token_ids)))
                session.execute(
                    delete(ReconciliationFlagRow).where(ReconciliationFlagRow.token_id.in_(token_ids))
                )
                remaining = session.execute(
                    select(DomainEventRow)
                    .where(DomainEventRow.token_id.in_(token_ids))
                    .order_by(DomainEventRow.block_number, DomainEventRow.log_index)
                ).scalars().all()
                for row in remaining:
                    self._project(session, event_from_row(row))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc)) from exc

        log.warning("rolled_back", height=height, tokens=sorted(touched))
        return touched

    # ── Dispatch ─────────────────────────────────────────────

    def _is_applied(self, session: Session, event: DomainEvent) -> bool:
        return session.execute(
            select(DomainEventRow.id).where(
                DomainEventRow.transaction_hash == event.transaction_hash,
                DomainEventRow.log_index == event.log_index,
            )
        ).first() is not None

    def _project(self, session: Session, event: DomainEvent) -> None:
        payload = event.payload
        if isinstance(payload, NFTListed):
            self._on_listed(session, event, payload)
        elif isinstance(payload, NFTSold):
            self._on_sold(session, event, payload)
        elif isinstance(payload, ListingCancelled):
            self._on_cancelled(session, event, payload)
        elif isinstance(payload, Transfer):
            self._on_transfer(session, event, payload)
        elif isinstance(payload, Lock):
            self._on_lock(session, event, payload)
        elif isinstance(payload, Withdraw):
            self._on_withdraw(session, event, payload)

    # ── Listings ─────────────────────────────────────────────

    def _on_listed(self, session: Session, event: DomainEvent, p: NFTListed) -> None:
        created_at = event.block_timestamp
        if p.deadline is not None:
            deadline = _from_unix(p.deadline)
        else:
            deadline = created_at + timedelta(seconds=p.duration)

        current = self._active_listing(session, p.token_id)
        if current is not None:
            if current.deadline < created_at:
                # Lapsed listing replaced by a relist.
                current.status = ListingStatus.EXPIRED.value
            else:
                current.status = ListingStatus.CANCELLED.value
                current.cancelled_at = created_at
                self._flag(
                    session, event, FlagKind.SUPERSEDED_LISTING,
                    superseded_listing_id=current.id,
                    superseded_tx_hash=current.transaction_hash,
                )
            # The partial unique index must see the old row leave ``active`` first.
            session.flush()

        session.add(ListingRow(
            token_id=p.token_id,
            seller_address=p.seller,
            price_raw=p.price,
            price_formatted=to_decimal(p.price, self._token_decimals(session, p.payment_token)),
            payment_token_address=p.payment_token,
            duration_seconds=p.duration,
            created_at=created_at,
            deadline=deadline,
            status=ListingStatus.ACTIVE.value,
            transaction_hash=event.transaction_hash,
            block_number=event.block_number,
        ))
        session.flush()

    def _on_sold(self, session: Session, event: DomainEvent, p: NFTSold) -> None:
        sold_at = event.block_timestamp
        listing = self._active_listing(session, p.token_id)
        if listing is None:
            listing = ListingRow(
                token_id=p.token_id,
                seller_address=p.seller,
                price_raw=p.price,
                price_formatted=to_decimal(p.price, self._token_decimals(session, p.payment_token)),
                payment_token_address=p.payment_token,
                duration_seconds=0,
                created_at=sold_at,
                deadline=sold_at,
                transaction_hash=event.transaction_hash,
                block_number=event.block_number,
            )
            session.add(listing)
            self._flag(session, event, FlagKind.MISSING_LISTING_FOR_SALE, price=str(p.price))
        elif listing.deadline < sold_at:
            self._flag(
                session, event, FlagKind.SOLD_AFTER_DEADLINE,
                listing_id=listing.id, deadline=listing.deadline.isoformat(),
            )

        listing.status = ListingStatus.SOLD.value
        listing.buyer_address = p.buyer
        listing.sold_at = sold_at
        listing.platform_fee_raw = p.platform_fee
        listing.seller_amount_raw = p.seller_amount
        listing.sale_transaction_hash = event.transaction_hash

        position = self._ensure_position(session, event, owner=p.buyer)
        position.owner_address = p.buyer
        session.flush()

    def _on_cancelled(self, session: Session, event: DomainEvent, p: ListingCancelled) -> None:
        listing = self._active_listing(session, p.token_id)
        if listing is None:
            listing = ListingRow(
                token_id=p.token_id,
                seller_address=p.seller,
                price_raw=0,
                price_formatted=0,
                payment_token_address=None,
                duration_seconds=0,
                created_at=event.block_timestamp,
                deadline=event.block_timestamp,
                transaction_hash=event.transaction_hash,
                block_number=event.block_number,
            )
            session.add(listing)
            self._flag(session, event, FlagKind.MISSING_LISTING_FOR_CANCEL)
        listing.status = ListingStatus.CANCELLED.value
        listing.cancelled_at = event.block_timestamp
        session.flush()

    # ── Positions ────────────────────────────────────────────

    def _on_transfer(self, session: Session, event: DomainEvent, p: Transfer) -> None:
        position = session.get(PositionRow, p.token_id)
        if p.is_mint:
            if position is None:
                self._ensure_position(session, event, owner=p.to_address)
            else:
                position.owner_address = p.to_address
                position.last_block_number = event.block_number
            return

        position = self._ensure_position(session, event, owner=p.from_address)
        position.last_block_number = event.block_number
        if p.is_burn:
            self._close(position, event, "burned")
            return
        # Equal already when the matching NFTSold came first.
        position.owner_address = p.to_address

    def _on_lock(self, session: Session, event: DomainEvent, p: Lock) -> None:
        position = self._ensure_position(session, event, owner=p.provider)
        position.provider_address = p.provider
        position.last_block_number = event.block_number
        lock_start = _from_unix(p.ts)
        lock_end = _from_unix(p.locktime)

        if position.locked_amount_raw is None:
            position.locked_amount_raw = p.value
            position.locked_amount = to_decimal(p.value, self.lock_token_decimals)
            position.lock_start = lock_start
        elif p.value and p.value != position.locked_amount_raw:
            self._flag(
                session, event, FlagKind.LOCKED_AMOUNT_MISMATCH,
                recorded=str(position.locked_amount_raw), observed=str(p.value),
            )
        if position.lock_start is None:
            position.lock_start = lock_start

        if lock_end >= position.lock_start:
            position.lock_end = lock_end
        else:
            log.warning(
                "lock_window_rejected",
                token_id=p.token_id,
                lock_start=position.lock_start.isoformat(),
                lock_end=lock_end.isoformat(),
            )
        session.flush()

    def _on_withdraw(self, session: Session, event: DomainEvent, p: Withdraw) -> None:
        position = self._ensure_position(session, event, owner=p.provider)
        position.last_block_number = event.block_number
        self._close(position, event, "withdrawn")

    # ── Helpers ──────────────────────────────────────────────

    @staticmethod
    def _close(position: PositionRow, event: DomainEvent, closure_type: str) -> None:
        if position.status == PositionStatus.CLOSED.value:
            return
        position.status = PositionStatus.CLOSED.value
        position.closure_type = closure_type
        position.closed_at = event.block_timestamp
        position.transferable = False

    @staticmethod
    def _active_listing(session: Session, token_id: int) -> ListingRow | None:
        return session.execute(
            select(ListingRow).where(
                ListingRow.token_id == token_id,
                ListingRow.status == ListingStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _ensure_position(session: Session, event: DomainEvent, owner: str) -> PositionRow:
        position = session.get(PositionRow, event.token_id)
        if position is None:
            position = PositionRow(
                token_id=event.token_id,
                owner_address=owner,
                transferable=True,
                status=PositionStatus.OPEN.value,
                created_at=event.block_timestamp,
                last_block_number=event.block_number,
            )
            session.add(position)
            session.flush()
        return position

    def _token_decimals(self, session: Session, address: str) -> int:
        if address not in self._decimals:
            row = session.get(PaymentTokenRow, address)
            if row is None:
                log.warning("unknown_payment_token", address=address)
                return DEFAULT_DECIMALS
            self._decimals[address] = row.decimals
        return self._decimals[address]

    @staticmethod
    def _flag(session: Session, event: DomainEvent, kind: str, **detail) -> None:
        session.add(ReconciliationFlagRow(
            token_id=event.token_id,
            kind=kind,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            detail=detail or None,
            resolved=False,
            created_at=datetime.now(timezone.utc),
        ))
        log.warning(
            "reconciliation_flag",
            kind=kind,
            token_id=event.token_id,
            tx_hash=event.transaction_hash,
            **detail,
        )
