"""Read-model queries behind the HTTP surface: listings, positions, activity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal

from sqlalchemy import and_, desc, select
from sqlalchemy.orm import Session

from lockmarket_core.db.tables import DomainEventRow, ListingRow, PositionRow
from lockmarket_core.market.fees import to_decimal
from lockmarket_core.market.state import effective_status
from lockmarket_core.market.tokens import payment_token_map
from lockmarket_core.models.market import ListingStatus, PaymentToken, UsdValue
from lockmarket_core.valuation.engine import unit_price_usd, valuate

SortKey = Literal["unit_price_usd", "total_usd", "token_id"]

MAX_PAGE_SIZE = 100


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


@dataclass
class ListingFilter:
    min_usd: Decimal | None = None
    max_usd: Decimal | None = None
    min_unit_price_usd: Decimal | None = None
    max_unit_price_usd: Decimal | None = None
    min_locked: Decimal | None = None
    max_locked: Decimal | None = None
    unlock_after: datetime | None = None
    unlock_before: datetime | None = None
    payment_tokens: set[str] | None = None
    sort: SortKey = "unit_price_usd"
    descending: bool = False
    page: int = 1
    page_size: int = 20

    def __post_init__(self) -> None:
        if self.sort not in ("unit_price_usd", "total_usd", "token_id"):
            raise ValueError(f"unknown sort key {self.sort!r}")
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if self.payment_tokens is not None:
            self.payment_tokens = {a.lower() for a in self.payment_tokens}


@dataclass
class ValuedListing:
    listing: ListingRow
    position: PositionRow | None
    token: PaymentToken | None
    value: UsdValue
    unit_price: Decimal | None
    now: datetime

    def to_dict(self) -> dict:
        return serialize_listing(self.listing, self.position, self.token, self.value, self.unit_price, self.now)


def serialize_listing(
    listing: ListingRow,
    position: PositionRow | None,
    token: PaymentToken | None,
    value: UsdValue,
    unit_price: Decimal | None,
    now: datetime,
) -> dict:
    status = effective_status(listing.status, listing.deadline, now)
    return {
        "id": listing.id,
        "tokenId": listing.token_id,
        "sellerAddress": listing.seller_address,
        "price": str(listing.price_raw),
        "priceFormatted": _float(listing.price_formatted),
        "paymentTokenAddress": listing.payment_token_address,
        "paymentTokenSymbol": token.symbol if token else None,
        "durationSeconds": listing.duration_seconds,
        "createdAt": _iso(listing.created_at),
        "deadline": _iso(listing.deadline),
        "status": listing.status,
        "effectiveStatus": status.value,
        "buyable": status is ListingStatus.ACTIVE,
        "buyerAddress": listing.buyer_address,
        "soldAt": _iso(listing.sold_at),
        "cancelledAt": _iso(listing.cancelled_at),
        "transactionHash": listing.transaction_hash,
        "blockNumber": listing.block_number,
        "usdValue": _float(value.amount),
        "usdPrice": _float(value.usd_price),
        "valuationBasis": value.basis,
        "approximate": value.approximate,
        "unitPriceUsd": _float(unit_price),
        "lockedAmount": _float(position.locked_amount) if position else None,
        "lockEnd": _iso(position.lock_end) if position else None,
    }


def serialize_position(position: PositionRow) -> dict:
    return {
        "tokenId": position.token_id,
        "ownerAddress": position.owner_address,
        "lockedAmount": _float(position.locked_amount),
        "lockedAmountRaw": str(position.locked_amount_raw) if position.locked_amount_raw is not None else None,
        "lockStart": _iso(position.lock_start),
        "lockEnd": _iso(position.lock_end),
        "transferable": position.transferable,
        "status": position.status,
        "closureType": position.closure_type,
        "closedAt": _iso(position.closed_at),
    }


# ── Listings ─────────────────────────────────────────────────


def list_active_listings(session: Session, filt: ListingFilter, now: datetime) -> dict:
    """Live (active, not past deadline) listings, filtered, sorted and paginated.

    Range filters on stored columns run in SQL; USD figures depend on the
    oracle and are filtered and sorted after valuation.
    """
    conditions = [
        ListingRow.status == ListingStatus.ACTIVE.value,
        ListingRow.deadline >= now,
    ]
    if filt.payment_tokens is not None:
        conditions.append(ListingRow.payment_token_address.in_(sorted(filt.payment_tokens)))
    if filt.min_locked is not None:
        conditions.append(PositionRow.locked_amount >= filt.min_locked)
    if filt.max_locked is not None:
        conditions.append(PositionRow.locked_amount <= filt.max_locked)
    if filt.unlock_after is not None:
        conditions.append(PositionRow.lock_end >= filt.unlock_after)
    if filt.unlock_before is not None:
        conditions.append(PositionRow.lock_end <= filt.unlock_before)

    rows = session.execute(
        select(ListingRow, PositionRow)
        .outerjoin(PositionRow, PositionRow.token_id == ListingRow.token_id)
        .where(and_(*conditions))
    ).all()

    tokens = payment_token_map(session)
    valued: list[ValuedListing] = []
    for listing, position in rows:
        value = valuate(session, listing, tokens)
        unit = unit_price_usd(value, position.locked_amount if position else None)
        if not _in_range(value.amount, filt.min_usd, filt.max_usd):
            continue
        if not _in_range(unit, filt.min_unit_price_usd, filt.max_unit_price_usd):
            continue
        valued.append(ValuedListing(
            listing=listing,
            position=position,
            token=tokens.get(listing.payment_token_address or ""),
            value=value,
            unit_price=unit,
            now=now,
        ))

    valued = _sorted(valued, filt.sort, filt.descending)
    start = (filt.page - 1) * filt.page_size
    page = valued[start:start + filt.page_size]
    return {
        "listings": [v.to_dict() for v in page],
        "total": len(valued),
        "page": filt.page,
        "pageSize": filt.page_size,
    }


def _in_range(value: Decimal | None, low: Decimal | None, high: Decimal | None) -> bool:
    if low is None and high is None:
        return True
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def _sorted(items: list[ValuedListing], key: SortKey, descending: bool) -> list[ValuedListing]:
    if key == "token_id":
        return sorted(items, key=lambda v: v.listing.token_id, reverse=descending)

    def metric(v: ValuedListing) -> Decimal | None:
        return v.unit_price if key == "unit_price_usd" else v.value.amount

    # Listings without a USD figure always sort last.
    priced = [v for v in items if metric(v) is not None]
    unpriced = [v for v in items if metric(v) is None]
    priced.sort(key=lambda v: (metric(v), v.listing.token_id), reverse=descending)
    unpriced.sort(key=lambda v: v.listing.token_id)
    return priced + unpriced


def listing_detail(session: Session, token_id: int, now: datetime) -> dict | None:
    """The token's active listing, or its most recent one if none is active."""
    listing = session.execute(
        select(ListingRow)
        .where(ListingRow.token_id == token_id)
        .order_by(
            (ListingRow.status == ListingStatus.ACTIVE.value).desc(),
            desc(ListingRow.id),
        )
        .limit(1)
    ).scalar_one_or_none()
    if listing is None:
        return None

    position = session.get(PositionRow, token_id)
    tokens = payment_token_map(session)
    value = valuate(session, listing, tokens)
    unit = unit_price_usd(value, position.locked_amount if position else None)
    return serialize_listing(
        listing, position, tokens.get(listing.payment_token_address or ""), value, unit, now,
    )


# ── Positions ────────────────────────────────────────────────


def position_detail(session: Session, token_id: int) -> dict | None:
    position = session.get(PositionRow, token_id)
    if position is None:
        return None
    return serialize_position(position)


def owner_positions(
    session: Session,
    owner: str,
    now: datetime,
    include_closed: bool = False,
) -> list[dict]:
    """Positions held by ``owner`` with their live listing, ordered by lock end then token id."""
    conditions = [PositionRow.owner_address == owner.lower()]
    if not include_closed:
        conditions.append(PositionRow.status == "open")
    positions = session.execute(
        select(PositionRow)
        .where(and_(*conditions))
        .order_by(PositionRow.lock_end.is_(None), PositionRow.lock_end, PositionRow.token_id)
    ).scalars().all()
    if not positions:
        return []

    live = session.execute(
        select(ListingRow).where(
            ListingRow.token_id.in_([p.token_id for p in positions]),
            ListingRow.status == ListingStatus.ACTIVE.value,
            ListingRow.deadline >= now,
        )
    ).scalars().all()
    live_by_token = {row.token_id: row for row in live}

    tokens = payment_token_map(session)
    result = []
    for position in positions:
        item = serialize_position(position)
        listing = live_by_token.get(position.token_id)
        if listing is None:
            item["activeListing"] = None
        else:
            value = valuate(session, listing, tokens)
            item["activeListing"] = serialize_listing(
                listing,
                position,
                tokens.get(listing.payment_token_address or ""),
                value,
                unit_price_usd(value, position.locked_amount),
                now,
            )
        result.append(item)
    return result


# ── Activity ─────────────────────────────────────────────────


def position_activity(
    session: Session,
    token_id: int,
    event_types: set[str] | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Decoded event history for a token, newest first.

    ``eventTypes`` lists every event name present for the token, independent
    of the filter, so callers can offer it as a facet.
    """
    present = session.execute(
        select(DomainEventRow.event_name)
        .where(DomainEventRow.token_id == token_id)
        .distinct()
    ).scalars().all()

    query = select(DomainEventRow).where(DomainEventRow.token_id == token_id)
    if event_types:
        query = query.where(DomainEventRow.event_name.in_(sorted(event_types)))
    rows = session.execute(
        query.order_by(desc(DomainEventRow.block_number), desc(DomainEventRow.log_index))
        .limit(limit)
        .offset(offset)
    ).scalars().all()

    tokens = payment_token_map(session)
    events = []
    for row in rows:
        data = dict(row.decoded_data)
        token = tokens.get(data.get("payment_token") or "")
        price_formatted = None
        if token is not None and data.get("price") is not None:
            price_formatted = float(to_decimal(int(data["price"]), token.decimals))
        events.append({
            "eventName": row.event_name,
            "tokenId": row.token_id,
            "transactionHash": row.transaction_hash,
            "logIndex": row.log_index,
            "blockNumber": row.block_number,
            "blockTimestamp": _iso(row.block_timestamp),
            "decodedData": data,
            "priceFormatted": price_formatted,
            "paymentTokenSymbol": token.symbol if token else None,
        })
    return {"events": events, "eventTypes": sorted(present)}


# Activity feed row type → listing status it is read from.
ACTIVITY_TYPES = {
    "list": ListingStatus.ACTIVE,
    "sale": ListingStatus.SOLD,
    "cancel": ListingStatus.CANCELLED,
}


def _activity_time(kind: str, listing: ListingRow) -> datetime:
    if kind == "sale":
        return listing.sold_at or listing.created_at
    if kind == "cancel":
        return listing.cancelled_at or listing.created_at
    return listing.created_at


def marketplace_activity(
    session: Session,
    activity_type: str | None = None,
    token_symbols: set[str] | None = None,
    limit: int = 50,
    offset: int = 0,
) -> dict:
    """Listings, sales and cancellations across all tokens, newest first.

    Sales are valued at the price in effect when they settled, open listings
    at spot. Cancellations carry no price. Expired listings are not activity.
    """
    if activity_type is not None and activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"unknown activity type {activity_type!r}; expected one of {sorted(ACTIVITY_TYPES)}")
    kinds = [activity_type] if activity_type else list(ACTIVITY_TYPES)
    by_status = {ACTIVITY_TYPES[k].value: k for k in kinds}

    tokens = payment_token_map(session)
    query = (
        select(ListingRow, PositionRow)
        .outerjoin(PositionRow, PositionRow.token_id == ListingRow.token_id)
        .where(ListingRow.status.in_(sorted(by_status)))
    )
    if token_symbols is not None:
        wanted = {s.upper() for s in token_symbols}
        addresses = sorted(a for a, t in tokens.items() if t.symbol.upper() in wanted)
        query = query.where(ListingRow.payment_token_address.in_(addresses))

    rows = [
        (by_status[listing.status], listing, position)
        for listing, position in session.execute(query).all()
    ]
    rows.sort(key=lambda r: (_activity_time(r[0], r[1]), r[1].id), reverse=True)
    page = rows[offset:offset + limit]

    activities = []
    for kind, listing, position in page:
        token = tokens.get(listing.payment_token_address or "")
        locked = position.locked_amount if position else None
        item = {
            "id": f"{kind}_{listing.id}",
            "type": kind,
            "positionId": listing.token_id,
            "amount": _float(locked),
            "total": None,
            "token": token.symbol if token else None,
            "usdValue": None,
            "unitUsd": None,
            "approximate": False,
            "seller": listing.seller_address,
            "buyer": None,
            "txHash": listing.transaction_hash,
            "timestamp": _iso(_activity_time(kind, listing)),
            "unlockDate": position.lock_end.date().isoformat() if position and position.lock_end else None,
        }
        if kind != "cancel":
            value = valuate(session, listing, tokens)
            item["total"] = _float(listing.price_formatted)
            item["usdValue"] = _float(value.amount)
            item["unitUsd"] = _float(unit_price_usd(value, locked))
            item["approximate"] = value.approximate
        if kind == "sale":
            item["buyer"] = listing.buyer_address
            item["txHash"] = listing.sale_transaction_hash or listing.transaction_hash
        activities.append(item)
    return {
        "activities": activities,
        "pagination": {
            "total": len(rows),
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < len(rows),
        },
    }
