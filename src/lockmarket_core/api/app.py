"""FastAPI application exposing the marketplace read models."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from lockmarket_core.config.loader import load_config
from lockmarket_core.db.engine import get_session as _get_session, init_engine
from lockmarket_core.market.tokens import register_payment_tokens
from lockmarket_core.oracle.summary import price_summary
from lockmarket_core.valuation import (
    InvalidPeriodError,
    ListingFilter,
    StatsCache,
    list_active_listings,
    listing_detail,
    marketplace_activity,
    owner_positions,
    parse_period,
    position_activity,
    position_detail,
    stats_for_window,
)

logger = structlog.get_logger()

app = FastAPI(
    title="Lock Marketplace API",
    description="Read-only API over the mirrored marketplace listings, positions and prices",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Load config once at startup
config = load_config()

# Stats cache (60s TTL)
_stats_cache = StatsCache(ttl_seconds=60.0)


def get_db() -> Generator[Session, None, None]:
    """Dependency to get DB session."""
    gen = _get_session()
    session = next(gen)
    try:
        yield session
    finally:
        try:
            next(gen)
        except StopIteration:
            pass


def get_now() -> datetime:
    """Dependency for the request's reference time."""
    return datetime.now(timezone.utc)


def _split(value: Optional[str]) -> Optional[set[str]]:
    if not value:
        return None
    return {part.strip() for part in value.split(",") if part.strip()}


@app.on_event("startup")
async def startup_event():
    """Initialize database engine and register configured payment tokens."""
    init_engine(config.database.url)
    for session in _get_session():
        register_payment_tokens(session, config.payment_tokens)
    logger.info("Database engine initialized")


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# ═══════════════════════════════════════════════════════════════
# Listings
# ═══════════════════════════════════════════════════════════════


@app.get("/api/listings")
def get_listings(
    min_usd: Optional[Decimal] = None,
    max_usd: Optional[Decimal] = None,
    min_unit_price: Optional[Decimal] = None,
    max_unit_price: Optional[Decimal] = None,
    min_locked: Optional[Decimal] = None,
    max_locked: Optional[Decimal] = None,
    unlock_after: Optional[datetime] = None,
    unlock_before: Optional[datetime] = None,
    payment_tokens: Optional[str] = Query(None, description="Comma-separated token addresses"),
    sort: str = "unit_price_usd",
    order: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = 1,
    page_size: int = 20,
    session: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Live listings with USD valuation, filterable and sortable."""
    try:
        filt = ListingFilter(
            min_usd=min_usd,
            max_usd=max_usd,
            min_unit_price_usd=min_unit_price,
            max_unit_price_usd=max_unit_price,
            min_locked=min_locked,
            max_locked=max_locked,
            unlock_after=unlock_after,
            unlock_before=unlock_before,
            payment_tokens=_split(payment_tokens),
            sort=sort,
            descending=order == "desc",
            page=page,
            page_size=page_size,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return list_active_listings(session, filt, now)


@app.get("/api/listings/{token_id}")
def get_listing(
    token_id: int,
    session: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Current (or most recent) listing for a token, with buyability."""
    detail = listing_detail(session, token_id, now)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"No listing for token {token_id}")
    return detail


# ═══════════════════════════════════════════════════════════════
# Positions
# ═══════════════════════════════════════════════════════════════


@app.get("/api/position/{token_id}")
def get_position(token_id: int, session: Session = Depends(get_db)):
    detail = position_detail(session, token_id)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Position {token_id} not found")
    return detail


@app.get("/api/position/{token_id}/events")
def get_position_events(
    token_id: int,
    event_type: Optional[str] = Query(None, description="Comma-separated event names"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_db),
):
    """Event history for a token, newest first."""
    return position_activity(session, token_id, _split(event_type), limit=limit, offset=offset)


@app.get("/api/activity")
def get_activity(
    type: str = Query("all", description="list, sale, cancel or all"),
    tokens: Optional[str] = Query(None, description="Comma-separated payment token symbols"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_db),
):
    """Marketplace-wide listings, sales and cancellations, newest first."""
    symbols = _split(tokens)
    if symbols is not None and "all" in {s.lower() for s in symbols}:
        symbols = None
    try:
        return marketplace_activity(
            session,
            activity_type=None if type == "all" else type,
            token_symbols=symbols,
            limit=limit,
            offset=offset,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/users/{address}/positions")
def get_user_positions(
    address: str,
    include_closed: bool = False,
    session: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    positions = owner_positions(session, address, now, include_closed=include_closed)
    return {"address": address.lower(), "positions": positions}


# ═══════════════════════════════════════════════════════════════
# Stats & price
# ═══════════════════════════════════════════════════════════════


@app.get("/api/stats/{period}")
def get_stats(
    period: str,
    session: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Sales stats for ``<N>d`` or ``total``, valued at historical prices."""
    try:
        days = parse_period(period)
    except InvalidPeriodError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    # Keyed by window, so "7D" and "7d" or "all" and "total" share an entry.
    key = "stats:total" if days is None else f"stats:{days}d"
    return _stats_cache.get_or_compute(key, lambda: stats_for_window(session, period, now).to_dict())


@app.get("/api/price")
def get_price(session: Session = Depends(get_db), now: datetime = Depends(get_now)):
    """Spot price, 24h change and sparkline for the locked token."""
    return price_summary(session, config.market.lock_token_address, now).to_dict()
