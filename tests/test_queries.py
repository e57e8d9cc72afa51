"""Tests for the listing, position and activity read models."""

from datetime import timedelta
from decimal import Decimal

import pytest

from lockmarket_core.ingest.projector import Projector
from lockmarket_core.oracle.mirror import record_sample
from lockmarket_core.valuation import (
    ListingFilter,
    list_active_listings,
    listing_detail,
    owner_positions,
    position_activity,
    position_detail,
)

from helpers import (
    BUYER,
    GENESIS,
    HEMI,
    ONE_HEMI,
    ONE_USDC,
    OTHER,
    SELLER,
    USDC,
    ZERO,
    block_time,
    cancelled,
    listed,
    lock,
    make_event,
    sold,
    transfer,
)

NOW = block_time(100)


@pytest.fixture
def market(registered_tokens):
    """Three positions listed at block 50; token 4 listed with a 60s duration (expired by NOW)."""
    session = registered_tokens
    projector = Projector()
    record_sample(session, HEMI, Decimal("0.05"), GENESIS)
    record_sample(session, USDC, Decimal("1"), GENESIS)

    setups = [
        # token, locked HEMI, lock days, price, payment token, duration
        (1, 1000, 365, 50 * ONE_USDC, USDC, 7 * 86400),
        (2, 1000, 730, 1500 * ONE_HEMI, HEMI, 7 * 86400),
        (3, 4000, 100, 100 * ONE_USDC, USDC, 7 * 86400),
        (4, 500, 365, 10 * ONE_USDC, USDC, 60),
    ]
    for token_id, locked, days, price, token, duration in setups:
        projector.apply(session, make_event(transfer(token_id, ZERO, SELLER), 10, token_id * 2))
        projector.apply(session, make_event(
            lock(token_id, locked * ONE_HEMI, start_block=10, lock_days=days), 10, token_id * 2 + 1,
        ))
        projector.apply(session, make_event(
            listed(token_id, price, payment_token=token, duration=duration), 50, token_id,
        ))
    return session


def _ids(result):
    return [item["tokenId"] for item in result["listings"]]


class TestListActiveListings:
    def test_default_sort_is_unit_price(self, market):
        result = list_active_listings(market, ListingFilter(), NOW)
        # unit prices: 1 → 0.05, 2 → 0.075, 3 → 0.025; token 4 is expired
        assert _ids(result) == [3, 1, 2]
        assert result["total"] == 3
        first = result["listings"][0]
        assert first["unitPriceUsd"] == pytest.approx(0.025)
        assert first["usdValue"] == pytest.approx(100.0)
        assert first["buyable"] is True
        assert first["paymentTokenSymbol"] == "USDC"
        assert first["valuationBasis"] == "spot"

    def test_sort_by_total_desc(self, market):
        result = list_active_listings(market, ListingFilter(sort="total_usd", descending=True), NOW)
        assert _ids(result) == [3, 2, 1]

    def test_sort_by_token_id(self, market):
        assert _ids(list_active_listings(market, ListingFilter(sort="token_id"), NOW)) == [1, 2, 3]

    def test_usd_range(self, market):
        filt = ListingFilter(min_usd=Decimal("60"), max_usd=Decimal("90"))
        assert _ids(list_active_listings(market, filt, NOW)) == [2]

    def test_unit_price_range(self, market):
        filt = ListingFilter(max_unit_price_usd=Decimal("0.05"))
        assert _ids(list_active_listings(market, filt, NOW)) == [3, 1]

    def test_locked_amount_range(self, market):
        filt = ListingFilter(min_locked=Decimal("2000"))
        assert _ids(list_active_listings(market, filt, NOW)) == [3]

    def test_unlock_window(self, market):
        filt = ListingFilter(unlock_after=block_time(10) + timedelta(days=400))
        assert _ids(list_active_listings(market, filt, NOW)) == [2]

    def test_payment_token_filter_is_case_insensitive(self, market):
        filt = ListingFilter(payment_tokens={HEMI.upper().replace("0X", "0x")})
        assert _ids(list_active_listings(market, filt, NOW)) == [2]

    def test_pagination(self, market):
        result = list_active_listings(market, ListingFilter(page=2, page_size=2), NOW)
        assert _ids(result) == [2]
        assert result["total"] == 3
        assert result["page"] == 2
        assert result["pageSize"] == 2

    def test_expired_listing_is_not_listed(self, market):
        ids = _ids(list_active_listings(market, ListingFilter(sort="token_id"), block_time(50)))
        assert ids == [1, 2, 3, 4]

    def test_unpriced_listings_sort_last(self, market):
        Projector().apply(market, make_event(listed(9, 10**18, payment_token=OTHER), 60))
        result = list_active_listings(market, ListingFilter(), NOW)
        assert _ids(result)[-1] == 9
        assert result["listings"][-1]["valuationBasis"] == "unavailable"

    @pytest.mark.parametrize("kwargs", [
        {"sort": "price"},
        {"page": 0},
        {"page_size": 0},
        {"page_size": 101},
    ])
    def test_invalid_filter(self, kwargs):
        with pytest.raises(ValueError):
            ListingFilter(**kwargs)


class TestListingDetail:
    def test_active(self, market):
        detail = listing_detail(market, 2, NOW)
        assert detail["status"] == "active"
        assert detail["effectiveStatus"] == "active"
        assert detail["priceFormatted"] == 1500.0
        assert detail["lockedAmount"] == 1000.0

    def test_expired_is_not_buyable(self, market):
        detail = listing_detail(market, 4, NOW)
        assert detail["status"] == "active"
        assert detail["effectiveStatus"] == "expired"
        assert detail["buyable"] is False

    def test_falls_back_to_latest_terminal_listing(self, market):
        Projector().apply(market, make_event(cancelled(1), 60))
        detail = listing_detail(market, 1, NOW)
        assert detail["status"] == "cancelled"
        assert detail["buyable"] is False

    def test_unknown_token(self, market):
        assert listing_detail(market, 999, NOW) is None


class TestPositions:
    def test_position_detail(self, market):
        detail = position_detail(market, 3)
        assert detail["ownerAddress"] == SELLER
        assert detail["lockedAmount"] == 4000.0
        assert detail["lockedAmountRaw"] == str(4000 * ONE_HEMI)
        assert detail["status"] == "open"

    def test_unknown_position(self, market):
        assert position_detail(market, 999) is None

    def test_owner_positions_ordered_by_unlock(self, market):
        positions = owner_positions(market, SELLER.upper().replace("0X", "0x"), NOW)
        assert [p["tokenId"] for p in positions] == [3, 1, 4, 2]
        by_id = {p["tokenId"]: p for p in positions}
        assert by_id[1]["activeListing"]["tokenId"] == 1
        assert by_id[4]["activeListing"] is None

    def test_sold_position_moves_to_buyer(self, market):
        projector = Projector()
        projector.apply(market, make_event(transfer(1, SELLER, BUYER), 70, 0))
        projector.apply(market, make_event(sold(1, 50 * ONE_USDC), 70, 1))

        assert [p["tokenId"] for p in owner_positions(market, BUYER, NOW)] == [1]
        assert 1 not in [p["tokenId"] for p in owner_positions(market, SELLER, NOW)]

    def test_closed_positions_hidden_by_default(self, market):
        Projector().apply(market, make_event(transfer(3, SELLER, ZERO), 70))
        assert 3 not in [p["tokenId"] for p in owner_positions(market, SELLER, NOW)]
        closed = owner_positions(market, SELLER, NOW, include_closed=True)
        assert 3 in [p["tokenId"] for p in closed]


class TestPositionActivity:
    def test_newest_first_with_facets(self, market):
        result = position_activity(market, 1)
        assert [e["eventName"] for e in result["events"]] == ["NFTListed", "Lock", "Transfer"]
        assert result["eventTypes"] == ["Lock", "NFTListed", "Transfer"]
        listing = result["events"][0]
        assert listing["priceFormatted"] == 50.0
        assert listing["paymentTokenSymbol"] == "USDC"
        assert listing["decodedData"]["seller"] == SELLER

    def test_filter_and_paging(self, market):
        result = position_activity(market, 1, {"Lock", "Transfer"}, limit=1, offset=1)
        assert [e["eventName"] for e in result["events"]] == ["Transfer"]
        assert result["eventTypes"] == ["Lock", "NFTListed", "Transfer"]

    def test_large_amounts_survive_as_strings(self, market):
        result = position_activity(market, 3, {"Lock"})
        assert result["events"][0]["decodedData"]["value"] == str(4000 * ONE_HEMI)

    def test_unknown_token(self, market):
        assert position_activity(market, 999) == {"events": [], "eventTypes": []}
