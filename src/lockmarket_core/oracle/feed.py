"""Upstream USD price feed: CoinGecko-compatible ``/simple/price`` endpoint."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

import httpx


class PriceFeedError(Exception):
    """The feed was unreachable or returned something unusable."""


class PriceFeedClient:
    """Async client returning USD prices keyed by feed id."""

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def get_usd_prices(self, price_ids: list[str]) -> dict[str, Decimal]:
        """Fetch spot USD prices. Ids missing from the response are omitted."""
        if not price_ids:
            return {}
        http = await self._get_http()
        try:
            resp = await http.get(
                f"{self.base_url}/simple/price",
                params={"ids": ",".join(sorted(set(price_ids))), "vs_currencies": "usd"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PriceFeedError(str(exc)) from exc

        prices: dict[str, Decimal] = {}
        for price_id in price_ids:
            entry = data.get(price_id)
            if not isinstance(entry, dict) or "usd" not in entry:
                continue
            try:
                prices[price_id] = Decimal(str(entry["usd"]))
            except InvalidOperation as exc:
                raise PriceFeedError(f"bad price for {price_id}: {entry['usd']!r}") from exc
        return prices
