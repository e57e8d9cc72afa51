"""Ethereum JSON-RPC client over httpx: block headers and event logs."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

log = structlog.get_logger("chain_rpc")


class RpcError(Exception):
    """Upstream node unreachable, timed out, or returned a JSON-RPC error."""


@dataclass(frozen=True)
class BlockHeader:
    number: int
    hash: str
    timestamp: datetime


def _to_int(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class ChainRpcClient:
    """Async JSON-RPC client with per-call retry and exponential backoff."""

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 15.0,
        max_retries: int = 5,
        backoff_initial_s: float = 0.5,
        backoff_max_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._timeout = timeout_s
        self._max_retries = max_retries
        self._backoff_initial_s = backoff_initial_s
        self._backoff_max_s = backoff_max_s
        self._transport = transport
        self._ids = itertools.count(1)
        self._http: httpx.AsyncClient | None = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        http = await self._get_http()
        delay = self._backoff_initial_s
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
            try:
                resp = await http.post(self.rpc_url, json=payload)
                resp.raise_for_status()
                body = resp.json()
                if body.get("error"):
                    raise RpcError(f"{method}: {body['error']}")
                return body.get("result")
            except (httpx.HTTPError, ValueError, RpcError) as exc:
                last_error = exc
                log.warning("rpc_retry", method=method, attempt=attempt, error=str(exc))
                if attempt == self._max_retries:
                    break
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._backoff_max_s)
        raise RpcError(f"{method} failed after {self._max_retries} attempts: {last_error}")

    async def latest_block(self) -> int:
        return _to_int(await self._call("eth_blockNumber", []))

    async def get_block(self, number: int) -> BlockHeader:
        block = await self._call("eth_getBlockByNumber", [hex(number), False])
        if block is None:
            raise RpcError(f"block {number} not found")
        return BlockHeader(
            number=_to_int(block["number"]),
            hash=block["hash"].lower(),
            timestamp=datetime.fromtimestamp(_to_int(block["timestamp"]), tz=timezone.utc),
        )

    async def get_logs(self, from_block: int, to_block: int, addresses: list[str]) -> list[dict]:
        """Raw logs in ``[from_block, to_block]`` ordered by (blockNumber, logIndex)."""
        logs = await self._call("eth_getLogs", [{
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "address": addresses,
        }])
        logs = [entry for entry in logs or [] if not entry.get("removed")]
        logs.sort(key=lambda entry: (_to_int(entry["blockNumber"]), _to_int(entry["logIndex"])))
        return logs
