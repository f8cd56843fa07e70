from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from pydantic import ValidationError

from gse_tracker.errors import UpstreamError
from gse_tracker.models.market import DetailSnapshot, LiveQuote, SymbolSummary
from gse_tracker.providers.base import DataSourceClient

log = logging.getLogger("gse_provider")

DEFAULT_BASE_URL = "https://dev.kwayisi.org/apis/gse"


class GseClient(DataSourceClient):
    """
    GSE API provider (REST).

    Endpoints:
      GET {base_url}/live              -> [{name, price, change, volume}]
      GET {base_url}/equities          -> [{name, price}]
      GET {base_url}/equities/{symbol} -> {name, price, shares, capital, dps, eps, company}

    Every request waits `rate_limit_delay` first (the API allows 60 req/s; we stay
    near 10), then retries with exponential backoff: initial_backoff, doubling,
    up to max_retries extra attempts.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        initial_backoff_s: float = 1.0,
        rate_limit_delay_s: float = 0.1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.rate_limit_delay_s = rate_limit_delay_s
        self._sleep = sleep
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    # -------------------------
    # Public interface used by the app
    # -------------------------
    async def fetch_all_live(self) -> List[LiveQuote]:
        url = f"{self.base_url}/live"
        return await self._request_with_retry(url, self._parse_live)

    async def fetch_all_summaries(self) -> List[SymbolSummary]:
        url = f"{self.base_url}/equities"
        return await self._request_with_retry(url, self._parse_summaries)

    async def fetch_detail(self, symbol: str) -> DetailSnapshot:
        url = f"{self.base_url}/equities/{symbol.lower()}"
        return await self._request_with_retry(url, self._parse_detail)

    # -------------------------
    # Transport + retry
    # -------------------------
    async def _request(self, url: str) -> Any:
        await self._sleep(self.rate_limit_delay_s)

        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as e:
            raise UpstreamError(url, f"transport error: {e!r}") from e

        if not resp.is_success:
            raise UpstreamError(url, "non-success status", status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(url, f"invalid JSON body: {e}") from e

    async def _request_with_retry(self, url: str, parse: Callable[[str, Any], Any]) -> Any:
        retries = 0
        delay = self.initial_backoff_s

        while True:
            try:
                return parse(url, await self._request(url))
            except UpstreamError as e:
                if retries >= self.max_retries:
                    raise
                log.warning("Request failed (attempt %d) url=%s error=%s", retries + 1, url, e)
                await self._sleep(delay)
                delay *= 2
                retries += 1

    # -------------------------
    # Payload parsing
    # -------------------------
    def _parse_live(self, url: str, data: Any) -> List[LiveQuote]:
        if not isinstance(data, list):
            raise UpstreamError(url, f"unexpected live payload type {type(data).__name__}")

        out: List[LiveQuote] = []
        for row in data:
            if not isinstance(row, dict):
                continue

            name = row.get("name")
            price = row.get("price")
            change = row.get("change")
            volume = row.get("volume")

            # Skip partial rows instead of failing the whole batch
            if name is None or price is None or change is None or volume is None:
                log.warning("Skipping partial live row: %s", row)
                continue

            try:
                out.append(
                    LiveQuote(
                        symbol=str(name).upper(),
                        price=float(price),
                        change=float(change),
                        volume=int(volume),
                    )
                )
            except (TypeError, ValueError):
                log.warning("Skipping invalid live row: %s", row)
                continue

        return out

    def _parse_summaries(self, url: str, data: Any) -> List[SymbolSummary]:
        if not isinstance(data, list):
            raise UpstreamError(url, f"unexpected equities payload type {type(data).__name__}")

        out: List[SymbolSummary] = []
        for row in data:
            if not isinstance(row, dict) or row.get("name") is None or row.get("price") is None:
                continue
            try:
                out.append(SymbolSummary(symbol=str(row["name"]).upper(), price=float(row["price"])))
            except (TypeError, ValueError):
                continue
        return out

    def _parse_detail(self, url: str, data: Any) -> DetailSnapshot:
        if not isinstance(data, dict) or data.get("name") is None:
            raise UpstreamError(url, "unexpected equity payload")

        payload = {k: v for k, v in data.items() if k != "name"}
        payload["symbol"] = str(data["name"]).upper()

        try:
            return DetailSnapshot.model_validate(payload)
        except ValidationError as e:
            raise UpstreamError(url, f"invalid equity payload: {e.error_count()} error(s)") from e
