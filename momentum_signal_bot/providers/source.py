from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..errors import DataUnavailable, MalformedProviderResponse
from ..models import Candle
from .base import KlineProvider, finalize

log = logging.getLogger("candles")

RATE_LIMIT_STATUSES = (418, 429)


class HttpStatusError(Exception):
    def __init__(self, status: int, body: str = ""):
        super().__init__(f"HTTP {status} {body[:200]}")
        self.status = status
        self.body = body


class CandleSource:
    """Priority-ordered kline providers with fallback."""

    def __init__(
        self,
        providers: Sequence[KlineProvider],
        *,
        timeout_s: float = 10.0,
        rate_limit_backoff_s: float = 3.0,
        user_agent: str = "Mozilla/5.0 (compatible; MomentumSignalBot/1.0)",
        conn_limit: int = 20,
    ):
        if not providers:
            raise ValueError("CandleSource needs at least one provider")
        self.providers = sorted(providers, key=lambda p: p.priority)
        self.timeout_s = float(timeout_s)
        self.rate_limit_backoff_s = float(rate_limit_backoff_s)
        self.user_agent = user_agent
        self.conn_limit = conn_limit
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        # Bounds every single provider attempt.
        return aiohttp.ClientTimeout(
            total=self.timeout_s,
            connect=min(5.0, self.timeout_s),
            sock_read=self.timeout_s,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout(),
                connector=aiohttp.TCPConnector(limit=self.conn_limit, ttl_dns_cache=300),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            )
        return self._session

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        sess = await self._get_session()
        async with sess.get(url, params=params) as resp:
            if resp.status != 200:
                txt = await resp.text()
                raise HttpStatusError(resp.status, txt)
            # Some proxies return a wrong content-type; be tolerant.
            try:
                return await resp.json(content_type=None)
            except ValueError as e:
                raise MalformedProviderResponse(f"invalid json: {e}")

    async def fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Ascending candles from the first provider that yields a non-empty series."""
        symbol = symbol.upper()
        for provider in self.providers:
            try:
                url, params = provider.request(symbol, interval, limit)
                payload = await self._get_json(url, params)
                candles = finalize(provider.parse(payload), limit)
                if not candles:
                    log.info("source_empty source=%s symbol=%s tf=%s", provider.name, symbol, interval)
                    continue
                return candles
            except HttpStatusError as e:
                log.warning(
                    "source_failed source=%s symbol=%s tf=%s status=%s body=%s",
                    provider.name,
                    symbol,
                    interval,
                    e.status,
                    e.body[:200],
                )
                if e.status in RATE_LIMIT_STATUSES:
                    log.warning("source_rate_limited source=%s sleep=%.1fs", provider.name, self.rate_limit_backoff_s)
                    await asyncio.sleep(self.rate_limit_backoff_s)
            except asyncio.TimeoutError:
                log.warning("source_timeout source=%s symbol=%s tf=%s timeout=%.1fs", provider.name, symbol, interval, self.timeout_s)
            except (aiohttp.ClientError, MalformedProviderResponse, ValueError) as e:
                log.warning("source_failed source=%s symbol=%s tf=%s err=%s", provider.name, symbol, interval, e)

        raise DataUnavailable(f"All data sources failed for {symbol} {interval}")
