from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..errors import MalformedProviderResponse
from ..models import Candle
from .base import KlineProvider, candle_from_row

BYBIT_INTERVALS = {
    "1m": "1",
    "3m": "3",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "1h": "60",
    "2h": "120",
    "4h": "240",
    "1d": "D",
}


class BybitLinearProvider(KlineProvider):
    """Bybit v5 linear perpetual klines; rows arrive newest-first."""

    kind = "bybit_linear"
    default_base_url = "https://api.bybit.com"
    path = "/v5/market/kline"

    def request(self, symbol: str, interval: str, limit: int) -> Tuple[str, Dict[str, Any]]:
        intv = BYBIT_INTERVALS.get(interval)
        if intv is None:
            raise ValueError(f"{self.name}: unsupported interval {interval}")
        params = {
            "category": "linear",
            "symbol": symbol.upper(),
            "interval": intv,
            "limit": int(limit),
        }
        return self.base_url + self.path, params

    def parse(self, payload: Any) -> List[Candle]:
        if isinstance(payload, list):
            rows = payload
        elif isinstance(payload, dict):
            ret_code = payload.get("retCode", 0)
            if ret_code not in (0, "0", None):
                raise MalformedProviderResponse(f"{self.name}: retCode={ret_code} msg={payload.get('retMsg')}")
            result = payload.get("result") or {}
            rows = result.get("list") if isinstance(result, dict) else None
            if rows is None and isinstance(result, dict):
                rows = result.get("data")
        else:
            rows = None
        if not isinstance(rows, list):
            raise MalformedProviderResponse(f"{self.name}: missing result.list")
        return [candle_from_row(row) for row in rows]
