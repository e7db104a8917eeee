from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..errors import MalformedProviderResponse
from ..models import Candle
from .base import KlineProvider, candle_from_row


class BinanceSpotProvider(KlineProvider):
    kind = "binance_spot"
    default_base_url = "https://api.binance.com"
    path = "/api/v3/klines"

    def request(self, symbol: str, interval: str, limit: int) -> Tuple[str, Dict[str, Any]]:
        params = {"symbol": symbol.upper(), "interval": interval, "limit": int(limit)}
        return self.base_url + self.path, params

    def parse(self, payload: Any) -> List[Candle]:
        # [0]=open time, [1..4]=OHLC, [5]=volume, rest ignored
        if not isinstance(payload, list):
            raise MalformedProviderResponse(f"{self.name}: expected list, got {type(payload).__name__}")
        return [candle_from_row(row) for row in payload]


class BinanceFuturesProvider(BinanceSpotProvider):
    kind = "binance_futures"
    default_base_url = "https://fapi.binance.com"
    path = "/fapi/v1/klines"
