from __future__ import annotations

from typing import Dict, List, Sequence, Type

from ..config import SourceConfig
from .base import KlineProvider
from .binance import BinanceFuturesProvider, BinanceSpotProvider
from .bybit import BybitLinearProvider

PROVIDER_KINDS: Dict[str, Type[KlineProvider]] = {
    cls.kind: cls for cls in (BinanceSpotProvider, BinanceFuturesProvider, BybitLinearProvider)
}


def build_providers(sources: Sequence[SourceConfig]) -> List[KlineProvider]:
    out: List[KlineProvider] = []
    for src in sources:
        if not src.enabled:
            continue
        cls = PROVIDER_KINDS.get(src.kind)
        if cls is None:
            raise ValueError(f"Unknown candle source kind: {src.kind} (known: {sorted(PROVIDER_KINDS)})")
        out.append(cls(src.name, priority=src.priority, base_url=src.base_url))
    if not out:
        raise ValueError("No candle sources configured.")
    return sorted(out, key=lambda p: p.priority)
