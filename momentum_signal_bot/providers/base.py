from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import MalformedProviderResponse
from ..models import Candle

# Object-encoded rows use different key spellings per exchange.
_KEYS = {
    "t": ("t", "start", "openTime", "open_time", "timestamp"),
    "o": ("o", "open"),
    "h": ("h", "high"),
    "l": ("l", "low"),
    "c": ("c", "close"),
    "v": ("v", "volume", "vol"),
}


def _pick(row: Dict[str, Any], field: str) -> Any:
    for key in _KEYS[field]:
        if key in row and row[key] is not None:
            return row[key]
    return None


def _num(x: Any, what: str) -> float:
    try:
        val = float(x)
    except (TypeError, ValueError):
        raise MalformedProviderResponse(f"bad {what}: {x!r}")
    if not math.isfinite(val):
        raise MalformedProviderResponse(f"non-finite {what}: {x!r}")
    return val


def candle_from_row(row: Any) -> Candle:
    """Normalise one kline row, array-encoded ``[t, o, h, l, c, v, ...]`` or an object."""
    if isinstance(row, (list, tuple)):
        if len(row) < 5:
            raise MalformedProviderResponse(f"short kline row: {row!r}")
        t, o, h, l, c = row[:5]
        v = row[5] if len(row) > 5 else 0
    elif isinstance(row, dict):
        t, o, h, l, c, v = (_pick(row, k) for k in ("t", "o", "h", "l", "c", "v"))
    else:
        raise MalformedProviderResponse(f"unsupported kline row type: {type(row).__name__}")

    return Candle(
        open_time_ms=int(_num(t, "open time")),
        open=_num(o, "open"),
        high=_num(h, "high"),
        low=_num(l, "low"),
        close=_num(c, "close"),
        volume=_num(v if v is not None else 0, "volume"),
    )


def finalize(candles: Sequence[Candle], limit: Optional[int] = None) -> List[Candle]:
    """Ascending by open time, one candle per timestamp, newest ``limit`` kept."""
    by_ts: Dict[int, Candle] = {}
    for c in candles:
        by_ts[c.open_time_ms] = c
    out = [by_ts[t] for t in sorted(by_ts)]
    if limit is not None and limit > 0 and len(out) > limit:
        out = out[-limit:]
    return out


class KlineProvider:
    """One upstream kline endpoint: builds its request and parses its own wire shape."""

    kind = ""
    default_base_url = ""

    def __init__(self, name: str, *, priority: int = 1, base_url: Optional[str] = None):
        self.name = name
        self.priority = int(priority)
        self.base_url = (base_url or self.default_base_url).rstrip("/")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"

    def request(self, symbol: str, interval: str, limit: int) -> Tuple[str, Dict[str, Any]]:
        raise NotImplementedError

    def parse(self, payload: Any) -> List[Candle]:
        raise NotImplementedError
