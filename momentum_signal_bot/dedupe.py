from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from .clock import utc_now
from .models import OPEN, PENDING, Signal


def is_duplicate(
    symbol: str,
    side: str,
    active_signals: Iterable[Signal],
    window_minutes: float,
    now: Optional[datetime] = None,
) -> bool:
    """True if an open signal with the same symbol and side was created within the window."""
    now = now or utc_now()
    window = timedelta(minutes=window_minutes)
    symbol = symbol.upper()
    for s in active_signals:
        if s.symbol != symbol or s.side != side:
            continue
        if s.status not in (OPEN, PENDING):
            continue
        if now - s.created_at <= window:
            return True
    return False
