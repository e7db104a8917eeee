from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from .clock import local_date, to_ms, utc_now
from .dedupe import is_duplicate
from .models import Signal, SignalCandidate, Subscriber
from .store import JsonStore

log = logging.getLogger("state")

USERS_KEY = "users"
SIGNALS_KEY = "signals"


def new_signal_id(now: datetime) -> str:
    return f"SIG_{to_ms(now)}_{uuid.uuid4().hex[:8]}"


class BotState:
    """Signals and subscribers shared by the sweep, the monitors and the notification path.

    ``lock`` guards structural changes (insert/remove); each signal also has
    its own lock for status transitions. Readers get list snapshots.
    """

    def __init__(self, store: Optional[JsonStore] = None, *, max_resolved_signals: int = 500):
        self.store = store
        self.max_resolved_signals = max_resolved_signals
        self.signals: Dict[str, Signal] = {}
        self.subscribers: Dict[str, Subscriber] = {}
        self.lock = asyncio.Lock()
        self._signal_locks: Dict[str, asyncio.Lock] = {}

    def signal_lock(self, signal_id: str) -> asyncio.Lock:
        lk = self._signal_locks.get(signal_id)
        if lk is None:
            lk = self._signal_locks[signal_id] = asyncio.Lock()
        return lk

    # -- signals --------------------------------------------------------

    def signals_snapshot(self) -> List[Signal]:
        return list(self.signals.values())

    def open_signals(self) -> List[Signal]:
        return [s for s in self.signals.values() if s.is_open]

    async def admit(self, cand: SignalCandidate, window_minutes: float, now: Optional[datetime] = None) -> Optional[Signal]:
        """Dedupe check and insert under one lock; None when a duplicate is open."""
        now = now or utc_now()
        async with self.lock:
            if is_duplicate(cand.symbol, cand.side, self.signals.values(), window_minutes, now=now):
                return None
            sig = Signal.from_candidate(cand, new_signal_id(now), now)
            self.signals[sig.signal_id] = sig
            return sig

    def signals_created_on(self, day: date, tz: timezone) -> int:
        return sum(1 for s in self.signals.values() if local_date(s.created_at, tz) == day)

    # -- subscribers ----------------------------------------------------

    def subscriber_ids(self) -> List[str]:
        return list(self.subscribers.keys())

    async def add_subscriber(self, sub: Subscriber) -> bool:
        async with self.lock:
            if sub.chat_id in self.subscribers:
                return False
            self.subscribers[sub.chat_id] = sub
            return True

    async def remove_subscriber(self, chat_id: str) -> bool:
        async with self.lock:
            return self.subscribers.pop(str(chat_id), None) is not None

    # -- persistence ----------------------------------------------------

    def _prune_resolved(self) -> None:
        resolved = [s for s in self.signals.values() if not s.is_open]
        excess = len(resolved) - self.max_resolved_signals
        if excess <= 0:
            return
        resolved.sort(key=lambda s: s.resolved_at or s.created_at)
        for s in resolved[:excess]:
            self.signals.pop(s.signal_id, None)
            self._signal_locks.pop(s.signal_id, None)

    def load(self) -> None:
        if self.store is None:
            return
        for raw in self.store.load(USERS_KEY, []):
            try:
                sub = Subscriber.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("skip_bad_subscriber record=%r err=%s", raw, e)
                continue
            self.subscribers[sub.chat_id] = sub
        for raw in self.store.load(SIGNALS_KEY, []):
            try:
                sig = Signal.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                log.warning("skip_bad_signal record=%r err=%s", raw, e)
                continue
            self.signals[sig.signal_id] = sig
        log.info("state_loaded users=%d signals=%d open=%d", len(self.subscribers), len(self.signals), len(self.open_signals()))

    async def persist(self) -> None:
        if self.store is None:
            return
        async with self.lock:
            self._prune_resolved()
            users = [u.to_dict() for u in self.subscribers.values()]
            signals = [s.to_dict() for s in self.signals.values()]
        self.store.save(USERS_KEY, users)
        self.store.save(SIGNALS_KEY, signals)
