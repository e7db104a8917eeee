from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .clock import tf_minutes, to_ms, utc_now
from .config import MonitorConfig
from .errors import DataUnavailable
from .models import EXPIRED, LONG, SHORT, SL, TP, Candle, MonitorCheck, Signal
from .state import BotState

log = logging.getLogger("monitor")

MIN_LOOKBACK_MINUTES = 10
MAX_LOOKBACK_MINUTES = 1440


@dataclass(frozen=True)
class HitResult:
    status: Optional[str]  # TP, SL or None
    index: Optional[int] = None
    candle: Optional[Candle] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class SignalEvent:
    kind: str  # TP, SL or EXPIRED
    signal: Signal
    pnl_pct: float


EventCallback = Callable[[SignalEvent], Awaitable[None]]


def clamp_lookback(minutes: int) -> int:
    return min(max(int(minutes), MIN_LOOKBACK_MINUTES), MAX_LOOKBACK_MINUTES)


def max_checks(max_monitor_hours: float, tick_interval_s: float) -> int:
    return int(math.ceil(max_monitor_hours * 3600.0 / tick_interval_s))


def pnl_pct(signal: Signal) -> float:
    if signal.status == TP:
        exit_price = signal.take_profit
    elif signal.status == SL:
        exit_price = signal.stop_loss
    else:
        return 0.0
    if signal.side == LONG:
        pct = (exit_price - signal.entry) / signal.entry * 100.0
    else:
        pct = (signal.entry - exit_price) / signal.entry * 100.0
    return round(pct, 2)


def scan_for_hit(candles: Sequence[Candle], side: str, stop_loss: float, take_profit: float) -> HitResult:
    """Earliest candle (oldest first) that touches TP or SL.

    When one candle touches both, the close decides. Intrabar order is not
    recoverable from OHLC, so that branch is an approximation.
    """
    if side not in (LONG, SHORT):
        raise ValueError(f"Unknown side: {side}")
    for idx, c in enumerate(candles):
        if side == LONG:
            tp_touched = c.high >= take_profit
            sl_touched = c.low <= stop_loss
        else:
            tp_touched = c.low <= take_profit
            sl_touched = c.high >= stop_loss

        if tp_touched and not sl_touched:
            return HitResult(TP, idx, c)
        if sl_touched and not tp_touched:
            return HitResult(SL, idx, c)
        if tp_touched and sl_touched:
            if side == LONG:
                status = TP if c.close >= take_profit else SL
            else:
                status = TP if c.close <= take_profit else SL
            return HitResult(status, idx, c, note="both_in_same_candle")
    return HitResult(None)


async def check_signal_hit(
    source,
    signal: Signal,
    *,
    lookback_minutes: int = 120,
    interval: str = "1m",
    ignore_pre_signal_candles: bool = True,
) -> HitResult:
    candles = await source.fetch_candles(signal.symbol, interval, clamp_lookback(lookback_minutes))
    if ignore_pre_signal_candles:
        # drop candles that closed before the signal existed
        created_ms = to_ms(signal.created_at)
        span_ms = tf_minutes(interval) * 60_000
        candles = [c for c in candles if c.open_time_ms + span_ms > created_ms]
    return scan_for_hit(candles, signal.side, signal.stop_loss, signal.take_profit)


class SignalMonitor:
    """Drives one OPEN signal to TP, SL or EXPIRED with strictly sequential ticks."""

    def __init__(
        self,
        signal: Signal,
        state: BotState,
        source,
        cfg: MonitorConfig,
        on_event: Optional[EventCallback] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.signal = signal
        self.state = state
        self.source = source
        self.cfg = cfg
        self.on_event = on_event
        self.clock = clock
        self.max_checks = max_checks(cfg.max_monitor_hours, cfg.tick_interval_s)
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def tick(self) -> bool:
        """Run one check. Returns True once the monitor should stop.

        Every tick counts toward the expiry ceiling, whether or not the
        candle fetch succeeded. A failed fetch never resolves the signal.
        """
        sig = self.signal
        if not sig.is_open:
            return True

        hit: Optional[HitResult] = None
        failure: Optional[BaseException] = None
        try:
            hit = await check_signal_hit(
                self.source,
                sig,
                lookback_minutes=self.cfg.lookback_minutes,
                interval=self.cfg.interval,
                ignore_pre_signal_candles=self.cfg.ignore_pre_signal_candles,
            )
        except DataUnavailable as e:
            log.warning("monitor_tick_failed id=%s symbol=%s err=%s", sig.signal_id, sig.symbol, e)
            failure = e
        except Exception as e:
            log.exception("monitor_check_error id=%s symbol=%s err=%s", sig.signal_id, sig.symbol, e)
            failure = e

        event: Optional[SignalEvent] = None
        async with self.state.signal_lock(sig.signal_id):
            if not sig.is_open:
                return True
            now = self.clock()
            sig.monitor_checks += 1
            if hit is None:
                self._record_failure(now, failure)
            else:
                sig.monitor_history.append(MonitorCheck(checked_at=now, observed_status=hit.status))

            if hit is not None and hit.status in (TP, SL):
                sig.status = hit.status
                sig.resolved_at = now
                event = SignalEvent(kind=hit.status, signal=sig, pnl_pct=pnl_pct(sig))
                log.info(
                    "signal_resolved id=%s symbol=%s side=%s status=%s candle_idx=%s note=%s pnl=%.2f%% checks=%d",
                    sig.signal_id,
                    sig.symbol,
                    sig.side,
                    sig.status,
                    hit.index,
                    hit.note,
                    event.pnl_pct,
                    sig.monitor_checks,
                )
            elif sig.monitor_checks >= self.max_checks:
                sig.status = EXPIRED
                sig.resolved_at = now
                event = SignalEvent(kind=EXPIRED, signal=sig, pnl_pct=0.0)
                log.info("signal_expired id=%s symbol=%s side=%s checks=%d", sig.signal_id, sig.symbol, sig.side, sig.monitor_checks)

        if event is None:
            return False
        await self.state.persist()
        await self._emit(event)
        return True

    def _record_failure(self, now: datetime, err: Optional[BaseException]) -> None:
        # Consecutive failures share one history entry.
        history = self.signal.monitor_history
        last = history[-1] if history else None
        if last is not None and last.error:
            last.checked_at = now
            last.error = str(err)
            last.failures += 1
            return
        history.append(MonitorCheck(checked_at=now, observed_status=None, error=str(err)))

    async def _emit(self, event: SignalEvent) -> None:
        if self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception as e:
            log.exception("signal_event_delivery_failed id=%s kind=%s err=%s", event.signal.signal_id, event.kind, e)

    async def run(self) -> None:
        sig = self.signal
        log.info("monitor_started id=%s symbol=%s side=%s max_checks=%d", sig.signal_id, sig.symbol, sig.side, self.max_checks)
        try:
            while not self._stop.is_set():
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.tick_interval_s)
                    break
                except asyncio.TimeoutError:
                    pass
                try:
                    if await self.tick():
                        break
                except Exception as e:
                    log.exception("monitor_tick_error id=%s err=%s", sig.signal_id, e)
        finally:
            log.info("monitor_stopped id=%s status=%s checks=%d", sig.signal_id, sig.status, sig.monitor_checks)


class MonitorRegistry:
    """Signal id -> running monitor task."""

    def __init__(
        self,
        state: BotState,
        source,
        cfg: MonitorConfig,
        on_event: Optional[EventCallback] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.state = state
        self.source = source
        self.cfg = cfg
        self.on_event = on_event
        self.clock = clock
        self._tasks: Dict[str, Tuple[SignalMonitor, "asyncio.Task[None]"]] = {}

    def active_ids(self) -> List[str]:
        return list(self._tasks.keys())

    def start_monitor(self, signal: Signal) -> bool:
        if not signal.is_open or signal.signal_id in self._tasks:
            return False
        mon = SignalMonitor(signal, self.state, self.source, self.cfg, self.on_event, clock=self.clock)
        task = asyncio.create_task(mon.run(), name=f"monitor:{signal.signal_id}")
        self._tasks[signal.signal_id] = (mon, task)
        task.add_done_callback(lambda t, sid=signal.signal_id: self._forget(sid, t))
        return True

    def _forget(self, signal_id: str, task: "asyncio.Task[None]") -> None:
        entry = self._tasks.get(signal_id)
        if entry is not None and entry[1] is task:
            del self._tasks[signal_id]

    async def stop_monitor(self, signal_id: str) -> bool:
        """Stop after the in-flight tick completes. Safe to call repeatedly."""
        entry = self._tasks.get(signal_id)
        if entry is None:
            return False
        mon, task = entry
        mon.request_stop()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def stop_all(self) -> None:
        entries = list(self._tasks.values())
        for mon, _ in entries:
            mon.request_stop()
        if entries:
            await asyncio.gather(*(t for _, t in entries), return_exceptions=True)
