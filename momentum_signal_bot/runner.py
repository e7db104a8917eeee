from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from .clock import fmt_local, local_date, parse_tz, utc_now
from .commands import CommandHandler
from .config import Config
from .errors import DataUnavailable
from .formatters import format_expiry_message, format_resolution_message, format_signal_message
from .generator import SignalGenerator
from .models import EXPIRED, Signal
from .monitor import MonitorRegistry, SignalEvent
from .notifier.telegram import BroadcastResult, TelegramNotifier
from .providers.registry import build_providers
from .providers.source import CandleSource
from .state import BotState
from .store import JsonStore
from .web import start_web

log = logging.getLogger("runner")


class BotRunner:
    def __init__(
        self,
        cfg: Config,
        *,
        source=None,
        notifier=None,
        store: Optional[JsonStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cfg = cfg
        self.clock = clock
        self.tz = parse_tz(cfg.presentation.timezone)
        self.source = source or CandleSource(
            build_providers(cfg.provider.sources),
            timeout_s=cfg.provider.timeout_s,
            rate_limit_backoff_s=cfg.provider.rate_limit_backoff_s,
            user_agent=cfg.provider.user_agent,
            conn_limit=cfg.provider.conn_limit,
        )
        self.notifier = notifier or TelegramNotifier(
            cfg.telegram.token if cfg.telegram.enabled else "",
            send_delay_s=cfg.telegram.send_delay_s,
        )
        self.state = BotState(
            store if store is not None else JsonStore(cfg.storage.directory),
            max_resolved_signals=cfg.storage.max_resolved_signals,
        )
        self.generator = SignalGenerator(self.source, cfg.strategy)
        self.monitors = MonitorRegistry(self.state, self.source, cfg.monitor, self._on_signal_event, clock=clock)
        self.commands = CommandHandler(self)
        self._metrics = {
            "scans_total": 0,
            "signals_total": 0,
            "duplicates_total": 0,
            "low_confidence_total": 0,
            "symbol_errors_total": 0,
        }

    # -- lifecycle ------------------------------------------------------

    async def startup(self) -> None:
        self.state.load()
        restarted = sum(1 for s in self.state.open_signals() if self.monitors.start_monitor(s))
        log.info("monitors_restarted count=%d", restarted)

    async def shutdown(self) -> None:
        await self.monitors.stop_all()
        await self.state.persist()
        try:
            await self.source.close()
        finally:
            await self.notifier.close()

    async def stop_monitor(self, signal_id: str) -> bool:
        return await self.monitors.stop_monitor(signal_id)

    # -- notifications --------------------------------------------------

    async def broadcast(self, text: str) -> BroadcastResult:
        result = await self.notifier.broadcast(text, self.state.subscriber_ids())
        for chat_id in result.unreachable:
            if await self.state.remove_subscriber(chat_id):
                log.info("subscriber_removed chat_id=%s reason=unreachable", chat_id)
        if result.unreachable:
            await self.state.persist()
        return result

    async def _on_signal_event(self, event: SignalEvent) -> None:
        pres = self.cfg.presentation
        if event.kind == EXPIRED:
            msg = format_expiry_message(event, self.cfg.monitor.max_monitor_hours, pres)
        else:
            msg = format_resolution_message(event, pres)
        res = await self.broadcast(msg)
        log.info(
            "signal_event_broadcast id=%s kind=%s pnl=%.2f%% ok=%d fail=%d",
            event.signal.signal_id,
            event.kind,
            event.pnl_pct,
            res.success,
            res.failure,
        )

    # -- sweep ----------------------------------------------------------

    async def _scan_symbol(self, symbol: str) -> Optional[Signal]:
        cand = await self.generator.generate(symbol)
        if cand is None:
            return None
        if cand.confidence < self.cfg.scan.min_confidence:
            self._metrics["low_confidence_total"] += 1
            log.info("skip_low_confidence symbol=%s side=%s conf=%d", symbol, cand.side, cand.confidence)
            return None

        window = self.cfg.scan.dedupe_window_minutes
        sig = await self.state.admit(cand, window, now=self.clock())
        if sig is None:
            self._metrics["duplicates_total"] += 1
            log.info("skip_duplicate symbol=%s side=%s window=%sm", symbol, cand.side, window)
            return None

        self._metrics["signals_total"] += 1
        await self.state.persist()
        self.monitors.start_monitor(sig)

        index_today = self.state.signals_created_on(local_date(sig.created_at, self.tz), self.tz)
        msg = format_signal_message(sig, index_today, self.cfg.presentation)
        log.info(
            "signal_found id=%s symbol=%s side=%s entry=%s sl=%s tp=%s rr=%s conf=%d subscribers=%d",
            sig.signal_id,
            sig.symbol,
            sig.side,
            sig.entry,
            sig.stop_loss,
            sig.take_profit,
            sig.risk_reward,
            sig.confidence,
            len(self.state.subscribers),
        )
        await self.broadcast(msg)
        await asyncio.sleep(self.cfg.scan.post_broadcast_delay_s)
        return sig

    async def scan_once(self) -> List[Signal]:
        """One pass over the symbol universe. Each symbol is isolated from the others."""
        symbols = list(self.cfg.scan.symbols)
        self._metrics["scans_total"] += 1
        log.info("scan_start local=%s symbols=%d", fmt_local(self.clock(), self.tz), len(symbols))
        found: List[Signal] = []
        try:
            for sym in symbols:
                try:
                    await asyncio.sleep(self.cfg.scan.per_symbol_delay_s)
                    sig = await self._scan_symbol(sym)
                    if sig is not None:
                        found.append(sig)
                except DataUnavailable as e:
                    self._metrics["symbol_errors_total"] += 1
                    log.warning("scan_skip symbol=%s err=%s", sym, e)
                except Exception as e:
                    self._metrics["symbol_errors_total"] += 1
                    log.exception("scan_symbol_error symbol=%s err=%s", sym, e)
            log.info("scan_done local=%s signals=%d metrics=%s", fmt_local(self.clock(), self.tz), len(found), self._metrics)
        finally:
            await self.state.persist()
        return found

    async def _scan_loop(self) -> None:
        await asyncio.sleep(self.cfg.scan.initial_delay_s)
        interval_s = float(self.cfg.scan.interval_minutes) * 60.0
        while True:
            started = time.monotonic()
            try:
                await self.scan_once()
            except Exception as e:
                log.exception("scan_error err=%s", e)
            await asyncio.sleep(max(0.0, interval_s - (time.monotonic() - started)))

    async def _persist_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.storage.persist_interval_s)
            await self.state.persist()

    async def run_forever(self) -> None:
        if not self.cfg.scan.symbols:
            raise ValueError("No symbols configured.")

        await self.startup()
        tasks = [
            asyncio.create_task(self._scan_loop(), name="scan"),
            asyncio.create_task(self._persist_loop(), name="persist"),
        ]
        if self.notifier.enabled():
            tasks.append(asyncio.create_task(self.commands.poll_forever(), name="commands"))
        web_runner = None
        try:
            if self.cfg.http.enabled:
                web_runner = await start_web(self.state, self.cfg.http.host, self.cfg.http.port, self.cfg.app.name)
            log.info(
                "bot_started symbols=%d scan_every=%sm subscribers=%d open_signals=%d",
                len(self.cfg.scan.symbols),
                self.cfg.scan.interval_minutes,
                len(self.state.subscribers),
                len(self.state.open_signals()),
            )
            await asyncio.gather(*tasks)
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if web_runner is not None:
                await web_runner.cleanup()
            await self.shutdown()
