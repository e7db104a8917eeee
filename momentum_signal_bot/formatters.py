from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional

from .clock import fmt_local, local_day_name, parse_tz
from .config import PresentationConfig
from .models import TP, Signal, SignalCandidate
from .monitor import SignalEvent

RISK_FOOTER = "⚠️ Always manage risk: max 2-3% per trade. Signals are for reference only."


def pretty_price(p: Optional[float]) -> str:
    if p is None:
        return "N/A"
    try:
        n = float(p)
    except (TypeError, ValueError):
        return "N/A"
    if math.isnan(n):
        return "N/A"
    if n >= 1:
        return f"{n:.4f}"
    if n >= 0.0001:
        return f"{n:.6f}"
    return f"{n:.8f}"


def short_coin(symbol: str) -> str:
    return symbol.replace("USDT", "")


def _tz(cfg: PresentationConfig) -> timezone:
    return parse_tz(cfg.timezone)


def format_signal_message(signal: Signal, index_today: int, cfg: PresentationConfig, now: Optional[datetime] = None) -> str:
    now = now or signal.created_at
    day = local_day_name(now, _tz(cfg), cfg.locale)
    lines = [
        f"🤖 Signal #{index_today} today ({day})",
        f"#{short_coin(signal.symbol)} – [{signal.side}] 📌",
        "",
        f"🔴 Entry: {pretty_price(signal.entry)}",
        f"🆗 Take Profit: {pretty_price(signal.take_profit)}",
        f"🙅‍♂️ Stop-Loss: {pretty_price(signal.stop_loss)}",
        f"🪙 RR: {signal.risk_reward} (Conf: {signal.confidence}%)",
        "",
        f"🧠 By Bot [{cfg.bot_label}]",
        "",
        RISK_FOOTER,
    ]
    return "\n".join(lines)


def format_resolution_message(event: SignalEvent, cfg: PresentationConfig) -> str:
    sig = event.signal
    tz = _tz(cfg)
    day = local_day_name(sig.resolved_at or sig.created_at, tz, cfg.locale)
    outcome = "WIN ✅" if event.kind == TP else "LOSE ❌"
    lines = [
        f"🔔 Signal result {day}",
        f"#{short_coin(sig.symbol)} – [{sig.side}]",
        "",
        f"Status: {outcome}",
        f"Entry: {pretty_price(sig.entry)}",
        f"TP: {pretty_price(sig.take_profit)}",
        f"SL: {pretty_price(sig.stop_loss)}",
        f"P/L: {event.pnl_pct:.2f}%",
        f"Opened: {fmt_local(sig.created_at, tz)} | Closed: {fmt_local(sig.resolved_at, tz)}",
        "",
        f"🧠 By Bot [{cfg.bot_label}]",
        "📌 Signal was tracked automatically and is now closed.",
    ]
    return "\n".join(lines)


def format_expiry_message(event: SignalEvent, max_monitor_hours: float, cfg: PresentationConfig) -> str:
    sig = event.signal
    day = local_day_name(sig.resolved_at or sig.created_at, _tz(cfg), cfg.locale)
    return (
        f"⚠️ {day}: signal #{short_coin(sig.symbol)} ({sig.side}) stopped being tracked after "
        f"{max_monitor_hours:g} hours without touching TP/SL."
    )


def format_analysis_message(symbol: str, cand: Optional[SignalCandidate]) -> str:
    if cand is None:
        return f"❌ No signal for {symbol} (or not enough data)."
    lines = [
        f"🔍 Analysis {symbol}",
        f"Signal: {cand.side}",
        f"Entry: {pretty_price(cand.entry)}",
        f"TP: {pretty_price(cand.take_profit)}",
        f"SL: {pretty_price(cand.stop_loss)}",
        f"RR: {cand.risk_reward}",
        f"Confidence: {cand.confidence}%",
    ]
    rsi = cand.meta.get("rsi")
    if rsi is not None:
        lines.append(f"RSI: {rsi:.2f} | ATR: {pretty_price(cand.meta.get('atr'))} | TF: {cand.timeframe}")
    return "\n".join(lines)
