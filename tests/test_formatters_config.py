from datetime import datetime, timezone

import pytest

from momentum_signal_bot.clock import local_day_name, parse_tz, to_iso, tf_minutes
from momentum_signal_bot.config import Config, load_config
from momentum_signal_bot.formatters import (
    format_analysis_message,
    format_expiry_message,
    format_resolution_message,
    format_signal_message,
    pretty_price,
)
from momentum_signal_bot.models import EXPIRED, LONG, SHORT, SL, TP, Signal, SignalCandidate
from momentum_signal_bot.monitor import SignalEvent

# Friday 2024-03-01 19:00 at UTC+7
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _signal(side=LONG, status=TP) -> Signal:
    return Signal(
        signal_id="SIG_1",
        symbol="BTCUSDT",
        side=side,
        entry=64000.5,
        stop_loss=63500.0,
        take_profit=65001.5,
        risk_reward=2.0,
        confidence=71,
        created_at=T0,
        status=status,
        resolved_at=datetime(2024, 3, 1, 18, 30, tzinfo=timezone.utc),
    )


def test_pretty_price_precision_tiers():
    assert pretty_price(64000.5) == "64000.5000"
    assert pretty_price(0.5) == "0.500000"
    assert pretty_price(0.00001234) == "0.00001234"
    assert pretty_price(None) == "N/A"
    assert pretty_price(float("nan")) == "N/A"


def test_signal_message():
    text = format_signal_message(_signal(), 3, Config.default().presentation)
    assert text.startswith("🤖 Signal #3 today (FRIDAY)")
    assert "#BTC – [LONG] 📌" in text
    assert "Entry: 64000.5000" in text
    assert "Take Profit: 65001.5000" in text
    assert "Stop-Loss: 63500.0000" in text
    assert "RR: 2.0 (Conf: 71%)" in text
    assert "By Bot [Physics Momentum]" in text


def test_resolution_and_expiry_messages():
    pres = Config.default().presentation
    win = format_resolution_message(SignalEvent(kind=TP, signal=_signal(), pnl_pct=1.56), pres)
    assert "Status: WIN ✅" in win
    assert "P/L: 1.56%" in win
    # resolved 18:30 UTC is already Saturday locally
    assert "SATURDAY" in win
    assert "Closed: 2024-03-02 01:30" in win

    lose = format_resolution_message(SignalEvent(kind=SL, signal=_signal(SHORT, SL), pnl_pct=-0.78), pres)
    assert "Status: LOSE ❌" in lose
    assert "P/L: -0.78%" in lose

    exp = format_expiry_message(SignalEvent(kind=EXPIRED, signal=_signal(status=EXPIRED), pnl_pct=0.0), 48, pres)
    assert "#BTC (LONG)" in exp
    assert "48 hours" in exp


def test_analysis_message():
    assert format_analysis_message("XYZUSDT", None) == "❌ No signal for XYZUSDT (or not enough data)."
    cand = SignalCandidate("BTCUSDT", SHORT, 100.0, 103.0, 94.0, 2.0, 66, "5m", {"rsi": 75.123, "atr": 2.0})
    text = format_analysis_message("BTCUSDT", cand)
    assert "Signal: SHORT" in text
    assert "RSI: 75.12" in text


def test_clock_helpers():
    assert parse_tz("UTC+7").utcoffset(None).total_seconds() == 7 * 3600
    assert parse_tz("utc-03:30").utcoffset(None).total_seconds() == -(3 * 3600 + 1800)
    with pytest.raises(ValueError):
        parse_tz("Asia/Bangkok")
    assert tf_minutes("5m") == 5
    assert tf_minutes("4h") == 240
    assert local_day_name(T0, parse_tz("UTC+7"), "vi") == "THỨ SÁU"
    assert to_iso(T0) == "2024-03-01T12:00:00.000Z"


def test_defaults():
    cfg = Config.default()
    assert cfg.scan.interval_minutes == 90
    assert cfg.scan.min_confidence == 60
    assert cfg.scan.dedupe_window_minutes == 60
    assert cfg.monitor.max_monitor_hours == 48
    assert cfg.monitor.tick_interval_s == 60
    assert [s.kind for s in cfg.provider.sources] == ["binance_spot", "binance_futures", "bybit_linear"]
    assert "BTCUSDT" in cfg.scan.symbols


def test_load_config_yaml_and_env(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "scan:",
                "  symbols: [btcusdt, ' ethusdt ']",
                "  interval_minutes: 30",
                "provider:",
                "  sources:",
                "    - {name: only-bybit, kind: bybit_linear, priority: 1}",
                "telegram:",
                "  token: from-file",
                "presentation:",
                "  locale: vi",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
    monkeypatch.delenv("SYMBOLS", raising=False)
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("SCAN_INTERVAL_MINUTES", "not-a-number")

    cfg = load_config(str(path))
    assert cfg.scan.symbols == ["BTCUSDT", "ETHUSDT"]
    assert cfg.scan.interval_minutes == 30
    assert [s.name for s in cfg.provider.sources] == ["only-bybit"]
    assert cfg.telegram.token == "from-env"
    assert cfg.http.port == 8080
    assert cfg.presentation.locale == "vi"

    monkeypatch.setenv("SYMBOLS", "solusdt, dogeusdt")
    assert load_config(str(path)).scan.symbols == ["SOLUSDT", "DOGEUSDT"]
