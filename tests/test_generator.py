import asyncio

import pytest

from momentum_signal_bot import generator
from momentum_signal_bot.config import StrategyConfig
from momentum_signal_bot.errors import InsufficientHistory
from momentum_signal_bot.generator import (
    SignalGenerator,
    build_levels,
    confidence_score,
    decide_side,
    evaluate,
    require_history,
    risk_reward,
)
from momentum_signal_bot.indicators import IndicatorSnapshot
from momentum_signal_bot.models import LONG, SHORT, Candle


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 300_000, open=o, high=h, low=l, close=c, volume=v)


def _series(closes):
    out = []
    prev = closes[0]
    for i, close in enumerate(closes):
        out.append(_c(i, prev, max(prev, close), min(prev, close), close))
        prev = close
    return out


class _FixedSeries:
    def __init__(self, snap):
        self.snap = snap

    def at(self, index):
        return self.snap


def _snap(rsi=25.0, lower=98.0, upper=110.0, acc=0.3, atr=2.0):
    return IndicatorSnapshot(rsi=rsi, sma_bb=104.0, bb_upper=upper, bb_lower=lower, velocity=-0.5, acceleration=acc, atr=atr)


def test_concrete_long_scenario(monkeypatch):
    monkeypatch.setattr(generator, "compute_indicators", lambda candles, params: _FixedSeries(_snap()))
    candles = _series([95.0] * 40)
    cand = evaluate("BTCUSDT", candles, StrategyConfig())
    assert cand is not None
    assert cand.side == LONG
    assert cand.entry == 95.0
    assert cand.stop_loss == 92.0
    assert cand.take_profit == 101.0
    assert cand.risk_reward == 2.0
    assert cand.confidence == 62
    assert cand.timeframe == "5m"
    assert cand.meta["velocity"] == -0.5


def test_undefined_indicator_means_no_signal(monkeypatch):
    monkeypatch.setattr(generator, "compute_indicators", lambda candles, params: _FixedSeries(_snap(acc=None)))
    assert evaluate("BTCUSDT", _series([95.0] * 40), StrategyConfig()) is None


def test_each_rule_is_required():
    assert decide_side(25, 95, 98, 110, 0.3) == LONG
    assert decide_side(30, 95, 98, 110, 0.3) is None
    assert decide_side(25, 98, 98, 110, 0.3) is None
    assert decide_side(25, 95, 98, 110, 0.0) is None

    assert decide_side(75, 115, 98, 110, -0.3) == SHORT
    assert decide_side(70, 115, 98, 110, -0.3) is None
    assert decide_side(75, 110, 98, 110, -0.3) is None
    assert decide_side(75, 115, 98, 110, 0.1) is None


def test_levels_fix_risk_reward_at_two():
    for side in (LONG, SHORT):
        for entry, atr in ((95.0, 2.0), (0.01234, 0.00017), (64000.0, 312.5)):
            sl, tp = build_levels(side, entry, atr)
            assert abs(risk_reward(entry, sl, tp) - 2.0) < 1e-9
            if side == LONG:
                assert sl < entry < tp
            else:
                assert tp < entry < sl


def test_confidence_score():
    assert confidence_score(0.3, 2.0) == 62
    assert confidence_score(-0.3, 2.0) == 62
    assert confidence_score(100.0, 2.0) == 95
    assert confidence_score(0.0, 2.0) == 60
    # ATR below one is floored to one
    assert confidence_score(0.05, 0.5) == 61


def test_too_few_candles():
    assert evaluate("BTCUSDT", _series([100.0] * 29), StrategyConfig()) is None
    with pytest.raises(InsufficientHistory):
        require_history(_series([100.0] * 29), 30)
    require_history(_series([100.0] * 30), 30)


def test_long_after_flat_then_crash():
    cand = evaluate("BTCUSDT", _series([100.0] * 40 + [98.0, 88.0, 78.0, 77.0]), StrategyConfig())
    assert cand is not None
    assert cand.side == LONG
    assert cand.entry == 77.0
    assert cand.stop_loss < cand.entry < cand.take_profit
    assert cand.risk_reward == 2.0
    assert 60 <= cand.confidence <= 100
    assert cand.meta["rsi"] < 30


def test_short_after_flat_then_spike():
    cand = evaluate("BTCUSDT", _series([100.0] * 40 + [102.0, 112.0, 122.0, 123.0]), StrategyConfig())
    assert cand is not None
    assert cand.side == SHORT
    assert cand.take_profit < cand.entry < cand.stop_loss
    assert cand.risk_reward == 2.0


def test_no_signal_when_crash_still_accelerating():
    assert evaluate("BTCUSDT", _series([100.0] * 40 + [98.0, 88.0, 78.0, 60.0]), StrategyConfig()) is None


def test_generate_fetches_analysis_timeframe():
    class _Source:
        def __init__(self):
            self.calls = []

        async def fetch_candles(self, symbol, interval, limit):
            self.calls.append((symbol, interval, limit))
            return _series([100.0] * 40 + [98.0, 88.0, 78.0, 77.0])

    src = _Source()
    cand = asyncio.run(SignalGenerator(src, StrategyConfig()).generate("btcusdt"))
    assert src.calls == [("BTCUSDT", "5m", 200)]
    assert cand is not None and cand.symbol == "BTCUSDT"


def test_tiny_prices_keep_stored_levels_consistent(monkeypatch):
    snap = IndicatorSnapshot(rsi=25.0, sma_bb=3e-7, bb_upper=4e-7, bb_lower=2.5e-7, velocity=-1e-9, acceleration=1e-10, atr=1.3e-8)
    monkeypatch.setattr(generator, "compute_indicators", lambda candles, params: _FixedSeries(snap))
    cand = evaluate("PEPEUSDT", _series([2e-7] * 40), StrategyConfig())
    assert cand is not None
    assert cand.stop_loss < cand.entry < cand.take_profit
    assert cand.risk_reward == round(risk_reward(cand.entry, cand.stop_loss, cand.take_profit), 2)


def test_levels_collapsing_on_rounding_mean_no_signal(monkeypatch):
    snap = IndicatorSnapshot(rsi=25.0, sma_bb=1e-8, bb_upper=1e-7, bb_lower=1e-8, velocity=-1e-10, acceleration=1e-10, atr=1e-9)
    monkeypatch.setattr(generator, "compute_indicators", lambda candles, params: _FixedSeries(snap))
    assert evaluate("DUSTUSDT", _series([3e-9] * 40), StrategyConfig()) is None
