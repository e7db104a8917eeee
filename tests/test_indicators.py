import math

from momentum_signal_bot.indicators import (
    IndicatorParams,
    acceleration_series,
    atr_wilder_series,
    bollinger_series,
    compute_indicators,
    min_lookback,
    rsi_wilder_series,
    velocity_series,
)
from momentum_signal_bot.models import Candle


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(open_time_ms=idx * 60_000, open=o, high=h, low=l, close=c, volume=v)


def _wavy(n: int):
    out = []
    prev = 100.0
    for i in range(n):
        close = 100.0 + 5.0 * math.sin(i / 3.0) + 0.3 * i
        out.append(_c(i, prev, max(prev, close) + 0.5, min(prev, close) - 0.5, close))
        prev = close
    return out


def test_outputs_defined_exactly_from_min_lookback():
    candles = _wavy(60)
    params = IndicatorParams()
    series = compute_indicators(candles, params)
    lb = min_lookback(params)
    checks = {
        "rsi": [series.rsi],
        "bollinger": [series.sma_bb, series.bb_upper, series.bb_lower],
        "velocity": [series.velocity],
        "acceleration": [series.acceleration],
        "atr": [series.atr],
    }
    for name, arrays in checks.items():
        for arr in arrays:
            assert len(arr) == len(candles)
            for i, v in enumerate(arr):
                assert (v is not None) == (i >= lb[name]), (name, i, v)


def test_short_series_is_all_undefined():
    candles = _wavy(10)
    series = compute_indicators(candles, IndicatorParams())
    assert all(v is None for v in series.rsi)
    assert all(v is None for v in series.bb_upper)
    assert all(v is None for v in series.atr)


def test_rsi_known_values_and_bounds():
    rsi = rsi_wilder_series([1, 2, 1, 2], length=2)
    assert rsi[:2] == [None, None]
    assert rsi[2] == 50.0
    assert abs(rsi[3] - 75.0) < 1e-9

    series = compute_indicators(_wavy(120)).rsi
    assert all(0.0 <= v <= 100.0 for v in series if v is not None)


def test_rsi_saturates_when_no_losses():
    rsi = rsi_wilder_series([float(i) for i in range(30)], length=14)
    assert rsi[14] == 100.0
    assert rsi[-1] == 100.0


def test_bollinger_population_std_and_ordering():
    mid, upper, lower = bollinger_series([1.0, 2.0, 3.0], length=3, mult=2.0)
    std = math.sqrt(2.0 / 3.0)
    assert mid[2] == 2.0
    assert abs(upper[2] - (2.0 + 2 * std)) < 1e-12
    assert abs(lower[2] - (2.0 - 2 * std)) < 1e-12
    assert mid[:2] == [None, None]

    s = compute_indicators(_wavy(80))
    for u, lo in zip(s.bb_upper, s.bb_lower):
        if u is not None and lo is not None:
            assert u >= lo


def test_flat_closes_collapse_bands():
    _, upper, lower = bollinger_series([5.0] * 25, length=20)
    assert upper[-1] == lower[-1] == 5.0


def test_velocity_and_acceleration():
    vel = velocity_series([1, 2, 4, 7, 11], window=3)
    assert vel[:3] == [None, None, None]
    assert vel[3] == 2.0
    assert vel[4] == 3.0
    acc = acceleration_series(vel)
    assert acc[3] is None
    assert acc[4] == 1.0


def test_atr_wilder_seed_and_smoothing():
    candles = [
        _c(0, 9, 10, 8, 9),
        _c(1, 9, 11, 9, 10),
        _c(2, 10, 12, 10, 11),
        _c(3, 11, 14, 10, 12),
    ]
    atr = atr_wilder_series(candles, period=2)
    assert atr[:2] == [None, None]
    assert atr[2] == 2.0
    assert atr[3] == 3.0
