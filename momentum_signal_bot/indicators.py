from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import math

from .models import Candle

Series = List[Optional[float]]


@dataclass(frozen=True)
class IndicatorParams:
    rsi_length: int = 14
    bb_length: int = 20
    bb_std: float = 2.0
    velocity_sma: int = 3
    atr_length: int = 14


@dataclass(frozen=True)
class IndicatorSnapshot:
    rsi: Optional[float]
    sma_bb: Optional[float]
    bb_upper: Optional[float]
    bb_lower: Optional[float]
    velocity: Optional[float]
    acceleration: Optional[float]
    atr: Optional[float]


@dataclass(frozen=True)
class IndicatorSeries:
    rsi: Series
    sma_bb: Series
    bb_upper: Series
    bb_lower: Series
    velocity: Series
    acceleration: Series
    atr: Series

    def at(self, index: int) -> IndicatorSnapshot:
        return IndicatorSnapshot(
            rsi=self.rsi[index],
            sma_bb=self.sma_bb[index],
            bb_upper=self.bb_upper[index],
            bb_lower=self.bb_lower[index],
            velocity=self.velocity[index],
            acceleration=self.acceleration[index],
            atr=self.atr[index],
        )


def min_lookback(params: IndicatorParams) -> Dict[str, int]:
    """First index at which each indicator is defined."""
    return {
        "rsi": params.rsi_length,
        "bollinger": params.bb_length - 1,
        "velocity": params.velocity_sma,
        "acceleration": params.velocity_sma + 1,
        "atr": params.atr_length,
    }


def wilder_next(prev: float, x: float, length: int) -> float:
    """Wilder smoothing step: (prev*(n-1) + x) / n."""
    return (prev * (length - 1) + x) / length


def sma_series(values: Sequence[Optional[float]], length: int) -> Series:
    out: Series = [None] * len(values)
    if length <= 0:
        return out
    for i in range(length - 1, len(values)):
        window = values[i - length + 1 : i + 1]
        if any(v is None for v in window):
            continue
        out[i] = sum(window) / float(length)
    return out


def diff_series(values: Sequence[float]) -> Series:
    out: Series = [None] * len(values)
    for i in range(1, len(values)):
        out[i] = values[i] - values[i - 1]
    return out


def rsi_wilder_series(closes: Sequence[float], length: int = 14) -> Series:
    out: Series = [None] * len(closes)
    if length <= 0 or len(closes) < length + 1:
        return out

    def _rsi(avg_gain: float, avg_loss: float) -> float:
        if avg_loss == 0:
            return 100.0
        rs = avg_gain / avg_loss
        return 100.0 - (100.0 / (1.0 + rs))

    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch > 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    out[length] = _rsi(avg_gain, avg_loss)

    for i in range(length + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = wilder_next(avg_gain, ch if ch > 0 else 0.0, length)
        avg_loss = wilder_next(avg_loss, -ch if ch < 0 else 0.0, length)
        out[i] = _rsi(avg_gain, avg_loss)
    return out


def bollinger_series(closes: Sequence[float], length: int = 20, mult: float = 2.0) -> Tuple[Series, Series, Series]:
    """Rolling mean +/- mult * population std over the trailing ``length`` closes."""
    mid = sma_series(closes, length)
    upper: Series = [None] * len(closes)
    lower: Series = [None] * len(closes)
    for i, mean in enumerate(mid):
        if mean is None:
            continue
        window = closes[i - length + 1 : i + 1]
        std = math.sqrt(sum((v - mean) ** 2 for v in window) / length)
        upper[i] = mean + mult * std
        lower[i] = mean - mult * std
    return mid, upper, lower


def velocity_series(closes: Sequence[float], window: int = 3) -> Series:
    return sma_series(diff_series(closes), window)


def acceleration_series(velocity: Sequence[Optional[float]]) -> Series:
    out: Series = [None] * len(velocity)
    for i in range(1, len(velocity)):
        cur, prev = velocity[i], velocity[i - 1]
        if cur is not None and prev is not None:
            out[i] = cur - prev
    return out


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr_wilder_series(candles: Sequence[Candle], period: int = 14) -> Series:
    out: Series = [None] * len(candles)
    if period <= 0 or len(candles) < period + 1:
        return out
    # trs[k] belongs to candle k+1
    trs = [true_range(candles[i].high, candles[i].low, candles[i - 1].close) for i in range(1, len(candles))]
    atr = sum(trs[:period]) / period
    out[period] = atr
    for k in range(period, len(trs)):
        atr = wilder_next(atr, trs[k], period)
        out[k + 1] = atr
    return out


def compute_indicators(candles: Sequence[Candle], params: IndicatorParams = IndicatorParams()) -> IndicatorSeries:
    closes = [c.close for c in candles]
    mid, upper, lower = bollinger_series(closes, params.bb_length, params.bb_std)
    vel = velocity_series(closes, params.velocity_sma)
    return IndicatorSeries(
        rsi=rsi_wilder_series(closes, params.rsi_length),
        sma_bb=mid,
        bb_upper=upper,
        bb_lower=lower,
        velocity=vel,
        acceleration=acceleration_series(vel),
        atr=atr_wilder_series(candles, params.atr_length),
    )
