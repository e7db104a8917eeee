from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

from .config import StrategyConfig
from .errors import InsufficientHistory
from .indicators import IndicatorParams, compute_indicators
from .models import LONG, SHORT, Candle, SignalCandidate

log = logging.getLogger("generator")

CONFIDENCE_BASE = 60.0
CONFIDENCE_BONUS_MAX = 35.0
CONFIDENCE_SCALE = 10.0


def decide_side(
    rsi: float,
    close: float,
    bb_lower: float,
    bb_upper: float,
    acceleration: float,
    *,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> Optional[str]:
    if rsi < oversold and close < bb_lower and acceleration > 0:
        return LONG
    if rsi > overbought and close > bb_upper and acceleration < 0:
        return SHORT
    return None


def build_levels(side: str, entry: float, atr: float, *, stop_atr: float = 1.5, target_atr: float = 3.0) -> Tuple[float, float]:
    """Return (stop_loss, take_profit) a fixed ATR multiple away from entry."""
    if side == LONG:
        return entry - stop_atr * atr, entry + target_atr * atr
    if side == SHORT:
        return entry + stop_atr * atr, entry - target_atr * atr
    raise ValueError(f"Unknown side: {side}")


def risk_reward(entry: float, stop_loss: float, take_profit: float) -> float:
    risk = abs(entry - stop_loss)
    if risk == 0:
        raise ValueError("stop_loss equals entry")
    return abs(take_profit - entry) / risk


def confidence_score(acceleration: float, atr: float) -> int:
    # Heuristic strength, not a probability.
    bonus = min(CONFIDENCE_BONUS_MAX, max(0.0, abs(acceleration) / max(abs(atr), 1.0) * CONFIDENCE_SCALE))
    return int(math.floor(min(100.0, CONFIDENCE_BASE + bonus) + 0.5))


def indicator_params(cfg: StrategyConfig) -> IndicatorParams:
    return IndicatorParams(
        rsi_length=cfg.rsi_length,
        bb_length=cfg.bb_length,
        bb_std=cfg.bb_std,
        velocity_sma=cfg.velocity_sma,
        atr_length=cfg.atr_length,
    )


def require_history(candles: Sequence[Candle], min_candles: int) -> None:
    if len(candles) < min_candles:
        raise InsufficientHistory(f"{len(candles)} candles, need {min_candles}")


def evaluate(symbol: str, candles: Sequence[Candle], cfg: StrategyConfig) -> Optional[SignalCandidate]:
    """Apply the momentum rules to the latest candle; None when there is no setup."""
    try:
        require_history(candles, cfg.min_candles)
    except InsufficientHistory as e:
        log.debug("insufficient_history symbol=%s err=%s", symbol, e)
        return None

    snap = compute_indicators(candles, indicator_params(cfg)).at(-1)
    close = candles[-1].close
    values = (snap.rsi, snap.bb_lower, snap.bb_upper, snap.velocity, snap.acceleration, snap.atr)
    if any(v is None or math.isnan(v) for v in values):
        return None

    side = decide_side(
        snap.rsi,
        close,
        snap.bb_lower,
        snap.bb_upper,
        snap.acceleration,
        oversold=cfg.rsi_oversold,
        overbought=cfg.rsi_overbought,
    )
    if side is None:
        return None
    if snap.atr <= 0:
        return None

    sl, tp = build_levels(side, close, snap.atr, stop_atr=cfg.stop_atr_mult, target_atr=cfg.target_atr_mult)
    entry, sl, tp = round(close, 8), round(sl, 8), round(tp, 8)
    if sl == entry or tp == entry:
        log.debug("levels_collapsed symbol=%s entry=%s sl=%s tp=%s", symbol, entry, sl, tp)
        return None
    return SignalCandidate(
        symbol=symbol,
        side=side,
        entry=entry,
        stop_loss=sl,
        take_profit=tp,
        # computed from the stored levels
        risk_reward=round(risk_reward(entry, sl, tp), 2),
        confidence=confidence_score(snap.acceleration, snap.atr),
        timeframe=cfg.timeframe,
        meta={
            "rsi": round(snap.rsi, 2),
            "velocity": round(snap.velocity, 8),
            "acc": round(snap.acceleration, 8),
            "atr": round(snap.atr, 8),
            "lower_bb": round(snap.bb_lower, 8),
            "upper_bb": round(snap.bb_upper, 8),
        },
    )


class SignalGenerator:
    def __init__(self, source, cfg: StrategyConfig):
        self.source = source
        self.cfg = cfg

    async def generate(self, symbol: str) -> Optional[SignalCandidate]:
        """Fetch analysis candles and evaluate. DataUnavailable propagates to the caller."""
        symbol = symbol.upper()
        candles = await self.source.fetch_candles(symbol, self.cfg.timeframe, self.cfg.history_candles)
        return evaluate(symbol, candles, self.cfg)
