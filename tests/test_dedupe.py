import asyncio
from datetime import datetime, timedelta, timezone

from momentum_signal_bot.dedupe import is_duplicate
from momentum_signal_bot.models import LONG, SHORT, SL, SignalCandidate
from momentum_signal_bot.state import BotState

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = 60


def _cand(symbol="BTCUSDT", side=LONG) -> SignalCandidate:
    return SignalCandidate(
        symbol=symbol,
        side=side,
        entry=100.0,
        stop_loss=97.0 if side == LONG else 103.0,
        take_profit=106.0 if side == LONG else 94.0,
        risk_reward=2.0,
        confidence=70,
        timeframe="5m",
    )


def test_window_boundaries():
    async def _run():
        state = BotState()
        first = await state.admit(_cand(), WINDOW, now=NOW)
        inside = await state.admit(_cand(), WINDOW, now=NOW + timedelta(minutes=WINDOW - 1))
        outside = await state.admit(_cand(), WINDOW, now=NOW + timedelta(minutes=WINDOW + 1))
        return first, inside, outside

    first, inside, outside = asyncio.run(_run())
    assert first is not None
    assert inside is None
    assert outside is not None
    assert outside.signal_id != first.signal_id


def test_sides_and_symbols_are_independent():
    async def _run():
        state = BotState()
        a = await state.admit(_cand(side=LONG), WINDOW, now=NOW)
        b = await state.admit(_cand(side=SHORT), WINDOW, now=NOW)
        c = await state.admit(_cand(symbol="ETHUSDT"), WINDOW, now=NOW)
        return state, a, b, c

    state, a, b, c = asyncio.run(_run())
    assert a and b and c
    assert len(state.open_signals()) == 3


def test_resolved_signals_do_not_block():
    async def _run():
        state = BotState()
        first = await state.admit(_cand(), WINDOW, now=NOW)
        first.status = SL
        return await state.admit(_cand(), WINDOW, now=NOW + timedelta(minutes=5))

    assert asyncio.run(_run()) is not None


def test_is_duplicate_directly():
    async def _run():
        state = BotState()
        await state.admit(_cand(), WINDOW, now=NOW)
        return state.signals_snapshot()

    signals = asyncio.run(_run())
    assert is_duplicate("btcusdt", LONG, signals, WINDOW, now=NOW + timedelta(minutes=WINDOW))
    assert not is_duplicate("BTCUSDT", SHORT, signals, WINDOW, now=NOW)
    assert not is_duplicate("BTCUSDT", LONG, [], WINDOW, now=NOW)
