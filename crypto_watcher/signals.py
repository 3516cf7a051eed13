from __future__ import annotations

from typing import Callable, Optional

from crypto_watcher.model import Signal

OVERBOUGHT = 70.0
OVERSOLD = 30.0


def _sign(x: float) -> int:
    return (x > 0) - (x < 0)


def range_position(current: float, high: float, low: float) -> float:
    """RSI-like 0..100 reading of where *current* sits in the 24h range."""
    price_range = high - low
    if price_range == 0:
        return 50.0
    return 100 - 100 * (high - current) / price_range


def classify_simple(
    change_15m: float,
    change_30m: float,
    current: Optional[float] = None,
    high: Optional[float] = None,
    low: Optional[float] = None,
) -> Signal:
    if change_15m > 1 and change_30m > 1:
        return Signal.BUY
    if change_15m < -1 and change_30m < -1:
        return Signal.SELL
    return Signal.NEUTRAL


def classify_extended(
    change_15m: float,
    change_30m: float,
    current: Optional[float] = None,
    high: Optional[float] = None,
    low: Optional[float] = None,
) -> Signal:
    """Trend, momentum and 24h-range heuristic. First matching rule wins."""
    if current is None or high is None or low is None:
        rsi_like = 50.0
    else:
        rsi_like = range_position(current, high, low)
    overbought = rsi_like > OVERBOUGHT
    oversold = rsi_like < OVERSOLD

    consistent = _sign(change_15m) == _sign(change_30m)
    high_momentum = abs(change_15m - change_30m) > 1.0

    if consistent and change_15m > 1 and change_30m > 0.5:
        return Signal.HOLD_CAUTIOUS if overbought else Signal.BUY
    if consistent and change_15m < -1 and change_30m < -0.5:
        return Signal.WAIT_CAUTIOUS if oversold else Signal.SELL
    if high_momentum:
        if change_15m > 1.5:
            return Signal.BUY_TENTATIVE
        if change_15m < -1.5:
            return Signal.SELL_TENTATIVE
        return Signal.WAIT_TENTATIVE
    if oversold and change_15m > 0.3:
        return Signal.BUY_TENTATIVE
    if overbought and change_15m < -0.3:
        return Signal.SELL_TENTATIVE
    if abs(change_15m) < 0.5 and abs(change_30m) < 0.5:
        return Signal.NEUTRAL
    return Signal.WATCH


Classifier = Callable[..., Signal]

CLASSIFIERS = {
    "simple": classify_simple,
    "extended": classify_extended,
}


def get_classifier(mode: str) -> Classifier:
    return CLASSIFIERS[mode]
