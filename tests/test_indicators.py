import asyncio

import pytest

from crypto_watcher.indicators import (
    MINUTE_MS,
    TickVolatilityEngine,
    VolatilityEngine,
    percent_change,
    rank_by_volatility,
    weighted_average,
)
from crypto_watcher.model import VolatilityResult
from crypto_watcher.storage import InMemoryPriceHistory

NOW = 1_700_000_000_000


def _history(points):
    history = InMemoryPriceHistory()
    for minutes_ago, price in points:
        asyncio.run(history.append("BTCUSDT", NOW - minutes_ago * MINUTE_MS, price))
    return history


def test_percent_change_same_price_is_zero():
    for x in (0.00012, 1.0, 95000.5, -3.0):
        assert percent_change(x, x) == 0


def test_percent_change_unavailable_reference():
    assert percent_change(100.0, None) is None
    assert percent_change(100.0, 0) is None
    assert percent_change(100.0, 0.0) is None


def test_percent_change_value():
    assert percent_change(110.0, 100.0) == pytest.approx(10.0)
    assert percent_change(90.0, 100.0) == pytest.approx(-10.0)


def test_weighted_average_example():
    assert weighted_average([1.0, 2.0, 5.0], [1.5, 1.2, 1.0]) == pytest.approx(2.41, abs=0.01)


def test_weighted_average_empty():
    assert weighted_average([], []) == 0.0


def test_volatility_first_tick_is_zero():
    engine = VolatilityEngine(_history([(1, 99.0)]))
    assert asyncio.run(engine.compute_volatility("BTCUSDT", 100.0, NOW, False)) == 0.0


def test_volatility_weights_resolved_horizons():
    engine = VolatilityEngine(_history([(1, 99.0), (5, 98.0), (15, 95.0)]))
    result = asyncio.run(engine.compute_volatility("BTCUSDT", 100.0, NOW, True))
    c1, c5, c15 = 100 / 99 - 1, 100 / 98 - 1, 100 / 95 - 1
    expected = (c1 * 1.5 + c5 * 1.2 + c15 * 1.0) * 100 / 3.7
    assert result == pytest.approx(expected)


def test_volatility_skips_zero_reference():
    engine = VolatilityEngine(_history([(1, 0.0), (5, 98.0), (15, 95.0)]))
    result = asyncio.run(engine.compute_volatility("BTCUSDT", 100.0, NOW, True))
    # 1m is dropped, so 5m and 15m take the first two weights
    c5, c15 = (100 / 98 - 1) * 100, (100 / 95 - 1) * 100
    assert result == pytest.approx((c5 * 1.5 + c15 * 1.2) / 2.7)
    assert result == pytest.approx(3.473, abs=0.001)


def test_volatility_without_history_is_zero():
    engine = VolatilityEngine(InMemoryPriceHistory())
    assert asyncio.run(engine.compute_volatility("BTCUSDT", 100.0, NOW, True)) == 0.0


def test_tick_volatility_uses_previous_price():
    engine = TickVolatilityEngine()
    result = asyncio.run(engine.compute_volatility("BTCUSDT", 95.0, NOW, True, previous_price=100.0))
    assert result == pytest.approx(5.0)
    assert asyncio.run(engine.compute_volatility("BTCUSDT", 95.0, NOW, True, previous_price=0.0)) == 0.0


def test_rank_is_bijection_and_stable():
    results = [
        VolatilityResult("A", 1.0),
        VolatilityResult("B", 3.0),
        VolatilityResult("C", 1.0),
        VolatilityResult("D", 0.5),
    ]
    ranks = rank_by_volatility(results)
    assert ranks == {"B": 1, "A": 2, "C": 3, "D": 4}
    assert sorted(ranks.values()) == list(range(1, len(results) + 1))
