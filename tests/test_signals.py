import pytest

from crypto_watcher.model import Signal
from crypto_watcher.signals import classify_extended, classify_simple, get_classifier, range_position


def test_extended_buy_and_sell():
    assert classify_extended(2, 1.5, 100, 110, 90) == Signal.BUY
    assert classify_extended(-2, -1.5, 100, 110, 90) == Signal.SELL


def test_extended_neutral_low_movement():
    assert classify_extended(0.1, -0.1, 100, 110, 90) == Signal.NEUTRAL
    assert classify_extended(0.1, -0.1, 109, 110, 90) == Signal.NEUTRAL


def test_extended_overbought_uptrend_holds():
    assert classify_extended(2, 1.5, 109, 110, 90) == Signal.HOLD_CAUTIOUS


def test_extended_oversold_downtrend_waits():
    assert classify_extended(-2, -1.5, 91, 110, 90) == Signal.WAIT_CAUTIOUS


def test_extended_range_reversals():
    assert classify_extended(0.5, -0.2, 92, 110, 90) == Signal.BUY_TENTATIVE
    assert classify_extended(-0.5, 0.2, 108, 110, 90) == Signal.SELL_TENTATIVE


def test_extended_high_momentum():
    assert classify_extended(2.0, -0.5, 100, 110, 90) == Signal.BUY_TENTATIVE
    assert classify_extended(-2.0, 0.5, 100, 110, 90) == Signal.SELL_TENTATIVE
    assert classify_extended(0.8, -0.8, 100, 110, 90) == Signal.WAIT_TENTATIVE


def test_extended_watch_for_mixed():
    assert classify_extended(0.7, -0.2, 100, 110, 90) == Signal.WATCH


def test_range_position_flat_range_is_neutral():
    assert range_position(100, 100, 100) == 50.0
    assert range_position(110, 110, 90) == 100.0


def test_simple_classifier():
    assert classify_simple(2, 1.5) == Signal.BUY
    assert classify_simple(-2, -1.5) == Signal.SELL
    assert classify_simple(0.5, -0.3) == Signal.NEUTRAL
    assert classify_simple(2, 0.5) == Signal.NEUTRAL


def test_get_classifier():
    assert get_classifier("simple") is classify_simple
    assert get_classifier("extended") is classify_extended


def test_get_classifier_rejects_unknown_mode():
    with pytest.raises(KeyError):
        get_classifier("aggressive")
