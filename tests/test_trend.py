from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from shared.models.models import PriceTick, Trend
from strategy.trend import classify_trend, classify_windows, trend_summary

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _tick(sec: int, price: float) -> PriceTick:
    return PriceTick(ts=T0 + timedelta(seconds=sec), price=price, confidence=0.01)


def test_empty_history_is_sideways():
    assert classify_trend([], 0.01, 30) == Trend.SIDEWAYS


def test_single_entry_in_window_is_sideways():
    history = [_tick(0, 100), _tick(100, 90)]
    # 窗口 [70, 100] 只包含最后一个点
    assert classify_trend(history, 0.01, 30) == Trend.SIDEWAYS


def test_increasing_prices_classify_up():
    history = [_tick(i, 100 + i) for i in range(10)]
    assert classify_trend(history, 0.01, 30) == Trend.UP


def test_decreasing_prices_classify_down():
    history = [_tick(i, 100 - i) for i in range(10)]
    assert classify_trend(history, 0.01, 30) == Trend.DOWN


def test_change_below_threshold_is_sideways():
    history = [_tick(0, 100.0), _tick(10, 100.005)]
    # 0.005% < 0.01%
    assert classify_trend(history, 0.01, 30) == Trend.SIDEWAYS


def test_two_point_window_scenario():
    history = [_tick(0, 100), _tick(10, 99), _tick(20, 98), _tick(31, 97)]
    # cutoff = 31 - 30 = 1 → 使用 t=10..31，(97-99)/99*100 ≈ -2.02%
    assert classify_trend(history, 0.01, 30) == Trend.DOWN


def test_cutoff_is_inclusive():
    history = [_tick(0, 100), _tick(30, 100)]
    assert classify_trend(history, 0.01, 30) == Trend.SIDEWAYS
    history = [_tick(0, 100), _tick(30, 101)]
    assert classify_trend(history, 0.01, 30) == Trend.UP


def test_classification_is_order_invariant():
    history = [_tick(i * 3, 100 - i * 0.5) for i in range(12)]
    shuffled = list(history)
    random.Random(7).shuffle(shuffled)
    for window in (5, 15, 30):
        assert classify_trend(shuffled, 0.01, window) == classify_trend(history, 0.01, window)


def test_classify_windows_returns_one_result_per_window():
    history = [_tick(i, 100 - i) for i in range(60)]
    results = classify_windows(history, 0.01, [15, 30, 45])
    assert [r.seconds for r in results] == [15, 30, 45]
    assert all(r.trend == Trend.DOWN for r in results)


def test_trend_summary_uses_sorted_union_of_windows():
    history = [_tick(i, 100 + i) for i in range(60)]
    summary = trend_summary(history, 0.01, [45, 15, 30], [30, 10])
    assert [tw.seconds for tw in summary] == [10, 15, 30, 45]
    assert {tw.trend for tw in summary} == {Trend.UP}


@pytest.mark.parametrize("window", [1, 5, 60])
def test_zero_first_price_does_not_divide_by_zero(window: int):
    history = [_tick(0, 0.0), _tick(1, 1.0)]
    assert classify_trend(history, 0.01, window) == Trend.SIDEWAYS
