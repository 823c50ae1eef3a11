"""短期价格趋势分类（两点百分比变化）。

每个窗口独立评估：
- 取最新 tick 时间为 `current`，窗口为 `[current - seconds, current]`（含边界）；
- 窗口内不足 2 个点 → sideways；
- 否则用窗口内首尾价格计算百分比变化，绝对值低于阈值 → sideways，否则按符号 up/down。
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Sequence

from shared.models.models import PriceTick, Trend, TrendWindow

DEFAULT_MIN_PERCENT_CHANGE = 0.01


def classify_trend(
    history: Sequence[PriceTick],
    min_percent_change: float = DEFAULT_MIN_PERCENT_CHANGE,
    window_seconds: int = 30,
) -> Trend:
    """对单个回看窗口做趋势分类。

    Parameters
    ----------
    history:
        价格历史；无需有序，函数内部会在副本上按时间升序排序。
    min_percent_change:
        百分比阈值，例如 0.01 表示 0.01%。
    window_seconds:
        回看窗口长度（秒）。

    Returns
    -------
    Trend
        up / down / sideways。
    """
    if not history:
        return Trend.SIDEWAYS

    ordered = sorted(history, key=lambda t: t.ts)
    cutoff = ordered[-1].ts - timedelta(seconds=window_seconds)
    relevant = [t for t in ordered if t.ts >= cutoff]
    if len(relevant) < 2:
        return Trend.SIDEWAYS

    first_price = relevant[0].price
    last_price = relevant[-1].price
    if not first_price:
        return Trend.SIDEWAYS
    percent_change = (last_price - first_price) / first_price * 100.0

    if abs(percent_change) < min_percent_change:
        return Trend.SIDEWAYS
    return Trend.UP if percent_change > 0 else Trend.DOWN


def classify_windows(
    history: Sequence[PriceTick],
    min_percent_change: float,
    windows: Iterable[int],
) -> list[TrendWindow]:
    return [TrendWindow(seconds=int(w), trend=classify_trend(history, min_percent_change, int(w))) for w in windows]


def trend_summary(
    history: Sequence[PriceTick],
    min_percent_change: float,
    open_windows: Iterable[int],
    close_windows: Iterable[int],
) -> list[TrendWindow]:
    """开仓/平仓窗口并集（去重、升序）的趋势一览，供展示层使用。"""
    windows = sorted({int(w) for w in open_windows} | {int(w) for w in close_windows})
    return classify_windows(history, min_percent_change, windows)
