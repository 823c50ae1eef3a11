"""交易盈亏/持仓时长计算（纯函数，结果从不缓存在记录上）。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from shared.models.models import ClosedTradeRecord, OpenPosition


def record_profit(record: ClosedTradeRecord, close_price: float | None = None) -> float:
    """(avg_close_price - avg_open_price) * quantity。

    close_price 可覆盖平仓均价，用于按任意价格预估。
    """
    price = record.avg_close_price if close_price is None else close_price
    return (price - record.avg_open_price) * record.quantity


def record_duration(record: ClosedTradeRecord | OpenPosition, now: datetime | None = None) -> float:
    """持仓时长（秒）。未平仓持仓按 `now` 计算。"""
    close_time = getattr(record, "close_time", None)
    if close_time is None:
        close_time = now or datetime.now(timezone.utc)
    return (close_time - record.open_time).total_seconds()


def total_profit(records: Iterable[ClosedTradeRecord]) -> float:
    return sum((record_profit(r) for r in records), 0.0)


def position_profit(position: OpenPosition, price: float) -> float:
    """按当前价估算未实现盈亏。"""
    return (price - position.avg_open_price) * position.quantity


def position_profit_pct(position: OpenPosition, price: float) -> float:
    """未实现盈亏相对开仓均价的百分比（与平仓阈值同口径）。"""
    if not position.avg_open_price:
        return 0.0
    return position_profit(position, price) / position.avg_open_price * 100.0


def ledger_stats(records: Iterable[ClosedTradeRecord]) -> dict:
    """账本汇总：笔数、胜负、总/平均盈亏、平均持仓秒数。"""
    items = list(records)
    if not items:
        return {
            "trades": 0,
            "wins": 0,
            "losses": 0,
            "total_profit": 0.0,
            "avg_profit": 0.0,
            "avg_duration_secs": 0.0,
        }
    profits = [record_profit(r) for r in items]
    durations = [record_duration(r) for r in items]
    return {
        "trades": len(items),
        "wins": sum(1 for p in profits if p > 0),
        "losses": sum(1 for p in profits if p <= 0),
        "total_profit": sum(profits),
        "avg_profit": sum(profits) / len(items),
        "avg_duration_secs": sum(durations) / len(items),
    }
