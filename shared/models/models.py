"""核心数据结构：PriceTick/Trend/Operation/OpenPosition/ClosedTradeRecord。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class PriceTick:
    """一次价格观测（价格 + 置信区间）。

    `aux` 携带参考资产价格（如 btc/eth），仅用于展示，不参与趋势判断。
    """
    ts: datetime
    price: float
    confidence: float = 0.0
    aux: dict[str, float | None] = field(default_factory=dict)


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    SIDEWAYS = "sideways"


@dataclass(frozen=True)
class TrendWindow:
    """单个回看窗口的趋势分类结果（派生值，不持久化）。"""
    seconds: int
    trend: Trend


class OperationType(str, Enum):
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True)
class Operation:
    """决策引擎输出的开/平仓操作。"""
    type: OperationType
    tick: PriceTick         # 触发决策的 tick
    ts: datetime            # 决策完成（确认延迟结束）时间
    quantity: float | None = None  # 仅 open 使用


@dataclass
class OpenPosition:
    """当前唯一持仓。

    avg_open_price = (决策 tick 价格 + 下一个观测 tick 价格) / 2，用于模拟滑点。
    """
    open_tick: PriceTick
    after_open_tick: PriceTick
    avg_open_price: float
    open_time: datetime
    quantity: float
    best_price: float
    worst_price: float

    def observe(self, price: float) -> None:
        self.best_price = max(self.best_price, price)
        self.worst_price = min(self.worst_price, price)


@dataclass(frozen=True)
class ClosedTradeRecord:
    """已平仓交易快照（append-only 账本条目）。

    profit/duration 一律派生计算，见 `utils.pnl`。
    """
    quantity: float
    avg_open_price: float
    avg_close_price: float
    open_time: datetime
    close_time: datetime
    open_tick: PriceTick | None = None
    after_open_tick: PriceTick | None = None
    close_tick: PriceTick | None = None
    after_close_tick: PriceTick | None = None
    best_price: float | None = None
    worst_price: float | None = None
