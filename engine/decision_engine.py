"""单持仓交易决策引擎（TradeDecisionEngine）。

流程
----
- 无持仓：`open_trend_windows` 全部为 down → 计算 quantity，生成待确认的 open 决策；
- 有持仓：`close_trend_windows` 全部为 up，且盈利金额/百分比同时达标 → 生成待确认的 close 决策；
- 决策不直接提交：返回 `PendingDecision`，确认延迟结束后由调度方调用 `complete()` 取回 `Operation`。

重入保护
--------
每个引擎实例持有一个 `DecisionGuard`。从 `evaluate()` 开始到 `complete()/cancel()/reset()` 为止，
guard 处于占用状态，期间的 `evaluate()` 直接返回 None（不排队、不重试、不报错）。
任何提前退出（条件不满足/抛异常）都会释放 guard。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from shared.config.config_loader import TradingConfig
from shared.models.models import OpenPosition, Operation, OperationType, PriceTick, Trend
from shared.utils.logging import setup_logger
from strategy.trend import classify_windows
from utils.pnl import position_profit


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DecisionGuard:
    """实例级重入标志：同一时刻最多一个决策在途。"""

    def __init__(self):
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


@dataclass(frozen=True)
class PendingDecision:
    """已通过检查、等待确认延迟结束的决策。"""
    type: OperationType
    tick: PriceTick
    decided_at: datetime
    delay_secs: float
    generation: int
    quantity: float | None = None


class TradeDecisionEngine:
    """逐 tick 评估开/平仓条件。

    Parameters
    ----------
    cfg:
        交易常量。
    clock:
        当前时间来源（测试中可注入固定时间）。
    """

    def __init__(self, cfg: TradingConfig, clock: Callable[[], datetime] | None = None, logger=None):
        self.cfg = cfg
        self._clock = clock or _utc_now
        self.logger = logger or setup_logger("decision")
        self._guard = DecisionGuard()
        # reset() 后递增，用于识别失效的在途决策
        self._generation = 0

    @property
    def busy(self) -> bool:
        return self._guard.held

    def now(self) -> datetime:
        return self._clock()

    def evaluate(self, history: Sequence[PriceTick], position: OpenPosition | None) -> PendingDecision | None:
        """评估一次；返回待确认决策或 None。

        返回非 None 时 guard 保持占用，直到 `complete()`/`cancel()`/`reset()`。
        """
        if not self._guard.try_acquire():
            self.logger.debug("Decision in flight, skip evaluation.")
            return None

        keep_guard = False
        try:
            pending = self._decide(history, position)
            keep_guard = pending is not None
            return pending
        finally:
            if not keep_guard:
                self._guard.release()

    def complete(self, pending: PendingDecision) -> Operation | None:
        """确认延迟结束：释放 guard 并生成可提交的 Operation。

        reset() 之前产生的决策已失效，返回 None 且不触碰 guard。
        """
        if pending.generation != self._generation:
            self.logger.info("Dropping stale %s decision from before reset.", pending.type.value)
            return None
        self._guard.release()
        return Operation(
            type=pending.type,
            tick=pending.tick,
            ts=self._clock(),
            quantity=pending.quantity,
        )

    def cancel(self, pending: PendingDecision) -> None:
        """放弃在途决策（如确认任务被取消）。"""
        if pending.generation == self._generation:
            self._guard.release()

    def reset(self) -> None:
        """丢弃所有在途决策状态。"""
        self._generation += 1
        self._guard.release()

    def _decide(self, history: Sequence[PriceTick], position: OpenPosition | None) -> PendingDecision | None:
        if not history:
            return None
        current = history[-1]

        if position is not None:
            return self._decide_close(history, current, position)
        return self._decide_open(history, current)

    def _decide_close(
        self, history: Sequence[PriceTick], current: PriceTick, position: OpenPosition
    ) -> PendingDecision | None:
        trends = classify_windows(history, self.cfg.trend_min_pct_change, self.cfg.close_trend_windows)
        if any(tw.trend != Trend.UP for tw in trends):
            return None

        profit = position_profit(position, current.price)
        profit_pct = profit / position.avg_open_price * 100.0 if position.avg_open_price else 0.0
        self.logger.debug("Profit: %.4f$ (%.2f%%)", profit, profit_pct)
        if profit < self.cfg.min_profit_amount_to_close or profit_pct < self.cfg.min_profit_pct_to_close:
            return None

        self.logger.info(
            "Close triggered at %.4f (profit=%.4f, %.2f%%), confirming in %.1fs.",
            current.price,
            profit,
            profit_pct,
            self.cfg.confirmation_delay_secs,
        )
        return PendingDecision(
            type=OperationType.CLOSE,
            tick=current,
            decided_at=self._clock(),
            delay_secs=self.cfg.confirmation_delay_secs,
            generation=self._generation,
        )

    def _decide_open(self, history: Sequence[PriceTick], current: PriceTick) -> PendingDecision | None:
        trends = classify_windows(history, self.cfg.trend_min_pct_change, self.cfg.open_trend_windows)
        if any(tw.trend != Trend.DOWN for tw in trends):
            return None
        if current.price <= 0:
            return None

        quantity = self.cfg.investment_amount / current.price
        self.logger.info(
            "Open triggered at %.4f (qty=%.6f), confirming in %.1fs.",
            current.price,
            quantity,
            self.cfg.confirmation_delay_secs,
        )
        return PendingDecision(
            type=OperationType.OPEN,
            tick=current,
            decided_at=self._clock(),
            delay_secs=self.cfg.confirmation_delay_secs,
            generation=self._generation,
            quantity=quantity,
        )
