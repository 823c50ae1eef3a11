"""交易会话：持有价格历史、当前持仓、账本与决策引擎。

对外调用约定（进程内）：
- `on_tick(tick)`：行情源每次更新调用；追加历史、更新持仓极值，并在运行状态下评估决策；
- `commit(pending)`：确认延迟结束后提交；
- `force_close()` / `force_clear()`：运维命令；
- `position` / `history_snapshot()` / `ledger_snapshot()` / `state_snapshot()`：供持久化与展示读取。
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable

from engine.decision_engine import PendingDecision, TradeDecisionEngine
from market.history import PriceHistoryBuffer
from shared.config.config_loader import TradingConfig
from shared.models.models import (
    ClosedTradeRecord,
    OpenPosition,
    Operation,
    OperationType,
    PriceTick,
    TrendWindow,
)
from shared.state.trade_ledger import TradeLedger
from shared.utils.logging import setup_logger
from strategy.trend import trend_summary
from utils.pnl import record_profit


class PositionStateError(RuntimeError):
    """提交的操作与当前持仓状态不符（已有持仓再开仓 / 无持仓却平仓）。"""


class TradingSession:
    def __init__(
        self,
        cfg: TradingConfig,
        *,
        history: PriceHistoryBuffer | None = None,
        ledger: TradeLedger | None = None,
        position: OpenPosition | None = None,
        engine: TradeDecisionEngine | None = None,
        clock: Callable | None = None,
        logger=None,
    ):
        self.cfg = cfg
        self.logger = logger or setup_logger("session")
        self.history = history if history is not None else PriceHistoryBuffer(cfg.max_history)
        self.ledger = ledger if ledger is not None else TradeLedger()
        self.position = position
        self.engine = engine or TradeDecisionEngine(cfg, clock=clock, logger=self.logger)
        self._running = bool(cfg.autostart)

    # ------------------------------------------------------------------ status

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self.logger.info("Trading started.")

    def stop(self) -> None:
        """停止新决策；历史继续累积，在途决策照常提交。"""
        self._running = False
        self.logger.info("Trading stopped.")

    # ------------------------------------------------------------------ inbound

    def on_tick(self, tick: PriceTick) -> PendingDecision | None:
        self.history.append(tick)
        if self.position is not None:
            self.position.observe(tick.price)
        if not self._running:
            return None
        return self.engine.evaluate(self.history.snapshot(), self.position)

    def commit(self, pending: PendingDecision) -> bool:
        operation = self.engine.complete(pending)
        if operation is None:
            return False
        return self.apply(operation)

    def cancel(self, pending: PendingDecision) -> None:
        self.engine.cancel(pending)

    def apply(self, operation: Operation) -> bool:
        """提交操作；avg 价格取决策 tick 与当前最新 tick 的均值。

        Returns
        -------
        bool
            是否实际改变了持仓。状态不符时返回 False（strict_apply 下抛 PositionStateError）。
        """
        after_tick = self.history.latest() or operation.tick

        if operation.type == OperationType.OPEN:
            if self.position is not None:
                return self._reject(operation, "position already open")
            if operation.quantity is None:
                raise ValueError("open operation requires quantity")
            self.position = OpenPosition(
                open_tick=operation.tick,
                after_open_tick=after_tick,
                avg_open_price=(operation.tick.price + after_tick.price) / 2,
                open_time=operation.ts,
                quantity=operation.quantity,
                best_price=operation.tick.price,
                worst_price=operation.tick.price,
            )
            self.logger.info(
                "Opened position qty=%.6f avg_open=%.4f", self.position.quantity, self.position.avg_open_price
            )
            return True

        if self.position is None:
            return self._reject(operation, "no open position")
        pos = self.position
        record = ClosedTradeRecord(
            quantity=pos.quantity,
            avg_open_price=pos.avg_open_price,
            avg_close_price=(operation.tick.price + after_tick.price) / 2,
            open_time=pos.open_time,
            close_time=operation.ts,
            open_tick=pos.open_tick,
            after_open_tick=pos.after_open_tick,
            close_tick=operation.tick,
            after_close_tick=after_tick,
            best_price=pos.best_price,
            worst_price=pos.worst_price,
        )
        self.ledger.append(record)
        self.position = None
        self.logger.info(
            "Closed position avg_open=%.4f avg_close=%.4f profit=%.4f$",
            record.avg_open_price,
            record.avg_close_price,
            record_profit(record),
        )
        return True

    def _reject(self, operation: Operation, reason: str) -> bool:
        msg = f"Rejected {operation.type.value} operation: {reason}"
        if self.cfg.strict_apply:
            raise PositionStateError(msg)
        self.logger.error(msg)
        return False

    # ------------------------------------------------------------------ operator commands

    def force_close(self) -> bool:
        """用最新 tick 立即平仓，跳过趋势与盈利检查。"""
        if self.position is None:
            return False
        latest = self.history.latest()
        if latest is None:
            self.logger.warning("Force close requested but no price observed yet.")
            return False
        self.logger.warning("Force closing position at %.4f.", latest.price)
        closed = self.apply(Operation(type=OperationType.CLOSE, tick=latest, ts=self.engine.now()))
        # 在途的自动平仓决策随之失效
        self.engine.reset()
        return closed

    def force_clear(self) -> list[ClosedTradeRecord]:
        """先强制平掉当前持仓，再清空账本并丢弃在途决策。

        Raises
        ------
        PositionStateError
            有持仓但没有任何价格可用于平仓。
        """
        if self.position is not None and not self.force_close():
            raise PositionStateError("cannot clear ledger while a position is open and cannot be closed")
        removed = self.ledger.clear()
        self.engine.reset()
        self.logger.warning("Trade ledger cleared (%d records removed).", len(removed))
        return removed

    # ------------------------------------------------------------------ outbound

    def history_snapshot(self) -> tuple[PriceTick, ...]:
        return self.history.snapshot()

    def ledger_snapshot(self) -> tuple[ClosedTradeRecord, ...]:
        return self.ledger.records()

    def trends(self) -> list[TrendWindow]:
        return trend_summary(
            self.history.snapshot(),
            self.cfg.trend_min_pct_change,
            self.cfg.open_trend_windows,
            self.cfg.close_trend_windows,
        )

    def state_snapshot(self) -> dict[str, Any]:
        return {
            "history": list(self.history.snapshot()),
            "ledger": list(self.ledger.records()),
            "position": replace(self.position) if self.position is not None else None,
            "running": self._running,
        }
