"""实时/干跑交易引擎（TradingEngine）。

目标是“一眼能看懂”：配置 → 恢复状态 → 行情源 → 会话决策 → 延迟确认提交 → 定时落盘 → 总结。

运维命令（`close` / `clear`）经 `CommandInbox` 投递，每个 tick 执行一次并立即落盘。
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable

from engine.base_engine import BaseEngine, EngineResult
from engine.scheduler import ConfirmationScheduler
from engine.session import PositionStateError, TradingSession
from market.client import PriceFeed, ReferencePriceTracker, build_price_feed
from market.history import PriceHistoryBuffer
from shared.config.config_loader import AppConfig, load_config
from shared.state.command_inbox import CommandInbox, inbox_dir_for
from shared.state.json_store import JsonStateStore
from shared.state.trade_ledger import TradeLedger
from shared.utils.logging import setup_logger
from utils.pnl import position_profit


class TradingEngine(BaseEngine):
    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: AppConfig | None = None,
        max_ticks: int | None = None,
        feed: PriceFeed | None = None,
        store: JsonStateStore | None = None,
        inbox: CommandInbox | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._max_ticks = max_ticks
        self._feed = feed
        self._store = store
        self._inbox = inbox
        self._sleep = sleep

        self.cfg: AppConfig | None = None
        self.session: TradingSession | None = None

    def run(self) -> EngineResult:
        return asyncio.run(self.run_async())

    async def run_async(self) -> EngineResult:
        cfg = self._load_cfg()
        self.cfg = cfg
        logger = setup_logger("engine", cfg.log_level)

        store = self._build_store(cfg)
        session = self._build_session(cfg, store=store, logger=logger)
        self.session = session

        reference: ReferencePriceTracker | None = None
        feed = self._feed
        if feed is None:
            feed, reference = build_price_feed(cfg.feed, logger=logger)

        scheduler = ConfirmationScheduler(
            commit=session.commit, cancel=session.cancel, sleep=self._sleep, logger=logger
        )
        background: list[asyncio.Task] = []
        if reference is not None:
            background.append(asyncio.create_task(reference.run()))
        if store is not None:
            background.append(
                asyncio.create_task(self._flush_loop(session, store, cfg.state.flush_interval_secs, logger))
            )

        inbox = self._inbox or CommandInbox(inbox_dir_for(cfg.state.path, cfg.state.command_dir))
        stale = inbox.pop_all()
        if stale:
            logger.warning("Discarded %d command(s) left from a previous run: %s", len(stale), stale)
        inbox.mark_running()

        tick_count = 0
        try:
            async with contextlib.aclosing(feed.ticks()) as ticks:
                async for tick in ticks:
                    tick_count += 1
                    pending = session.on_tick(tick)
                    if pending is not None:
                        scheduler.schedule(pending)
                    self._handle_commands(session, inbox, store, logger)
                    if self._max_ticks is not None and tick_count >= self._max_ticks:
                        logger.info("Reached max_ticks=%s, exiting runner.", self._max_ticks)
                        break
            # 已触发的决策一定走完确认流程
            await scheduler.drain()
            self._handle_commands(session, inbox, store, logger)
        finally:
            inbox.clear_running()
            scheduler.cancel_all()
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            if store is not None:
                store.save(session.state_snapshot())

        return EngineResult(summary=self._build_summary(session, tick_count))

    @staticmethod
    def _handle_commands(
        session: TradingSession, inbox: CommandInbox, store: JsonStateStore | None, logger
    ) -> int:
        """执行收件箱中的运维命令；有命令生效时立即落盘，避免定时落盘写回旧状态。"""
        handled = 0
        for command in inbox.pop_all():
            if command == "close":
                if not session.force_close():
                    logger.info("Close command ignored: no position to close.")
                    continue
            elif command == "clear":
                try:
                    session.force_clear()
                except PositionStateError as exc:
                    logger.error("Clear command failed: %s", exc)
                    continue
            else:
                logger.warning("Ignoring unknown command %r", command)
                continue
            handled += 1
        if handled and store is not None:
            store.save(session.state_snapshot())
        return handled

    def _load_cfg(self) -> AppConfig:
        return self._cfg_obj or load_config(self._cfg_path)

    def _build_store(self, cfg: AppConfig) -> JsonStateStore | None:
        if self._store is not None:
            return self._store
        if not cfg.state.enabled:
            return None
        return JsonStateStore(cfg.state.path)

    @staticmethod
    def _build_session(cfg: AppConfig, *, store: JsonStateStore | None, logger) -> TradingSession:
        history = PriceHistoryBuffer(cfg.trading.max_history)
        ledger = TradeLedger()
        position = None
        if store is not None:
            state = store.load()
            history.extend(state.history)
            ledger = TradeLedger(state.ledger)
            position = state.position
            logger.info(
                "Restored state: %d ticks, %d closed trades, position=%s",
                len(history),
                len(ledger),
                "open" if position is not None else "none",
            )
        return TradingSession(cfg.trading, history=history, ledger=ledger, position=position, logger=logger)

    @staticmethod
    async def _flush_loop(session: TradingSession, store: JsonStateStore, interval_secs: float, logger) -> None:
        while True:
            await asyncio.sleep(interval_secs)
            try:
                store.save(session.state_snapshot())
            except OSError as exc:
                # 落盘失败不影响决策，下一轮重试
                logger.warning("State flush failed: %s", exc)

    @staticmethod
    def _build_summary(session: TradingSession, tick_count: int) -> dict[str, Any]:
        latest = session.history.latest()
        unrealized = 0.0
        if session.position is not None and latest is not None:
            unrealized = position_profit(session.position, latest.price)
        return {
            "ticks": tick_count,
            "position": session.position,
            "closed_trades": len(session.ledger),
            "realized_pnl": session.ledger.total_profit(),
            "unrealized_pnl": unrealized,
        }
