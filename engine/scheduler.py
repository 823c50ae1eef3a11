"""确认延迟调度：把“决策 → 等待 → 提交”拆成显式的延迟提交任务。"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from engine.decision_engine import PendingDecision
from shared.utils.logging import setup_logger


class ConfirmationScheduler:
    """为每个待确认决策创建一个 asyncio 任务。

    Parameters
    ----------
    commit:
        延迟结束后调用，通常是 `TradingSession.commit`。
    cancel:
        任务被取消时调用，通常是 `TradingSession.cancel`，保证 guard 一定被释放。
    sleep:
        等待函数，测试中可替换为立即返回的假实现。
    """

    def __init__(
        self,
        commit: Callable[[PendingDecision], Any],
        cancel: Callable[[PendingDecision], Any],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None,
    ):
        self._commit = commit
        self._cancel = cancel
        self._sleep = sleep
        self.logger = logger or setup_logger("scheduler")
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def schedule(self, pending: PendingDecision) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._run(pending))
        self._tasks.add(task)

        # 任务在首次运行前被取消时协程体不会执行，因此取消处理放在 done 回调里
        def _on_done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                self.logger.info("Confirmation of %s decision cancelled.", pending.type.value)
                self._cancel(pending)
            elif t.exception() is not None:
                self.logger.error("Commit of %s decision failed: %s", pending.type.value, t.exception())

        task.add_done_callback(_on_done)
        return task

    async def _run(self, pending: PendingDecision) -> Any:
        try:
            await self._sleep(pending.delay_secs)
        except Exception:
            self._cancel(pending)
            raise
        return self._commit(pending)

    async def drain(self) -> None:
        """等待所有在途确认完成。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
