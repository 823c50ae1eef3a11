"""有界价格历史缓冲（FIFO 淘汰）。"""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Iterable

from shared.models.models import PriceTick

DEFAULT_MAX_HISTORY = 1000


class PriceHistoryBuffer:
    """按到达顺序保存最近 `max_size` 个 tick。

    Notes
    -----
    - 物理顺序即追加顺序，缓冲本身从不重排；乱序由趋势分析在副本上处理。
    - append/snapshot 共用一把锁：行情线程追加时，引擎读到的快照不会是半更新状态。
    """

    def __init__(self, max_size: int = DEFAULT_MAX_HISTORY, ticks: Iterable[PriceTick] | None = None):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = int(max_size)
        self._ticks: Deque[PriceTick] = deque(maxlen=self.max_size)
        self._lock = threading.Lock()
        if ticks:
            self.extend(ticks)

    def append(self, tick: PriceTick) -> None:
        with self._lock:
            # deque(maxlen) 超界时自动丢弃队首
            self._ticks.append(tick)

    def extend(self, ticks: Iterable[PriceTick]) -> None:
        """批量追加（如从存储恢复），同样受 max_size 约束。"""
        with self._lock:
            self._ticks.extend(ticks)

    def latest(self) -> PriceTick | None:
        with self._lock:
            return self._ticks[-1] if self._ticks else None

    def snapshot(self) -> tuple[PriceTick, ...]:
        """返回不可变的有序副本，绝不暴露内部 deque。"""
        with self._lock:
            return tuple(self._ticks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ticks)
