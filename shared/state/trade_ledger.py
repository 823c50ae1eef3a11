"""已平仓交易账本（内存，append-only）。

除显式的 `clear()`（运维操作）外不支持删除；持久化由外部协作方读取快照完成。
"""

from __future__ import annotations

from typing import Iterable

from shared.models.models import ClosedTradeRecord
from utils.pnl import total_profit


class TradeLedger:
    def __init__(self, records: Iterable[ClosedTradeRecord] | None = None):
        self._records: list[ClosedTradeRecord] = list(records or [])

    def append(self, record: ClosedTradeRecord) -> None:
        self._records.append(record)

    def records(self) -> tuple[ClosedTradeRecord, ...]:
        return tuple(self._records)

    def clear(self) -> list[ClosedTradeRecord]:
        """清空账本，返回被移除的记录。"""
        removed = self._records
        self._records = []
        return removed

    def total_profit(self) -> float:
        return total_profit(self._records)

    def __len__(self) -> int:
        return len(self._records)
