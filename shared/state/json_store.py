"""会话状态 JSON 落盘（价格历史 / 账本 / 当前持仓）。

设计
----
- 只保存 `TradingSession.state_snapshot()` 暴露的外部快照，核心本身不做 I/O。
- 写入先落临时文件再 `replace`，避免进程中断留下半截 JSON。
- 时间统一存 ISO 8601（UTC）。
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from shared.models.models import ClosedTradeRecord, OpenPosition, PriceTick


def _ts(value: datetime) -> str:
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def tick_to_dict(tick: PriceTick) -> dict[str, Any]:
    return {"ts": _ts(tick.ts), "price": tick.price, "confidence": tick.confidence, "aux": dict(tick.aux)}


def tick_from_dict(data: dict[str, Any]) -> PriceTick:
    return PriceTick(
        ts=_parse_ts(data["ts"]),
        price=float(data["price"]),
        confidence=float(data.get("confidence") or 0.0),
        aux=dict(data.get("aux") or {}),
    )


def _opt_tick(tick: PriceTick | None) -> dict[str, Any] | None:
    return tick_to_dict(tick) if tick is not None else None


def _opt_tick_from(data: dict[str, Any] | None) -> PriceTick | None:
    return tick_from_dict(data) if data else None


def record_to_dict(record: ClosedTradeRecord) -> dict[str, Any]:
    return {
        "quantity": record.quantity,
        "avg_open_price": record.avg_open_price,
        "avg_close_price": record.avg_close_price,
        "open_time": _ts(record.open_time),
        "close_time": _ts(record.close_time),
        "open_tick": _opt_tick(record.open_tick),
        "after_open_tick": _opt_tick(record.after_open_tick),
        "close_tick": _opt_tick(record.close_tick),
        "after_close_tick": _opt_tick(record.after_close_tick),
        "best_price": record.best_price,
        "worst_price": record.worst_price,
    }


def record_from_dict(data: dict[str, Any]) -> ClosedTradeRecord:
    return ClosedTradeRecord(
        quantity=float(data["quantity"]),
        avg_open_price=float(data["avg_open_price"]),
        avg_close_price=float(data["avg_close_price"]),
        open_time=_parse_ts(data["open_time"]),
        close_time=_parse_ts(data["close_time"]),
        open_tick=_opt_tick_from(data.get("open_tick")),
        after_open_tick=_opt_tick_from(data.get("after_open_tick")),
        close_tick=_opt_tick_from(data.get("close_tick")),
        after_close_tick=_opt_tick_from(data.get("after_close_tick")),
        best_price=data.get("best_price"),
        worst_price=data.get("worst_price"),
    )


def position_to_dict(position: OpenPosition) -> dict[str, Any]:
    return {
        "open_tick": tick_to_dict(position.open_tick),
        "after_open_tick": tick_to_dict(position.after_open_tick),
        "avg_open_price": position.avg_open_price,
        "open_time": _ts(position.open_time),
        "quantity": position.quantity,
        "best_price": position.best_price,
        "worst_price": position.worst_price,
    }


def position_from_dict(data: dict[str, Any]) -> OpenPosition:
    return OpenPosition(
        open_tick=tick_from_dict(data["open_tick"]),
        after_open_tick=tick_from_dict(data["after_open_tick"]),
        avg_open_price=float(data["avg_open_price"]),
        open_time=_parse_ts(data["open_time"]),
        quantity=float(data["quantity"]),
        best_price=float(data["best_price"]),
        worst_price=float(data["worst_price"]),
    )


@dataclass
class StoredState:
    history: list[PriceTick] = field(default_factory=list)
    ledger: list[ClosedTradeRecord] = field(default_factory=list)
    position: OpenPosition | None = None
    running: bool | None = None


class JsonStateStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def save(self, state: dict[str, Any]) -> None:
        """写入 `TradingSession.state_snapshot()` 的结果。"""
        position = state.get("position")
        payload = {
            "history": [tick_to_dict(t) for t in state.get("history") or []],
            "ledger": [record_to_dict(r) for r in state.get("ledger") or []],
            "position": position_to_dict(position) if position is not None else None,
            "running": state.get("running"),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, allow_nan=False), encoding="utf-8")
        os.replace(tmp, self.path)

    def load(self) -> StoredState:
        """读取已保存的状态；文件不存在时返回空状态。

        Raises
        ------
        ValueError
            文件内容不是合法 JSON 或字段缺失。
        """
        if not self.path.exists():
            return StoredState()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return StoredState(
                history=[tick_from_dict(t) for t in data.get("history") or []],
                ledger=[record_from_dict(r) for r in data.get("ledger") or []],
                position=position_from_dict(data["position"]) if data.get("position") else None,
                running=data.get("running"),
            )
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise ValueError(f"Corrupted state file {self.path}: {exc}") from exc

