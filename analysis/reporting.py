"""交易记录报告（pandas 表格 + 纯文本摘要）。"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

import pandas as pd

from shared.models.models import ClosedTradeRecord, OpenPosition, PriceTick, TrendWindow
from utils.pnl import ledger_stats, position_profit, record_duration, record_profit

LEDGER_COLUMNS = [
    "quantity",
    "avg_open_price",
    "avg_close_price",
    "open_time",
    "close_time",
    "duration_secs",
    "profit",
]


def ledger_frame(records: Iterable[ClosedTradeRecord]) -> pd.DataFrame:
    """把账本转成 DataFrame；profit/duration 在此处派生。"""
    rows = [
        {
            "quantity": r.quantity,
            "avg_open_price": r.avg_open_price,
            "avg_close_price": r.avg_close_price,
            "open_time": r.open_time,
            "close_time": r.close_time,
            "duration_secs": record_duration(r),
            "profit": record_profit(r),
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=LEDGER_COLUMNS)


def _position_lines(position: OpenPosition, last_tick: PriceTick | None, now: datetime | None) -> list[str]:
    lines = [
        "Trade",
        f"  AVG open price : {position.avg_open_price:.4f}$",
        f"  Duration       : {record_duration(position, now):.0f}s",
        f"  Quantity       : {position.quantity:.4f}",
        f"  Best price     : {position.best_price:.4f}$",
        f"  Worst price    : {position.worst_price:.4f}$",
    ]
    if last_tick is not None:
        lines.insert(4, f"  Price diff     : {last_tick.price - position.avg_open_price:.4f}$")
        lines.insert(5, f"  Profit         : {position_profit(position, last_tick.price):.4f}$")
    return lines


def format_report(
    records: Sequence[ClosedTradeRecord],
    *,
    position: OpenPosition | None = None,
    last_tick: PriceTick | None = None,
    trends: Sequence[TrendWindow] | None = None,
    now: datetime | None = None,
) -> str:
    """生成纯文本报告：最新价格与趋势、当前持仓、交易历史与合计。"""
    lines: list[str] = []

    if last_tick is not None:
        lines.append("Last Price")
        lines.append(f"  Price      : {last_tick.price:.4f}$")
        lines.append(f"  Confidence : {last_tick.confidence * 100:.2f}%")
        for name, value in sorted(last_tick.aux.items()):
            if value is not None:
                lines.append(f"  {name.upper():<10} : {value:.2f}$")
        for tw in trends or []:
            lines.append(f"  Last {tw.seconds} sec trend : {tw.trend.value}")
        lines.append("")

    if position is not None:
        lines.extend(_position_lines(position, last_tick, now))
        lines.append("")

    lines.append("Trade History")
    df = ledger_frame(records)
    if df.empty:
        lines.append("  (no closed trades)")
    else:
        view = df[["quantity", "avg_open_price", "avg_close_price", "duration_secs", "profit"]]
        lines.append(view.to_string(index=False, float_format=lambda v: f"{v:.4f}"))

    stats = ledger_stats(records)
    lines.append(
        f"Total profit: {stats['total_profit']:.4f}$ "
        f"({stats['trades']} trades, {stats['wins']} wins, {stats['losses']} losses)"
    )
    return "\n".join(lines)
