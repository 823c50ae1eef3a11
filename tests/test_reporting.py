from datetime import datetime, timedelta, timezone

import pytest

from analysis.reporting import LEDGER_COLUMNS, format_report, ledger_frame
from shared.models.models import ClosedTradeRecord, OpenPosition, PriceTick, Trend, TrendWindow

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(avg_open: float, avg_close: float) -> ClosedTradeRecord:
    return ClosedTradeRecord(
        quantity=2.0,
        avg_open_price=avg_open,
        avg_close_price=avg_close,
        open_time=T0,
        close_time=T0 + timedelta(seconds=30),
    )


def test_ledger_frame_derives_profit_and_duration():
    df = ledger_frame([_record(100.5, 102.0), _record(100.0, 99.0)])
    assert list(df.columns) == LEDGER_COLUMNS
    assert df["profit"].tolist() == pytest.approx([3.0, -2.0])
    assert df["duration_secs"].tolist() == [30.0, 30.0]
    assert df["profit"].sum() == pytest.approx(1.0)


def test_ledger_frame_empty():
    df = ledger_frame([])
    assert df.empty
    assert list(df.columns) == LEDGER_COLUMNS


def test_format_report_includes_position_trends_and_total():
    tick = PriceTick(ts=T0, price=101.0, confidence=0.0012, aux={"btc": 42000.0, "eth": None})
    position = OpenPosition(
        open_tick=tick, after_open_tick=tick, avg_open_price=100.0, open_time=T0,
        quantity=2.0, best_price=102.0, worst_price=99.0,
    )
    text = format_report(
        [_record(100.5, 102.0)],
        position=position,
        last_tick=tick,
        trends=[TrendWindow(15, Trend.DOWN)],
        now=T0 + timedelta(seconds=12),
    )
    assert "Price      : 101.0000$" in text
    assert "Confidence : 0.12%" in text
    assert "BTC" in text and "ETH" not in text
    assert "Last 15 sec trend : down" in text
    assert "Duration       : 12s" in text
    assert "Profit         : 2.0000$" in text
    assert "Total profit: 3.0000$ (1 trades, 1 wins, 0 losses)" in text


def test_format_report_without_trades():
    assert "(no closed trades)" in format_report([])
