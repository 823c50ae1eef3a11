from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import pytest

from engine.trading_engine import TradingEngine
from main import main
from market.client import PriceFeed
from shared.config.config_loader import build_app_config
from shared.models.models import ClosedTradeRecord, OpenPosition, PriceTick
from shared.state.command_inbox import CommandInbox
from shared.state.json_store import JsonStateStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class ListFeed(PriceFeed):
    def __init__(self, prices: list[float], step_secs: int = 5):
        self.items = [
            PriceTick(ts=T0 + timedelta(seconds=i * step_secs), price=p, confidence=0.01)
            for i, p in enumerate(prices)
        ]

    async def ticks(self) -> AsyncIterator[PriceTick]:
        for tick in self.items:
            yield tick
            await asyncio.sleep(0)


async def _instant(_secs: float) -> None:
    return None


def _cfg(tmp_path, **trading):
    return build_app_config(
        {
            "trading": {"investment_amount": 200, "confirmation_delay_secs": 5, **trading},
            "state": {"path": str(tmp_path / "session.json")},
        }
    )


@pytest.mark.asyncio
async def test_engine_opens_on_dip_and_closes_on_profit(tmp_path):
    feed = ListFeed([100, 99, 98, 97, 98, 99, 100, 101])
    engine = TradingEngine(cfg_obj=_cfg(tmp_path), feed=feed, sleep=_instant)

    result = await engine.run_async()

    assert result.summary["ticks"] == 8
    assert result.summary["closed_trades"] == 1
    assert result.summary["position"] is None
    # 开仓于 99，平仓于 100：(100 - 99) * 200 / 99
    assert result.summary["realized_pnl"] == pytest.approx(200 / 99)

    state = JsonStateStore(tmp_path / "session.json").load()
    assert len(state.history) == 8
    assert len(state.ledger) == 1
    assert state.position is None


@pytest.mark.asyncio
async def test_engine_restores_state_and_respects_max_ticks(tmp_path):
    cfg = _cfg(tmp_path, open_trend_windows=[600])
    store = JsonStateStore(tmp_path / "session.json")

    first = TradingEngine(cfg_obj=cfg, feed=ListFeed([100, 100, 100]), sleep=_instant)
    await first.run_async()

    second = TradingEngine(cfg_obj=cfg, feed=ListFeed([100, 100, 100, 100]), max_ticks=2, sleep=_instant)
    result = await second.run_async()

    assert result.summary["ticks"] == 2
    assert len(store.load().history) == 5
    assert result.summary["closed_trades"] == 0


class OperatorFeed(ListFeed):
    """在指定 tick 之前执行一次运维动作（模拟另一个终端里敲命令）。"""

    def __init__(self, prices: list[float], actions: dict[int, Callable[[], Any]]):
        super().__init__(prices)
        self.actions = actions
        self.results: dict[int, Any] = {}

    async def ticks(self) -> AsyncIterator[PriceTick]:
        for i, tick in enumerate(self.items):
            action = self.actions.get(i)
            if action is not None:
                self.results[i] = action()
            yield tick
            await asyncio.sleep(0)


def _write_config(tmp_path) -> Path:
    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        "trading:\n"
        "  open_trend_windows: [600]\n"
        "state:\n"
        f"  path: {(tmp_path / 'session.json').as_posix()}\n",
        encoding="utf-8",
    )
    return cfg_path


def _seed_tick() -> PriceTick:
    return PriceTick(ts=T0 - timedelta(seconds=10), price=100.0, confidence=0.01)


@pytest.mark.asyncio
async def test_clear_command_reaches_running_engine(tmp_path):
    cfg_path = _write_config(tmp_path)
    store = JsonStateStore(tmp_path / "session.json")
    record = ClosedTradeRecord(
        quantity=2.0,
        avg_open_price=100.0,
        avg_close_price=101.0,
        open_time=T0 - timedelta(seconds=60),
        close_time=T0 - timedelta(seconds=30),
    )
    store.save({"history": [_seed_tick()], "ledger": [record], "position": None})

    feed = OperatorFeed(
        [100, 100, 100, 100],
        {2: lambda: main(["clear", "--config", str(cfg_path), "--yes"])},
    )
    engine = TradingEngine(cfg_path=str(cfg_path), feed=feed, sleep=_instant)
    result = await engine.run_async()

    # 命令被投递给运行中的引擎，而不是改写磁盘副本
    assert feed.results[2] is None
    assert result.summary["closed_trades"] == 0
    state = store.load()
    assert state.ledger == []
    assert len(state.history) == 5

    inbox_dir = tmp_path / "session.commands"
    assert list(inbox_dir.glob("*.cmd")) == []
    assert not (inbox_dir / "runner.pid").exists()


@pytest.mark.asyncio
async def test_close_command_force_closes_on_running_engine(tmp_path):
    cfg_path = _write_config(tmp_path)
    store = JsonStateStore(tmp_path / "session.json")
    seed = _seed_tick()
    position = OpenPosition(
        open_tick=seed,
        after_open_tick=seed,
        avg_open_price=100.0,
        open_time=seed.ts,
        quantity=2.0,
        best_price=100.0,
        worst_price=100.0,
    )
    store.save({"history": [seed], "ledger": [], "position": position})

    feed = OperatorFeed(
        [100, 100, 100, 100],
        {2: lambda: main(["close", "--config", str(cfg_path), "--yes"])},
    )
    engine = TradingEngine(cfg_path=str(cfg_path), feed=feed, sleep=_instant)
    result = await engine.run_async()

    assert feed.results[2] is None
    assert result.summary["position"] is None
    assert result.summary["closed_trades"] == 1
    state = store.load()
    assert state.position is None
    assert len(state.ledger) == 1
    assert state.ledger[0].avg_close_price == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_commands_left_from_previous_run_are_discarded(tmp_path):
    cfg_path = _write_config(tmp_path)
    store = JsonStateStore(tmp_path / "session.json")
    seed = _seed_tick()
    position = OpenPosition(
        open_tick=seed,
        after_open_tick=seed,
        avg_open_price=100.0,
        open_time=seed.ts,
        quantity=2.0,
        best_price=100.0,
        worst_price=100.0,
    )
    store.save({"history": [seed], "ledger": [], "position": position})
    CommandInbox(tmp_path / "session.commands").submit("close")

    engine = TradingEngine(cfg_path=str(cfg_path), feed=ListFeed([100, 100]), sleep=_instant)
    result = await engine.run_async()

    assert result.summary["position"] is not None
    assert store.load().position is not None
    assert list((tmp_path / "session.commands").glob("*.cmd")) == []
