"""统一命令行入口。

子命令：

- `runner`：实时/干跑主循环。订阅行情，驱动决策引擎。
- `report`：读取已落盘的会话状态，打印最新价格、当前持仓与交易历史。
- `close`：强制平掉当前持仓。
- `clear`：清空交易历史（有持仓时先强制平仓）。
- `test`：运行 pytest。

`close` / `clear` 在 runner 运行时投递到它的命令收件箱，由 runner 在下一个 tick 执行；
没有 runner 时直接改写落盘状态。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any

from analysis.reporting import format_report
from engine.session import TradingSession
from engine.trading_engine import TradingEngine
from market.history import PriceHistoryBuffer
from shared.config.config_loader import AppConfig, load_config
from shared.state.command_inbox import CommandInbox, inbox_dir_for
from shared.state.json_store import JsonStateStore
from shared.state.trade_ledger import TradeLedger

CONFIRM_PROMPTS = {
    "close": "Are you sure you want to force close the open position? [y/N] ",
    "clear": "Are you sure you want to clear all trade history? [y/N] ",
}


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (runner/report/close/clear/test)
    """
    config: str
    task: str
    max_ticks: int | None = None  # 仅用于 debug，限制运行多少个 tick 就停止
    yes: bool = False             # close/clear 时跳过确认


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="trendtrader", description="单持仓趋势交易机器人")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `main.py --config ... runner`（全局）与 `main.py runner --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="实时/干跑主循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="跑多少个 tick 后退出（用于干跑/测试）",
    )

    p_report = sub.add_parser("report", help="打印会话状态报告")
    _add_config_arg(p_report, default=argparse.SUPPRESS)

    p_close = sub.add_parser("close", help="强制平仓")
    _add_config_arg(p_close, default=argparse.SUPPRESS)
    p_close.add_argument("--yes", action="store_true", help="跳过确认")

    p_clear = sub.add_parser("clear", help="清空交易历史")
    _add_config_arg(p_clear, default=argparse.SUPPRESS)
    p_clear.add_argument("--yes", action="store_true", help="跳过确认")

    sub.add_parser("test", help="运行 pytest")
    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "runner",
        max_ticks=getattr(ns, "max_ticks", None),
        yes=bool(getattr(ns, "yes", False)),
    )


def _restore_session(cfg: AppConfig, store: JsonStateStore) -> TradingSession:
    state = store.load()
    return TradingSession(
        cfg.trading,
        history=PriceHistoryBuffer(cfg.trading.max_history, state.history),
        ledger=TradeLedger(state.ledger),
        position=state.position,
    )


def _confirmed(task: str, yes: bool) -> bool:
    if yes:
        return True
    answer = input(CONFIRM_PROMPTS[task])
    return answer.strip().lower() in {"y", "yes"}


def _run_operator_command(cfg: AppConfig, task: str) -> Any:
    """执行 close/clear。

    Returns
    -------
    runner 运行中时返回 None（命令已投递）；否则 close 返回是否平仓，clear 返回被清除的记录。
    """
    inbox = CommandInbox(inbox_dir_for(cfg.state.path, cfg.state.command_dir))
    if inbox.runner_active():
        inbox.submit(task)
        print(f"Queued {task} command for the running engine.")
        return None

    store = JsonStateStore(cfg.state.path)
    session = _restore_session(cfg, store)
    if task == "close":
        closed = session.force_close()
        store.save(session.state_snapshot())
        print("Position closed." if closed else "No position to close.")
        return closed

    removed = session.force_clear()
    store.save(session.state_snapshot())
    print(f"Cleared {len(removed)} trades.")
    return removed


def main(argv: list[str] | None = None) -> Any:
    """程序主入口；返回对应子命令的结果。"""
    args = parse_args(argv)

    if args.task == "runner":
        return TradingEngine(cfg_path=args.config, max_ticks=args.max_ticks).run().summary

    if args.task == "test":
        import pytest

        return pytest.main(["-q"])

    cfg = load_config(args.config)

    if args.task == "report":
        session = _restore_session(cfg, JsonStateStore(cfg.state.path))
        text = format_report(
            session.ledger_snapshot(),
            position=session.position,
            last_tick=session.history.latest(),
            trends=session.trends(),
        )
        print(text)
        return text

    if args.task in CONFIRM_PROMPTS:
        if not _confirmed(args.task, args.yes):
            return False if args.task == "close" else []
        return _run_operator_command(cfg, args.task)

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
