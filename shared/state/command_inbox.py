"""运维命令收件箱（文件投递）。

运行中的 runner 与命令行进程不共享内存，`clear` / `close` 需要落到 runner 持有的会话上：

- runner 启动时写入 `runner.pid`，退出时删除；
- 命令行发现 runner 在运行时，把命令写成 `*.cmd` 文件投递到目录；
- runner 每个 tick 取走并执行全部命令（按投递顺序），随后立即落盘。

命令文件先写临时文件再 `replace`，runner 不会读到半截内容。
"""

from __future__ import annotations

import json
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

COMMANDS = ("close", "clear")

RUNNER_PID_FILE = "runner.pid"


def inbox_dir_for(state_path: str | Path, command_dir: str | Path | None = None) -> Path:
    """命令目录：显式配置优先，否则放在状态文件旁（`<stem>.commands/`）。"""
    if command_dir:
        return Path(command_dir)
    state = Path(state_path)
    return state.parent / f"{state.stem}.commands"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    if os.name == "nt":
        # Windows 下 os.kill 会直接结束目标进程，只能信任锁文件
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class CommandInbox:
    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.pid_path = self.root / RUNNER_PID_FILE

    # ------------------------------------------------------------------ runner side

    def mark_running(self, pid: int | None = None) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.pid_path.write_text(str(pid if pid is not None else os.getpid()), encoding="utf-8")

    def clear_running(self) -> None:
        self.pid_path.unlink(missing_ok=True)

    def pop_all(self) -> list[str]:
        """取走全部待执行命令（按投递顺序），文件随即删除。"""
        if not self.root.exists():
            return []
        commands: list[str] = []
        for path in sorted(self.root.glob("*.cmd")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                data = {}
            path.unlink(missing_ok=True)
            commands.append(str(data.get("command", "")))
        return commands

    # ------------------------------------------------------------------ cli side

    def runner_active(self) -> bool:
        try:
            pid = int(self.pid_path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return False
        return _pid_alive(pid)

    def submit(self, command: str) -> Path:
        if command not in COMMANDS:
            raise ValueError(f"Unknown command: {command!r}, expected one of {COMMANDS}")
        self.root.mkdir(parents=True, exist_ok=True)
        name = f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}-{command}.cmd"
        path = self.root / name
        tmp = path.with_suffix(".tmp")
        payload = {"command": command, "issued_at": datetime.now(timezone.utc).isoformat()}
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp, path)
        return path
