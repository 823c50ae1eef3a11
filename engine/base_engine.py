"""执行引擎基类。

目标：
- 把“行情推进/事件循环”与“决策/提交/记录”解耦；
- 干跑与实时行情在同一套接口上演进，避免逻辑漂移。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果（统一出口）。"""

    summary: dict[str, Any]


class BaseEngine(ABC):
    """引擎抽象基类。"""

    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError
