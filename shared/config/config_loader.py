"""配置加载与数据结构。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载。
解析后的配置由 Pydantic schema 校验，再转换为不可变 dataclass 供引擎使用。
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from shared.config.schema import AppConfigSchema, FeedConfig, StateConfig


@dataclass(frozen=True)
class TradingConfig:
    """交易决策常量（启动时固定，每个引擎实例一份）。"""
    investment_amount: float = 200.0
    min_profit_pct_to_close: float = 0.01
    min_profit_amount_to_close: float = 0.50
    confirmation_delay_secs: float = 5.0
    open_trend_windows: tuple[int, ...] = (15, 30, 45)
    close_trend_windows: tuple[int, ...] = ()
    trend_min_pct_change: float = 0.01
    max_history: int = 1000
    strict_apply: bool = False
    autostart: bool = True


@dataclass
class AppConfig:
    """应用总配置。"""
    symbol: str
    trading: TradingConfig
    feed: FeedConfig = field(default_factory=FeedConfig)
    state: StateConfig = field(default_factory=StateConfig)
    log_level: str = "INFO"


def _load_env_file(env_path: Path):
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _load_envs(cfg_path: Path):
    """
    加载配置文件目录与其上一级目录下的 .env/.env.local（不覆盖已有环境变量）。
    """
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        _load_env_file(env_file)


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        # 未设置的变量直接报错，避免静默替换为空
        def replacer(match):
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return re.sub(r"\$\{([^}]+)\}", replacer, value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def build_app_config(raw_cfg: dict[str, Any]) -> AppConfig:
    """校验 raw dict 并转换为 AppConfig。

    Raises
    ------
    ValueError
        schema 校验失败（未知字段、类型错误、取值越界）。
    """
    try:
        schema = AppConfigSchema.model_validate(raw_cfg or {})
    except ValidationError as exc:
        raise ValueError(f"Invalid config: {exc}") from exc

    t = schema.trading
    trading = TradingConfig(
        investment_amount=t.investment_amount,
        min_profit_pct_to_close=t.min_profit_pct_to_close,
        min_profit_amount_to_close=t.min_profit_amount_to_close,
        confirmation_delay_secs=t.confirmation_delay_secs,
        open_trend_windows=tuple(t.open_trend_windows),
        close_trend_windows=tuple(t.close_trend_windows),
        trend_min_pct_change=t.trend_min_pct_change,
        max_history=t.max_history,
        strict_apply=t.strict_apply,
        autostart=t.autostart,
    )
    return AppConfig(
        symbol=schema.symbol,
        trading=trading,
        feed=schema.feed,
        state=schema.state,
        log_level=schema.log_level,
    )


def load_config(path: str, load_env: bool = True, expand_env: bool = True) -> AppConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand_env:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    AppConfig
        解析后的配置对象。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        缺失环境变量或 schema 校验失败。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    with cfg_path.open("r", encoding="utf-8") as f:
        raw_cfg: dict[str, Any] = yaml.safe_load(f) or {}

    if expand_env:
        raw_cfg = _expand_env(raw_cfg)
    return build_app_config(raw_cfg)
