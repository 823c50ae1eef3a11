"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长时间运行中“隐蔽爆炸”；
- 交易常量全部在启动时固定，运行期不可修改。
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SOL_USD_PRICE_ID = "0xef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d"
BTC_USD_PRICE_ID = "0xe62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43"
ETH_USD_PRICE_ID = "0xff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace"


class FeedConfig(BaseModel):
    """行情源配置。"""
    source: Literal["fake", "hermes"] = "fake"
    hermes_url: str = "https://hermes.pyth.network"
    price_id: str = SOL_USD_PRICE_ID
    # 参考资产价格（仅展示），key 即 PriceTick.aux 的 key
    reference_ids: Dict[str, str] = Field(
        default_factory=lambda: {"btc": BTC_USD_PRICE_ID, "eth": ETH_USD_PRICE_ID}
    )
    poll_interval_secs: float = Field(default=1.0, gt=0)
    reference_interval_secs: float = Field(default=2.5, gt=0)
    request_timeout_secs: float = Field(default=5.0, gt=0)
    fake_start_price: float = Field(default=150.0, gt=0)
    model_config = ConfigDict(extra="forbid")


class TradingSchema(BaseModel):
    """交易决策常量。"""
    investment_amount: float = Field(default=200.0, gt=0)
    min_profit_pct_to_close: float = 0.01
    min_profit_amount_to_close: float = 0.50
    confirmation_delay_secs: float = Field(default=5.0, ge=0)
    # 开仓需全部窗口为 down；平仓需全部窗口为 up（空列表 = 不做趋势要求，仅按盈利阈值自动平仓）
    open_trend_windows: List[int] = Field(default_factory=lambda: [15, 30, 45])
    close_trend_windows: List[int] = Field(default_factory=list)
    trend_min_pct_change: float = Field(default=0.01, ge=0)
    max_history: int = Field(default=1000, gt=0)
    strict_apply: bool = False
    autostart: bool = True
    model_config = ConfigDict(extra="forbid")

    @field_validator("open_trend_windows", "close_trend_windows")
    @classmethod
    def _positive_windows(cls, v: List[int]) -> List[int]:
        bad = [w for w in v if w <= 0]
        if bad:
            raise ValueError(f"trend windows must be positive seconds, got {bad}")
        return v


class StateConfig(BaseModel):
    """会话状态落盘配置。"""
    enabled: bool = True
    path: str = "dataset/state/session.json"
    flush_interval_secs: float = Field(default=1.0, gt=0)
    # 运维命令投递目录；为空时放在状态文件旁（<stem>.commands/）
    command_dir: Optional[str] = None
    model_config = ConfigDict(extra="forbid")


class AppConfigSchema(BaseModel):
    """顶层配置。"""
    symbol: str = "SOL/USD"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    feed: FeedConfig = Field(default_factory=FeedConfig)
    trading: TradingSchema = Field(default_factory=TradingSchema)
    state: StateConfig = Field(default_factory=StateConfig)
    model_config = ConfigDict(extra="forbid")
