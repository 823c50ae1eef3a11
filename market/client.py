"""行情客户端（Pyth Hermes 轮询 / 本地假数据）。

核心引擎不依赖这里的任何网络细节：行情源只负责产出 `PriceTick`，
失败时记录 warning 并重试，从不把异常传给决策层。
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable

import requests

from shared.config.schema import FeedConfig
from shared.models.models import PriceTick
from shared.utils.logging import setup_logger


def _normalize_id(price_id: str) -> str:
    pid = price_id.lower()
    return pid[2:] if pid.startswith("0x") else pid


@dataclass(frozen=True)
class HermesPrice:
    """Hermes 返回的单个价格（已按 expo 缩放）。"""
    price: float
    confidence: float
    publish_time: int


class HermesClient:
    """Pyth Hermes REST 客户端（`/v2/updates/price/latest`）。"""

    def __init__(self, base_url: str = "https://hermes.pyth.network", timeout: float = 5.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def latest_prices(self, price_ids: list[str]) -> dict[str, HermesPrice]:
        """拉取最新价格。

        Returns
        -------
        dict[str, HermesPrice]
            key 为归一化后的 price id（小写、无 0x 前缀）。
        """
        url = f"{self.base_url}/v2/updates/price/latest"
        params = [("ids[]", pid) for pid in price_ids]
        resp = self.session.get(url, params=params, timeout=self.timeout)
        resp.raise_for_status()
        return self.parse_latest(resp.json())

    @staticmethod
    def parse_latest(data: dict) -> dict[str, HermesPrice]:
        result: dict[str, HermesPrice] = {}
        for item in data.get("parsed") or []:
            raw = item.get("price") or {}
            if raw.get("price") is None:
                continue
            scale = 10 ** int(raw.get("expo", 0))
            result[_normalize_id(str(item.get("id", "")))] = HermesPrice(
                price=int(raw["price"]) * scale,
                confidence=int(raw.get("conf", 0)) * scale,
                publish_time=int(raw.get("publish_time", 0)),
            )
        return result


class ReferencePriceTracker:
    """定时刷新参考资产价格，保留每个资产最后一次成功值（仅展示用）。"""

    def __init__(
        self,
        client: HermesClient,
        reference_ids: dict[str, str],
        interval_secs: float = 2.5,
        logger=None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.client = client
        self.reference_ids = dict(reference_ids)
        self.interval_secs = interval_secs
        self.logger = logger or setup_logger("market-reference")
        self._sleep = sleep
        self.latest: dict[str, float | None] = {name: None for name in self.reference_ids}

    def refresh(self) -> None:
        if not self.reference_ids:
            return
        try:
            prices = self.client.latest_prices(list(self.reference_ids.values()))
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("Reference price fetch failed, keep last values: %s", exc)
            return
        for name, pid in self.reference_ids.items():
            hp = prices.get(_normalize_id(pid))
            if hp is not None:
                self.latest[name] = hp.price

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await loop.run_in_executor(None, self.refresh)
            await self._sleep(self.interval_secs)


class PriceFeed(ABC):
    """行情源抽象基类。"""

    @abstractmethod
    def ticks(self) -> AsyncIterator[PriceTick]:
        """按到达顺序产出 PriceTick。"""
        raise NotImplementedError

    def _aux(self, reference: ReferencePriceTracker | None) -> dict[str, float | None]:
        return dict(reference.latest) if reference is not None else {}


class FakePriceFeed(PriceFeed):
    """本地随机游走数据源，便于离线开发/干跑。"""

    def __init__(
        self,
        start_price: float = 150.0,
        interval_secs: float = 1.0,
        volatility_pct: float = 0.05,
        seed: int | None = None,
        reference: ReferencePriceTracker | None = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        logger=None,
    ):
        self.price = float(start_price)
        self.interval_secs = interval_secs
        self.volatility_pct = volatility_pct
        self.reference = reference
        self._rng = random.Random(seed)
        self._sleep = sleep
        self.logger = logger or setup_logger("market-fake")

    async def ticks(self) -> AsyncIterator[PriceTick]:
        while True:
            step = self._rng.gauss(0.0, self.volatility_pct / 100.0)
            self.price = max(self.price * (1.0 + step), 1e-9)
            yield PriceTick(
                ts=datetime.now(timezone.utc),
                price=self.price,
                confidence=abs(self.price * self.volatility_pct / 100.0),
                aux=self._aux(self.reference),
            )
            await self._sleep(self.interval_secs)


class HermesPriceFeed(PriceFeed):
    """轮询 Hermes 最新价格；publish_time 前进时才产出新 tick。"""

    def __init__(
        self,
        client: HermesClient,
        price_id: str,
        interval_secs: float = 1.0,
        reference: ReferencePriceTracker | None = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        logger=None,
    ):
        self.client = client
        self.price_id = price_id
        self.interval_secs = interval_secs
        self.reference = reference
        self._sleep = sleep
        self.logger = logger or setup_logger("market-hermes")
        self._last_publish_time: int | None = None

    def poll(self) -> PriceTick | None:
        """拉取一次；无新价格或请求失败返回 None。"""
        try:
            prices = self.client.latest_prices([self.price_id])
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("Hermes price fetch failed, retry in %.1fs: %s", self.interval_secs, exc)
            return None
        hp = prices.get(_normalize_id(self.price_id))
        if hp is None or not hp.price or not hp.confidence:
            return None
        if self._last_publish_time is not None and hp.publish_time <= self._last_publish_time:
            return None
        self._last_publish_time = hp.publish_time
        return PriceTick(
            ts=datetime.now(timezone.utc),
            price=hp.price,
            confidence=round(hp.confidence, 4),
            aux=self._aux(self.reference),
        )

    async def ticks(self) -> AsyncIterator[PriceTick]:
        loop = asyncio.get_running_loop()
        while True:
            tick = await loop.run_in_executor(None, self.poll)
            if tick is not None:
                yield tick
            await self._sleep(self.interval_secs)


def build_price_feed(
    cfg: FeedConfig, logger=None
) -> tuple[PriceFeed, ReferencePriceTracker | None]:
    """根据配置选择行情源。

    Returns
    -------
    tuple[PriceFeed, ReferencePriceTracker | None]
        行情源与（可选的）参考价格刷新器；后者需要由调用方以后台任务运行。
    """
    if cfg.source == "fake":
        return FakePriceFeed(start_price=cfg.fake_start_price, interval_secs=cfg.poll_interval_secs, logger=logger), None
    if cfg.source == "hermes":
        client = HermesClient(cfg.hermes_url, timeout=cfg.request_timeout_secs)
        reference = None
        if cfg.reference_ids:
            reference = ReferencePriceTracker(
                client, cfg.reference_ids, interval_secs=cfg.reference_interval_secs, logger=logger
            )
        feed = HermesPriceFeed(
            client, cfg.price_id, interval_secs=cfg.poll_interval_secs, reference=reference, logger=logger
        )
        return feed, reference
    raise ValueError(f"Unsupported feed source: {cfg.source}")
