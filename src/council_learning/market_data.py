from __future__ import annotations

import time

import requests
from loguru import logger

from .models import MarketSnapshot
from .settings import Settings, settings as default_settings


def default_snapshot(config: Settings | None = None) -> MarketSnapshot:
    cfg = config or default_settings
    return MarketSnapshot(
        btc_price=cfg.default_btc_price,
        eth_price=cfg.default_eth_price,
        rsi=cfg.default_rsi,
        volume=cfg.default_volume,
        volatility=cfg.default_volatility,
        funding_rate=cfg.default_funding_rate,
        fear_greed=cfg.default_fear_greed,
    )


class StaticMarketFeed:
    def __init__(self, snapshot: MarketSnapshot) -> None:
        self._snapshot = snapshot

    def snapshot(self) -> MarketSnapshot:
        self._snapshot.timestamp = time.time()
        return self._snapshot


class HttpMarketFeed:
    """Polls a JSON endpoint exposing ``btcPrice``/``btc_price``-style fields.

    Keeps the last good snapshot and serves it when the endpoint fails.
    """

    FIELD_ALIASES = {
        "btc_price": ("btc_price", "btcPrice", "price"),
        "eth_price": ("eth_price", "ethPrice"),
        "rsi": ("rsi",),
        "volume": ("volume",),
        "volatility": ("volatility",),
        "funding_rate": ("funding_rate", "fundingRate"),
        "fear_greed": ("fear_greed", "fearGreed"),
    }

    def __init__(self, url: str, timeout_seconds: int, fallback: MarketSnapshot) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._last_good = fallback

    def _fetch(self) -> dict:
        response = requests.get(self.url, timeout=self.timeout_seconds)
        response.raise_for_status()
        return response.json() or {}

    def snapshot(self) -> MarketSnapshot:
        try:
            payload = self._fetch()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Market feed {} unavailable, reusing last snapshot: {}", self.url, exc)
            return self._last_good
        if not isinstance(payload, dict):
            logger.warning(
                "Market feed {} returned {} instead of an object, reusing last snapshot",
                self.url, type(payload).__name__,
            )
            return self._last_good

        values: dict[str, float] = {}
        for field_name, aliases in self.FIELD_ALIASES.items():
            for alias in aliases:
                if payload.get(alias) is not None:
                    try:
                        values[field_name] = float(payload[alias])
                    except (TypeError, ValueError):
                        continue
                    break

        previous = self._last_good
        self._last_good = MarketSnapshot(
            btc_price=values.get("btc_price", previous.btc_price),
            eth_price=values.get("eth_price", previous.eth_price),
            rsi=values.get("rsi", previous.rsi),
            volume=values.get("volume", previous.volume),
            volatility=values.get("volatility", previous.volatility),
            funding_rate=values.get("funding_rate", previous.funding_rate),
            fear_greed=values.get("fear_greed", previous.fear_greed),
        )
        return self._last_good


def build_market_feed(config: Settings | None = None) -> StaticMarketFeed | HttpMarketFeed:
    cfg = config or default_settings
    fallback = default_snapshot(cfg)
    if cfg.market_feed_url.strip():
        return HttpMarketFeed(cfg.market_feed_url.strip(), cfg.market_feed_timeout_seconds, fallback)
    return StaticMarketFeed(fallback)
