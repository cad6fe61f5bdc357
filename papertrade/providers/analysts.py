"""Finnhub analyst recommendation provider."""

import logging
from typing import Optional

import httpx

from ..cache import CacheInterface
from ..config import Config
from ..domain.models import AnalystConsensus
from ..http_client import http_get

logger = logging.getLogger(__name__)

FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
FINNHUB_RECOMMENDATION_ENDPOINT = f"{FINNHUB_BASE_URL}/stock/recommendation"
FINNHUB_PRICE_TARGET_ENDPOINT = f"{FINNHUB_BASE_URL}/stock/price-target"


class AnalystProvider:
    """
    Latest analyst recommendation counts from Finnhub.

    Returns None (never raises) when no key is configured, the symbol has
    no coverage, or the API fails; the verdict engine treats None as
    "no analyst input".
    """

    def __init__(self, config: Config, cache: CacheInterface, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.cache = cache
        self.client = client

    @property
    def enabled(self) -> bool:
        return bool(self.config.finnhub_api_key)

    async def get_consensus(self, symbol: str) -> Optional[AnalystConsensus]:
        if not self.enabled:
            return None

        symbol = symbol.upper()
        cache_key = f"analyst:{symbol}"
        cached = self.cache.get(cache_key, ttl_seconds=self.config.analyst_cache_ttl)
        if cached is not None:
            return cached

        params = {"symbol": symbol, "token": self.config.finnhub_api_key}
        try:
            response = await http_get(
                FINNHUB_RECOMMENDATION_ENDPOINT,
                params=params,
                timeout=self.config.http_timeout,
                retries=self.config.max_retries,
                backoff_factor=self.config.retry_backoff_factor,
                client=self.client,
            )
            recommendations = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("[%s] Finnhub recommendation error: %s", symbol, exc)
            return None

        if not isinstance(recommendations, list) or not recommendations or not isinstance(recommendations[0], dict):
            logger.info("[%s] No analyst data available", symbol)
            return None

        latest = recommendations[0]
        target_mean = await self._get_target_mean(symbol, params)

        consensus = AnalystConsensus(
            strong_buy=int(latest.get("strongBuy") or 0),
            buy=int(latest.get("buy") or 0),
            hold=int(latest.get("hold") or 0),
            sell=int(latest.get("sell") or 0),
            strong_sell=int(latest.get("strongSell") or 0),
            period=latest.get("period"),
            target_mean=target_mean,
        )
        logger.info("[%s] 📊 Analyst: %s (%d analysts)", symbol, consensus.consensus, consensus.total)
        self.cache.set(cache_key, consensus)
        return consensus

    async def _get_target_mean(self, symbol: str, params: dict) -> Optional[float]:
        # Price targets are a premium endpoint on some plans
        try:
            response = await http_get(
                FINNHUB_PRICE_TARGET_ENDPOINT,
                params=params,
                timeout=self.config.http_timeout,
                retries=1,
                client=self.client,
            )
            value = response.json().get("targetMean")
            return float(value) if value else None
        except (httpx.HTTPError, ValueError, TypeError) as exc:
            logger.debug("[%s] Finnhub price target unavailable: %s", symbol, exc)
            return None
