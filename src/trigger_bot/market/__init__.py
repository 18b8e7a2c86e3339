"""
Market Layer - Metric sources and the metric cache.

This module provides:
    - MetricCache: per-(metric, symbol) TTL cache with single-flight fetches
    - MetricCacheConfig: TTL per metric
    - MetricProviderSet: complete MetricKind -> provider dispatch
    - CoinGeckoClient, FearGreedClient, EtherscanGasClient, TaapiClient:
      HTTP data sources
    - MetricSample, MetricFetchError, MetricUnavailableError

Usage:
    from trigger_bot.market import CoinGeckoClient, MetricCache, build_provider_set

    coingecko = CoinGeckoClient()
    cache = MetricCache(build_provider_set(coingecko))
    price = await cache.get(MetricKind.PRICE, "BTC")
"""

from .cache import CacheStats, MetricCache, MetricCacheConfig, default_ttls
from .client import JsonHttpClient, MarketDataAPIError, RateLimitError
from .models import MetricFetchError, MetricSample, MetricUnavailableError
from .providers import (
    CoinGeckoClient,
    EtherscanGasClient,
    FearGreedClient,
    MetricProvider,
    MetricProviderSet,
    TaapiClient,
    build_provider_set,
    to_decimal,
    unavailable_provider,
)

__all__ = [
    "CacheStats",
    "MetricCache",
    "MetricCacheConfig",
    "default_ttls",
    "JsonHttpClient",
    "MarketDataAPIError",
    "RateLimitError",
    "MetricFetchError",
    "MetricSample",
    "MetricUnavailableError",
    "CoinGeckoClient",
    "EtherscanGasClient",
    "FearGreedClient",
    "MetricProvider",
    "MetricProviderSet",
    "TaapiClient",
    "build_provider_set",
    "to_decimal",
    "unavailable_provider",
]
