"""
Metric providers.

A MetricProviderSet maps every MetricKind to one async callable
`provider(symbol) -> Decimal`. The mapping must be complete when the set is
built, so a condition can never name a metric nobody can answer; a metric
without a real data source is wired to unavailable_provider() and fails
closed at evaluation time.

Concrete sources:
    CoinGeckoClient      PRICE (single and batch), VOLUME (24h, USD)
    FearGreedClient      SENTIMENT (Fear & Greed index, 0-100)
    EtherscanGasClient   GAS (proposed gas price, gwei)
    TaapiClient          RSI, MA (read from the indicator service)
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Sequence

from trigger_bot.storage.models import MetricKind

from .client import JsonHttpClient, MarketDataAPIError
from .models import MetricFetchError, MetricUnavailableError

logger = logging.getLogger(__name__)

MetricProvider = Callable[[str], Awaitable[Any]]
PriceBatchProvider = Callable[[Sequence[str]], Awaitable[Mapping[str, Any]]]


def unavailable_provider(metric: MetricKind) -> MetricProvider:
    """Provider for a metric that has no configured data source."""

    async def _unavailable(symbol: str) -> Decimal:
        raise MetricUnavailableError(metric, symbol)

    return _unavailable


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a provider value to a finite Decimal.

    Raises:
        ValueError: for None, non-numeric or non-finite values
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"not a number: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


class MetricProviderSet:
    """
    Complete MetricKind -> provider dispatch table.

    Usage:
        providers = MetricProviderSet(
            {
                MetricKind.PRICE: coingecko.get_price,
                MetricKind.VOLUME: coingecko.get_volume,
                MetricKind.SENTIMENT: fear_greed.get_index,
                MetricKind.GAS: unavailable_provider(MetricKind.GAS),
                ...
            },
            price_batch=coingecko.get_prices,
        )
        value = await providers.fetch(MetricKind.PRICE, "BTC")
    """

    def __init__(
        self,
        providers: Mapping[MetricKind, MetricProvider],
        price_batch: Optional[PriceBatchProvider] = None,
    ) -> None:
        missing = [m.value for m in MetricKind if m not in providers]
        if missing:
            raise ValueError(f"No provider configured for metrics: {', '.join(missing)}")

        self._providers: Dict[MetricKind, MetricProvider] = dict(providers)
        self._price_batch = price_batch

    @property
    def supports_price_batch(self) -> bool:
        return self._price_batch is not None

    async def fetch(self, metric: MetricKind, symbol: str) -> Decimal:
        """
        Current value of `metric` for `symbol`.

        Raises:
            MetricFetchError: on any provider failure or unusable value
        """
        provider = self._providers[metric]
        try:
            raw = await provider(symbol)
        except MetricFetchError:
            raise
        except Exception as e:
            raise MetricFetchError(metric, symbol, str(e) or type(e).__name__, cause=e) from e

        try:
            return to_decimal(raw)
        except ValueError as e:
            raise MetricFetchError(metric, symbol, str(e), cause=e) from e

    async def fetch_prices(self, symbols: Iterable[str]) -> Dict[str, Decimal]:
        """
        Prices for several symbols in one call, keyed by upper-cased symbol.

        Symbols the source did not answer for are omitted. Returns an empty
        dict when no batch source is configured.

        Raises:
            MetricFetchError: if the batch call itself failed
        """
        wanted = sorted({s.upper() for s in symbols})
        if self._price_batch is None or not wanted:
            return {}

        try:
            raw = await self._price_batch(wanted)
        except Exception as e:
            raise MetricFetchError(
                MetricKind.PRICE, ",".join(wanted), str(e) or type(e).__name__, cause=e
            ) from e

        prices: Dict[str, Decimal] = {}
        for symbol, value in raw.items():
            try:
                prices[symbol.upper()] = to_decimal(value)
            except ValueError as e:
                logger.debug(f"Ignoring batch price for {symbol}: {e}")
        return prices


# =============================================================================
# HTTP SOURCES
# =============================================================================


class CoinGeckoClient(JsonHttpClient):
    """Spot price and 24h volume in USD."""

    BASE_URL = "https://api.coingecko.com/api/v3"

    COIN_IDS = {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "MNT": "mantle",
        "USDT": "tether",
        "USDC": "usd-coin",
        "BNB": "binancecoin",
        "SOL": "solana",
        "ADA": "cardano",
        "XRP": "ripple",
        "DOT": "polkadot",
    }

    def __init__(self, api_key: Optional[str] = None, **kwargs) -> None:
        headers = {"x-cg-demo-api-key": api_key} if api_key else None
        kwargs.setdefault("rate_limit", 1.0)
        super().__init__(self.BASE_URL, headers=headers, **kwargs)

    @classmethod
    def coin_id(cls, symbol: str) -> str:
        return cls.COIN_IDS.get(symbol.upper(), symbol.lower())

    async def _simple_price(self, ids: Sequence[str], include_volume: bool = False) -> dict:
        params = {"ids": ",".join(ids), "vs_currencies": "usd"}
        if include_volume:
            params["include_24hr_vol"] = "true"
        data = await self._request("GET", "/simple/price", params=params)
        if not isinstance(data, dict):
            raise MarketDataAPIError(f"Unexpected CoinGecko response: {data!r}")
        return data

    async def get_price(self, symbol: str) -> Decimal:
        coin = self.coin_id(symbol)
        data = await self._simple_price([coin])
        usd = data.get(coin, {}).get("usd")
        if usd is None:
            raise MarketDataAPIError(f"No CoinGecko price for {symbol} ({coin})")
        return to_decimal(usd)

    async def get_prices(self, symbols: Sequence[str]) -> Dict[str, Decimal]:
        ids = {self.coin_id(s): s.upper() for s in symbols}
        if not ids:
            return {}
        data = await self._simple_price(list(ids))

        prices = {}
        for coin, symbol in ids.items():
            usd = data.get(coin, {}).get("usd")
            if usd is not None:
                prices[symbol] = to_decimal(usd)
        return prices

    async def get_volume(self, symbol: str) -> Decimal:
        coin = self.coin_id(symbol)
        data = await self._simple_price([coin], include_volume=True)
        volume = data.get(coin, {}).get("usd_24h_vol")
        if volume is None:
            raise MarketDataAPIError(f"No CoinGecko volume for {symbol} ({coin})")
        return to_decimal(volume)


class FearGreedClient(JsonHttpClient):
    """Crypto Fear & Greed index. Market-wide, so the symbol is ignored."""

    BASE_URL = "https://api.alternative.me"

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("rate_limit", 1.0)
        super().__init__(self.BASE_URL, **kwargs)

    async def get_index(self, symbol: str = "") -> Decimal:
        data = await self._request("GET", "/fng/", params={"limit": "1"})
        try:
            return to_decimal(data["data"][0]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise MarketDataAPIError(f"Unexpected Fear & Greed response: {data!r}") from e


class EtherscanGasClient(JsonHttpClient):
    """Ethereum gas oracle. Chain-wide, so the symbol is ignored."""

    BASE_URL = "https://api.etherscan.io"

    def __init__(self, api_key: str, **kwargs) -> None:
        kwargs.setdefault("rate_limit", 4.0)
        super().__init__(self.BASE_URL, **kwargs)
        self._api_key = api_key

    async def get_gas_price(self, symbol: str = "") -> Decimal:
        params = {"module": "gastracker", "action": "gasoracle", "apikey": self._api_key}
        data = await self._request("GET", "/api", params=params)

        if not isinstance(data, dict) or data.get("status") != "1":
            message = data.get("result") if isinstance(data, dict) else data
            raise MarketDataAPIError(f"Etherscan gas oracle error: {message}")
        try:
            return to_decimal(data["result"]["ProposeGasPrice"])
        except (KeyError, TypeError, ValueError) as e:
            raise MarketDataAPIError(f"Unexpected Etherscan response: {data!r}") from e


class TaapiClient(JsonHttpClient):
    """RSI and moving average from taapi.io, against the USDT pair."""

    BASE_URL = "https://api.taapi.io"

    def __init__(
        self,
        secret: str,
        exchange: str = "binance",
        interval: str = "1h",
        ma_period: int = 20,
        **kwargs,
    ) -> None:
        kwargs.setdefault("rate_limit", 1.0)
        super().__init__(self.BASE_URL, **kwargs)
        self._secret = secret
        self._exchange = exchange
        self._interval = interval
        self._ma_period = ma_period

    async def _indicator(self, name: str, symbol: str, **extra) -> Decimal:
        params = {
            "secret": self._secret,
            "exchange": self._exchange,
            "symbol": f"{symbol.upper()}/USDT",
            "interval": self._interval,
            **{k: str(v) for k, v in extra.items()},
        }
        data = await self._request("GET", f"/{name}", params=params)
        try:
            return to_decimal(data["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise MarketDataAPIError(f"Unexpected taapi {name} response: {data!r}") from e

    async def get_rsi(self, symbol: str) -> Decimal:
        return await self._indicator("rsi", symbol)

    async def get_ma(self, symbol: str) -> Decimal:
        return await self._indicator("ma", symbol, period=self._ma_period)


def build_provider_set(
    coingecko: CoinGeckoClient,
    fear_greed: Optional[FearGreedClient] = None,
    gas: Optional[EtherscanGasClient] = None,
    indicators: Optional[TaapiClient] = None,
) -> MetricProviderSet:
    """Wire the available sources, marking the rest unavailable."""
    providers: Dict[MetricKind, MetricProvider] = {
        MetricKind.PRICE: coingecko.get_price,
        MetricKind.VOLUME: coingecko.get_volume,
        MetricKind.SENTIMENT: fear_greed.get_index if fear_greed else unavailable_provider(MetricKind.SENTIMENT),
        MetricKind.GAS: gas.get_gas_price if gas else unavailable_provider(MetricKind.GAS),
        MetricKind.RSI: indicators.get_rsi if indicators else unavailable_provider(MetricKind.RSI),
        MetricKind.MA: indicators.get_ma if indicators else unavailable_provider(MetricKind.MA),
    }

    unavailable = [m.value for m, s in (
        (MetricKind.SENTIMENT, fear_greed),
        (MetricKind.GAS, gas),
        (MetricKind.RSI, indicators),
    ) if s is None]
    if indicators is None:
        unavailable.append(MetricKind.MA.value)
    if unavailable:
        logger.warning(f"No data source for {', '.join(unavailable)}; conditions on them never match")

    return MetricProviderSet(providers, price_batch=coingecko.get_prices)
