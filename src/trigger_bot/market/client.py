"""
Async JSON-over-HTTP client base for third-party data sources.

Every metric source has its own rate limit, so each client carries its own
sliding-window limiter, retries 5xx/timeouts/connection errors with
exponential backoff, backs off harder on 429, and never retries other 4xx.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)


class MarketDataAPIError(Exception):
    """Non-success response or transport failure from an HTTP API."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitError(MarketDataAPIError):
    """Rate limit exceeded (HTTP 429)."""


class JsonHttpClient:
    """
    Base class for rate-limited JSON API clients.

    Usage:
        async with CoinGeckoClient() as client:
            price = await client.get_price("BTC")
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 5.0,  # requests per second
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._headers = headers or {}

        self._request_times: list[float] = []
        self._rate_lock = asyncio.Lock()

    async def __aenter__(self) -> "JsonHttpClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
            self._owns_session = True
        return self._session

    async def _rate_limit_wait(self) -> None:
        async with self._rate_lock:
            now = time.monotonic()
            self._request_times = [t for t in self._request_times if now - t < 1.0]

            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.monotonic())

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Issue a request and return the decoded JSON body.

        Raises:
            RateLimitError: still rate limited after all retries
            MarketDataAPIError: 4xx responses (immediately) or exhausted retries
        """
        session = self._ensure_session()
        url = f"{self._base_url}/{path.lstrip('/')}"
        last_error: Optional[MarketDataAPIError] = None

        for attempt in range(self._max_retries):
            if attempt:
                backoff = self._retry_delay * (2 ** (attempt - 1))
                if isinstance(last_error, RateLimitError):
                    backoff *= 2
                await asyncio.sleep(backoff)

            await self._rate_limit_wait()
            try:
                async with session.request(method, url, **kwargs) as response:
                    if response.status == 429:
                        last_error = RateLimitError("Rate limit exceeded", status_code=429)
                        logger.warning(f"Rate limited by {self._base_url}, retry {attempt + 1}/{self._max_retries}")
                        continue

                    if response.status >= 400:
                        body = await self._read_body(response)
                        error = MarketDataAPIError(
                            f"{method} {url} returned {response.status}",
                            status_code=response.status,
                            body=body,
                        )
                        if response.status < 500:
                            raise error
                        last_error = error
                        logger.warning(
                            f"Server error {response.status} from {self._base_url}, "
                            f"retry {attempt + 1}/{self._max_retries}"
                        )
                        continue

                    return await response.json(content_type=None)

            except asyncio.TimeoutError:
                last_error = MarketDataAPIError(f"{method} {url} timed out")
                logger.warning(f"Request timeout, retry {attempt + 1}/{self._max_retries}")
            except aiohttp.ClientError as e:
                last_error = MarketDataAPIError(f"{method} {url} failed: {e}")
                logger.warning(f"Request failed: {e}, retry {attempt + 1}/{self._max_retries}")

        raise last_error or MarketDataAPIError(f"{method} {url} failed after retries")

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return await response.text()
