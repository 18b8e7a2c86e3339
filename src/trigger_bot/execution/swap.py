"""
Swap executors - settle a BUY/SELL on the user's behalf.

The execution id travels with every request as `reference` and is the
idempotency key: a settlement service must never settle the same reference
twice, and executors that can look a reference up let the coordinator
reconcile a timed-out attempt instead of guessing.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

import aiohttp

from trigger_bot.storage.models import TradeSide, UserIdentity

from .errors import SettlementError, SettlementErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapRequest:
    user: UserIdentity
    side: TradeSide
    amount: Decimal
    symbol: str
    slippage_percent: Decimal
    reference: str  # execution id


@dataclass(frozen=True)
class SwapReceipt:
    tx_reference: str
    amount_out: Optional[Decimal] = None


@runtime_checkable
class SwapExecutor(Protocol):
    async def settle(self, request: SwapRequest) -> SwapReceipt:
        """
        Settle the swap.

        Raises:
            SettlementError: if the venue refused or failed the swap
        """
        ...


@runtime_checkable
class ReconcilingSwapExecutor(SwapExecutor, Protocol):
    async def lookup(self, reference: str) -> Optional[SwapReceipt]:
        """Receipt for a settled reference, or None if nothing landed."""
        ...


class PaperSwapExecutor:
    """
    Dry-run executor. Settles instantly and remembers what it settled.

    Usage:
        executor = PaperSwapExecutor()
        receipt = await executor.settle(request)   # paper-<hex>
    """

    def __init__(self) -> None:
        self._settled: dict[str, SwapReceipt] = {}

    async def settle(self, request: SwapRequest) -> SwapReceipt:
        existing = self._settled.get(request.reference)
        if existing is not None:
            return existing

        receipt = SwapReceipt(tx_reference=f"paper-{uuid.uuid4().hex[:16]}")
        self._settled[request.reference] = receipt
        logger.info(
            f"[DRY RUN] Would {request.side.value} {request.amount} {request.symbol} "
            f"for {request.user.wallet_address} (slippage {request.slippage_percent}%)"
        )
        return receipt

    async def lookup(self, reference: str) -> Optional[SwapReceipt]:
        return self._settled.get(reference)


class HttpSwapExecutor:
    """
    Client for an external settlement service.

    API:
        POST /settlements              -> {"tx_reference": ..., "amount_out": ...}
        GET  /settlements/{reference}  -> {"status": "SETTLED", "tx_reference": ...}
        errors                         -> {"error": {"kind": ..., "message": ...}}

    Settlement is never retried here; the caller owns retry policy.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpSwapExecutor":
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
            self._session = aiohttp.ClientSession(headers=self._headers)
            self._owns_session = True
        return self._session

    async def settle(self, request: SwapRequest) -> SwapReceipt:
        payload = {
            "reference": request.reference,
            "user_id": request.user.user_id,
            "wallet_address": request.user.wallet_address,
            "side": request.side.value,
            "amount": str(request.amount),
            "symbol": request.symbol,
            "slippage_percent": str(request.slippage_percent),
        }
        session = self._ensure_session()
        try:
            async with session.post(
                f"{self._base_url}/settlements",
                json=payload,
                headers={"Idempotency-Key": request.reference},
            ) as response:
                body = await self._read_json(response)
                if response.status >= 400:
                    raise self._error_from(response.status, body)
        except asyncio.TimeoutError as e:
            raise SettlementError(SettlementErrorKind.TIMEOUT, f"Settlement request timed out: {e}") from e
        except aiohttp.ClientError as e:
            raise SettlementError(SettlementErrorKind.RPC_ERROR, f"Settlement service unreachable: {e}") from e

        return self._receipt_from(body)

    async def lookup(self, reference: str) -> Optional[SwapReceipt]:
        session = self._ensure_session()
        try:
            async with session.get(f"{self._base_url}/settlements/{reference}") as response:
                if response.status == 404:
                    return None
                body = await self._read_json(response)
                if response.status >= 400:
                    raise self._error_from(response.status, body)
        except asyncio.TimeoutError as e:
            raise SettlementError(SettlementErrorKind.TIMEOUT, f"Settlement lookup timed out: {e}") from e
        except aiohttp.ClientError as e:
            raise SettlementError(SettlementErrorKind.RPC_ERROR, f"Settlement lookup failed: {e}") from e

        if str(body.get("status", "")).upper() != "SETTLED" or not body.get("tx_reference"):
            return None
        return self._receipt_from(body)

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> dict:
        try:
            body = await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _error_from(status: int, body: dict) -> SettlementError:
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        message = error.get("message") or f"HTTP {status}"
        if error.get("kind"):
            kind = SettlementErrorKind.parse(error["kind"])
        elif status >= 500:
            kind = SettlementErrorKind.RPC_ERROR
        elif status in (401, 403):
            kind = SettlementErrorKind.AUTHORIZATION_REVOKED
        elif status in (400, 422):
            kind = SettlementErrorKind.INVALID_PARAMETERS
        else:
            kind = SettlementErrorKind.UNKNOWN
        return SettlementError(kind, message)

    @staticmethod
    def _receipt_from(body: dict) -> SwapReceipt:
        tx_reference = body.get("tx_reference")
        if not tx_reference:
            raise SettlementError(SettlementErrorKind.UNKNOWN, f"Settlement response without tx_reference: {body!r}")
        amount_out = body.get("amount_out")
        return SwapReceipt(
            tx_reference=str(tx_reference),
            amount_out=Decimal(str(amount_out)) if amount_out is not None else None,
        )
