"""
Settlement error taxonomy.

Whether a failed attempt leaves the trigger ACTIVE for another try or moves
it to FAILED is decided here, by an explicit allow-list of retryable kinds.
Anything not on the list, including errors we cannot classify, is terminal.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional


class SettlementErrorKind(str, Enum):
    TIMEOUT = "TIMEOUT"
    RPC_ERROR = "RPC_ERROR"
    NONCE_CONFLICT = "NONCE_CONFLICT"
    SLIPPAGE = "SLIPPAGE"
    LIQUIDITY_SHORTFALL = "LIQUIDITY_SHORTFALL"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    AUTHORIZATION_REVOKED = "AUTHORIZATION_REVOKED"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SettlementErrorKind":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


RETRYABLE_KINDS = frozenset({
    SettlementErrorKind.TIMEOUT,
    SettlementErrorKind.RPC_ERROR,
    SettlementErrorKind.NONCE_CONFLICT,
    SettlementErrorKind.SLIPPAGE,
    SettlementErrorKind.LIQUIDITY_SHORTFALL,
})


class SettlementError(Exception):
    """The swap executor refused or failed to settle a swap."""

    def __init__(self, kind: SettlementErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)


# Lower-cased message fragments, checked in order
_MESSAGE_PATTERNS = (
    (("nonce", "replacement"), SettlementErrorKind.NONCE_CONFLICT),
    (("slippage",), SettlementErrorKind.SLIPPAGE),
    (("insufficient liquidity", "liquidity"), SettlementErrorKind.LIQUIDITY_SHORTFALL),
    (("insufficient funds", "insufficient balance"), SettlementErrorKind.INSUFFICIENT_FUNDS),
    (("revoked", "not authorized", "unauthorized", "allowance"), SettlementErrorKind.AUTHORIZATION_REVOKED),
    (("timed out", "timeout"), SettlementErrorKind.TIMEOUT),
)


def classify_error(exc: BaseException) -> SettlementErrorKind:
    """Map an exception raised while settling to a SettlementErrorKind."""
    if isinstance(exc, SettlementError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return SettlementErrorKind.TIMEOUT
    if isinstance(exc, ConnectionError):
        return SettlementErrorKind.RPC_ERROR

    message = str(exc).lower()
    for fragments, kind in _MESSAGE_PATTERNS:
        if any(fragment in message for fragment in fragments):
            return kind
    return SettlementErrorKind.UNKNOWN


def is_retryable(kind: SettlementErrorKind) -> bool:
    return kind in RETRYABLE_KINDS
