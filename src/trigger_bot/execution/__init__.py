"""
Execution Layer - Settlement and the per-trigger execution state machine.

This module provides:
    - ExecutionCoordinator: claim -> settle -> finalize -> notify (use this!)
    - CoordinatorConfig: settlement timeout and reconciliation settings
    - ExecutionResult: Result of execution attempts
    - SwapExecutor / ReconcilingSwapExecutor: settlement contracts
    - PaperSwapExecutor: dry-run settlement
    - HttpSwapExecutor: client for an external settlement service
    - SettlementError, SettlementErrorKind, classify_error: error taxonomy

Retry Policy:
    - Retryable kinds (timeout, RPC error, nonce conflict, slippage,
      liquidity shortfall) leave the trigger ACTIVE
    - Every other kind, classified or not, moves the trigger to FAILED
"""

from .coordinator import (
    CLAIM_CONFLICT,
    CoordinatorConfig,
    ExecutionCoordinator,
    ExecutionResult,
)
from .errors import (
    RETRYABLE_KINDS,
    SettlementError,
    SettlementErrorKind,
    classify_error,
    is_retryable,
)
from .swap import (
    HttpSwapExecutor,
    PaperSwapExecutor,
    ReconcilingSwapExecutor,
    SwapExecutor,
    SwapReceipt,
    SwapRequest,
)

__all__ = [
    "CLAIM_CONFLICT",
    "CoordinatorConfig",
    "ExecutionCoordinator",
    "ExecutionResult",
    "RETRYABLE_KINDS",
    "SettlementError",
    "SettlementErrorKind",
    "classify_error",
    "is_retryable",
    "HttpSwapExecutor",
    "PaperSwapExecutor",
    "ReconcilingSwapExecutor",
    "SwapExecutor",
    "SwapReceipt",
    "SwapRequest",
]
