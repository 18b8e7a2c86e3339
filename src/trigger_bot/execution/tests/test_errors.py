"""
Tests for the settlement error taxonomy.
"""
import asyncio
import pytest

from trigger_bot.execution import (
    RETRYABLE_KINDS,
    SettlementError,
    SettlementErrorKind,
    classify_error,
    is_retryable,
)


class TestClassifyError:

    def test_settlement_error_keeps_its_kind(self):
        error = SettlementError(SettlementErrorKind.INSUFFICIENT_FUNDS, "balance 3 < 100")

        assert classify_error(error) is SettlementErrorKind.INSUFFICIENT_FUNDS
        assert str(error) == "INSUFFICIENT_FUNDS: balance 3 < 100"
        assert error.retryable is False

    def test_timeouts(self):
        assert classify_error(asyncio.TimeoutError()) is SettlementErrorKind.TIMEOUT
        assert classify_error(TimeoutError("read")) is SettlementErrorKind.TIMEOUT

    def test_connection_errors_are_rpc_errors(self):
        assert classify_error(ConnectionResetError("peer")) is SettlementErrorKind.RPC_ERROR

    @pytest.mark.parametrize(
        "message,kind",
        [
            ("nonce too low", SettlementErrorKind.NONCE_CONFLICT),
            ("replacement transaction underpriced", SettlementErrorKind.NONCE_CONFLICT),
            ("Slippage tolerance exceeded", SettlementErrorKind.SLIPPAGE),
            ("insufficient liquidity for this trade", SettlementErrorKind.LIQUIDITY_SHORTFALL),
            ("insufficient funds for gas * price + value", SettlementErrorKind.INSUFFICIENT_FUNDS),
            ("ERC20: insufficient allowance", SettlementErrorKind.AUTHORIZATION_REVOKED),
            ("delegation revoked by owner", SettlementErrorKind.AUTHORIZATION_REVOKED),
            ("request timed out", SettlementErrorKind.TIMEOUT),
        ],
    )
    def test_message_patterns(self, message, kind):
        assert classify_error(RuntimeError(message)) is kind

    def test_unrecognized_is_unknown(self):
        assert classify_error(ValueError("something odd")) is SettlementErrorKind.UNKNOWN


class TestRetryPolicy:

    def test_retryable_allow_list(self):
        assert RETRYABLE_KINDS == {
            SettlementErrorKind.TIMEOUT,
            SettlementErrorKind.RPC_ERROR,
            SettlementErrorKind.NONCE_CONFLICT,
            SettlementErrorKind.SLIPPAGE,
            SettlementErrorKind.LIQUIDITY_SHORTFALL,
        }

    @pytest.mark.parametrize(
        "kind",
        [
            SettlementErrorKind.INSUFFICIENT_FUNDS,
            SettlementErrorKind.AUTHORIZATION_REVOKED,
            SettlementErrorKind.INVALID_PARAMETERS,
            SettlementErrorKind.UNKNOWN,
        ],
    )
    def test_everything_else_is_terminal(self, kind):
        assert not is_retryable(kind)

    def test_parse_falls_back_to_unknown(self):
        assert SettlementErrorKind.parse("slippage") is SettlementErrorKind.SLIPPAGE
        assert SettlementErrorKind.parse("GAS_SPIKE") is SettlementErrorKind.UNKNOWN
        assert SettlementErrorKind.parse(None) is SettlementErrorKind.UNKNOWN
