"""Error taxonomy for position reads and guarded lending operations."""

import logging
from decimal import Decimal
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorCode(StrEnum):
    """Machine-readable error kinds."""

    INVALID_AMOUNT = "INVALID_AMOUNT"
    UNSUPPORTED_ASSET = "UNSUPPORTED_ASSET"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"

    INSUFFICIENT_COLLATERAL = "INSUFFICIENT_COLLATERAL"
    NO_COLLATERAL = "NO_COLLATERAL"
    LIQUIDATION_RISK = "LIQUIDATION_RISK"
    EXCEEDS_BORROW_CAPACITY = "EXCEEDS_BORROW_CAPACITY"

    INSUFFICIENT_LIQUIDITY = "INSUFFICIENT_LIQUIDITY"
    MARKET_PAUSED = "MARKET_PAUSED"

    RPC_ERROR = "RPC_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    TIMEOUT = "TIMEOUT"

    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class MoonwellError(Exception):
    """
    Base exception for every engine failure.

    Parameters
    ----------
    message : str
        Human readable description
    details : dict[str, Any] | None
        Computed values that caused the failure (capacity, simulated health factor, ...)
    suggestions : list[str] | None
        Actionable hints for the caller
    health_factor : Decimal | None
        Offending health factor, when one is involved

    """

    code: ErrorCode = ErrorCode.TRANSACTION_FAILED

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
        health_factor: Decimal | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []
        self.health_factor = health_factor

    def to_dict(self) -> dict[str, Any]:
        """Render the error with all of its context as plain data."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": {k: str(v) if isinstance(v, Decimal) else v for k, v in self.details.items()},
            "suggestions": list(self.suggestions),
            "health_factor": str(self.health_factor) if self.health_factor is not None else None,
        }


class InvalidAmountError(MoonwellError):
    code = ErrorCode.INVALID_AMOUNT


class InvalidParametersError(MoonwellError):
    code = ErrorCode.INVALID_PARAMETERS


class UnsupportedAssetError(MoonwellError):
    code = ErrorCode.UNSUPPORTED_ASSET


class InsufficientBalanceError(MoonwellError):
    code = ErrorCode.INSUFFICIENT_BALANCE


class InsufficientCollateralError(MoonwellError):
    code = ErrorCode.INSUFFICIENT_COLLATERAL


class NoCollateralError(InsufficientCollateralError):
    code = ErrorCode.NO_COLLATERAL


class ExceedsBorrowCapacityError(MoonwellError):
    code = ErrorCode.EXCEEDS_BORROW_CAPACITY


class InsufficientLiquidityError(MoonwellError):
    code = ErrorCode.INSUFFICIENT_LIQUIDITY


class MarketPausedError(MoonwellError):
    code = ErrorCode.MARKET_PAUSED


class LiquidationRiskError(MoonwellError):
    """Raised when a position would end up (or ended up) below a health boundary."""

    code = ErrorCode.LIQUIDATION_RISK

    def __init__(
        self,
        message: str,
        health_factor: Decimal,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        super().__init__(message, details=details, suggestions=suggestions, health_factor=health_factor)


class RpcError(MoonwellError):
    code = ErrorCode.RPC_ERROR


class ServiceUnavailableError(MoonwellError):
    code = ErrorCode.SERVICE_UNAVAILABLE


class WalletNotConnectedError(MoonwellError):
    code = ErrorCode.WALLET_NOT_CONNECTED


class TransactionFailedError(MoonwellError):
    code = ErrorCode.TRANSACTION_FAILED


class TransactionTimeoutError(MoonwellError):
    code = ErrorCode.TIMEOUT


def classify_error(error: BaseException) -> MoonwellError:
    """
    Map an arbitrary collaborator exception onto the error taxonomy.

    Engine errors pass through untouched; anything else is classified by
    inspecting its message.

    Parameters
    ----------
    error : BaseException
        Exception raised by a chain, API or wallet collaborator

    Returns
    -------
    MoonwellError
        Classified error with the original message in ``details``

    """
    if isinstance(error, MoonwellError):
        return error

    message = str(error).lower()
    details = {"original_error": str(error)}

    if isinstance(error, TimeoutError) or "timed out" in message:
        return TransactionTimeoutError("Request timed out", details=details)

    if "insufficient" in message or "exceeds balance" in message:
        return InsufficientBalanceError("Insufficient funds for transaction", details=details)

    if "gas" in message or "reverted" in message:
        return TransactionFailedError(
            "Transaction would fail - check parameters",
            details=details,
            suggestions=[
                "Verify you have enough balance",
                "Check if the market is paused",
                "Ensure health factor remains safe",
            ],
        )

    if "network" in message or "rpc" in message or "timeout" in message or "connection" in message:
        return RpcError("Network error - please try again", details=details)

    if "paused" in message or "frozen" in message:
        return MarketPausedError(
            "Market is currently paused",
            details=details,
            suggestions=["Try again later", "Check the protocol status page"],
        )

    logger.debug("Unclassified collaborator error: %r", error)
    return TransactionFailedError(str(error) or "An unexpected error occurred", details=details)


def format_error_response(error: MoonwellError) -> str:
    """Render an error as a short, user-facing block of text."""
    response = f"Error: {error.message}"

    if error.health_factor is not None:
        response += f"\nHealth Factor: {error.health_factor:.2f}"

    if error.suggestions:
        response += "\n\nSuggestions:"
        for index, suggestion in enumerate(error.suggestions, start=1):
            response += f"\n{index}. {suggestion}"

    return response
