"""
Custom exception classes for the payout service.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class PayoutAppException(Exception):
    """Base exception class for the katpool payout service."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(PayoutAppException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class MissingSettingError(ConfigurationError):
    """Raised when a required setting or secret is not set."""

    def __init__(self, name: str, source: str = "Environment variable"):
        self.name = name
        super().__init__(
            f"{source} {name} is not set.",
            {"setting": name, "source": source}
        )


class PaymentIntervalError(ConfigurationError):
    """Raised when payouts per day do not produce an interval in [1, 24] hours."""

    def __init__(self, payouts_per_day: Any, reason: str = "paymentInterval must be between 1 and 24 hours."):
        super().__init__(
            reason,
            {"payouts_per_day": payouts_per_day}
        )


class RpcConnectionError(PayoutAppException):
    """Raised when the node connection cannot be established."""

    def __init__(self, message: str = "RPC connection error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RPC_CONNECTION_ERROR", details)


class NodeNotReadyError(PayoutAppException):
    """Raised when the node is not synchronized or lacks the UTXO index."""

    def __init__(self, is_synced: bool, has_utxo_index: bool):
        super().__init__(
            "Provided node is either not synchronized or lacks the UTXO index.",
            "NODE_NOT_READY",
            {"is_synced": is_synced, "has_utxo_index": has_utxo_index}
        )


class RpcRequestError(PayoutAppException):
    """Raised when the node answers a request with an error or not at all."""

    def __init__(self, method: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"RPC request {method} failed: {message}",
            "RPC_REQUEST_ERROR",
            {"method": method, **(details or {})}
        )


class TransactionManagerError(PayoutAppException):
    """Raised when the transaction manager cannot be loaded or built."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSACTION_MANAGER_ERROR", details)
