"""
Custom exception classes for the indexer.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


# JSON-RPC "invalid params"; returned by providers that reject the
# logsSubscribe "mentions" filter.
INVALID_PARAMS_CODE = -32602


class IndexerServiceError(Exception):
    """Base exception class for the indexer service."""

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


class ConfigurationError(IndexerServiceError):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class DatabaseError(IndexerServiceError):
    """Raised when there's a database error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class SolanaRPCError(IndexerServiceError):
    """Raised when a Solana RPC call fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SOLANA_RPC_ERROR", details)


class SubscriptionError(SolanaRPCError):
    """Raised when a websocket subscription is rejected or fails to open."""

    def __init__(
        self,
        message: str,
        rpc_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, {"rpc_code": rpc_code, **(details or {})})
        self.code = "SUBSCRIPTION_ERROR"
        self.rpc_code = rpc_code

    @property
    def is_unsupported_filter(self) -> bool:
        """True when the provider does not support the "mentions" filter."""
        return self.rpc_code == INVALID_PARAMS_CODE or "invalid mentions" in self.message.lower()


class TransactionNotFoundError(SolanaRPCError):
    """Raised when a listed transaction cannot be fetched."""

    def __init__(self, signature: str):
        super().__init__(
            f"Transaction not found: {signature}",
            {"signature": signature}
        )
        self.code = "NOT_FOUND"

