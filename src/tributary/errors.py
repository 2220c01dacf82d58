"""
tributary/errors.py

Error taxonomy for holder discovery and distribution.

Every error carries a numeric code (stable across releases so the CLI can map
it to an exit status) and an optional details dict with plain values.
"""

from typing import Any, Dict, Optional


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCodes:
    """Numeric codes shared with the CLI/report collaborators."""
    SUCCESS = 0
    GENERAL_ERROR = 1
    VALIDATION_ERROR = 2
    CONFIGURATION_ERROR = 3
    NETWORK_ERROR = 4
    AUTHENTICATION_ERROR = 5
    DATA_INTEGRITY_ERROR = 6
    RESOURCE_ERROR = 7
    TIMEOUT_ERROR = 8


# ============================================================================
# BASE
# ============================================================================

class TributaryError(Exception):
    """Base exception for all tributary errors."""

    code = ErrorCodes.GENERAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ============================================================================
# NETWORK
# ============================================================================

class NetworkError(TributaryError):
    """Endpoint unreachable or RPC failure. Retryable."""
    code = ErrorCodes.NETWORK_ERROR


class RpcTimeoutError(NetworkError):
    """A single attempt exceeded its time limit."""
    code = ErrorCodes.TIMEOUT_ERROR


class RetryExhaustedError(NetworkError):
    """All retry attempts for an operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        cause = str(last_error) if last_error is not None else "unknown"
        super().__init__(
            f"{operation} failed after {attempts} attempts: {cause}",
            {"operation": operation, "attempts": attempts, "last_error": cause},
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


# ============================================================================
# VALIDATION / CONFIGURATION / AUTH
# ============================================================================

class ValidationError(TributaryError):
    """Malformed address, invalid mint or invalid request field."""
    code = ErrorCodes.VALIDATION_ERROR


class ConfigurationError(TributaryError):
    """Invalid configuration value. Fatal to the run."""
    code = ErrorCodes.CONFIGURATION_ERROR


class AuthenticationError(TributaryError):
    code = ErrorCodes.AUTHENTICATION_ERROR


class SigningKeyError(AuthenticationError):
    """The distributing authority's key is missing or unusable."""


# ============================================================================
# RESOURCES / INTEGRITY
# ============================================================================

class ResourceError(TributaryError):
    code = ErrorCodes.RESOURCE_ERROR


class InsufficientFundsError(ResourceError):
    """Source account cannot cover the allocation. Fatal to the run."""

    def __init__(self, required: int, available: int, details: Optional[Dict[str, Any]] = None):
        merged = {"required": required, "available": available}
        merged.update(details or {})
        super().__init__(
            f"Insufficient token balance. Required: {required}, Available: {available}",
            merged,
        )
        self.required = required
        self.available = available


class TransactionRejectedError(TributaryError):
    """The chain executed a transaction and reported an error. Not retried."""


class DataIntegrityError(TributaryError):
    code = ErrorCodes.DATA_INTEGRITY_ERROR


class LedgerClosedError(DataIntegrityError):
    """Mutation attempted on a finalized distribution result."""


class InvalidTransitionError(DataIntegrityError):
    """Transaction record moved out of a terminal state."""
