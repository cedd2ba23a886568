"""Unified exception hierarchy for advotecate-auth.

All errors inherit from AdvotecateAuthError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- gRPC status mapping and a unary handler decorator

Access denied is NOT an exception: the authorization facade returns
``False``. The errors below cover configuration problems, token failures
and session-store outages, and are converted to fail-closed sentinels at
the module boundaries that own them.

Usage:
    from advotecate_auth.exceptions import (
        AdvotecateAuthError,
        TokenExpiredError,
        grpc_error_handler,
    )
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "AdvotecateAuthError",
    "ConfigurationError",
    "SecurityError",
    "MalformedInputError",
    "TokenError",
    "TokenInvalidError",
    "TokenExpiredError",
    "TokenTypeMismatchError",
    "StorageError",
    "SessionStoreUnavailableError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # gRPC helpers
    "get_grpc_status_code",
    "grpc_error_handler",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class AdvotecateAuthError(Exception):
    """Base exception for the authorization core.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "TOKEN_EXPIRED").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AdvotecateAuthError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class SecurityError(AdvotecateAuthError):
    """Authentication/authorization failure."""

    code: str = "SECURITY_ERROR"


class MalformedInputError(SecurityError):
    """Caller passed a wrongly-typed user, resource, action or context."""

    code: str = "MALFORMED_INPUT"
    message: str = "Malformed authorization input"


class TokenError(SecurityError):
    """Base class for token verification failures."""

    code: str = "TOKEN_INVALID"
    message: str = "Invalid token"


class TokenInvalidError(TokenError):
    """Bad signature, issuer, audience or structure."""

    code: str = "TOKEN_INVALID"


class TokenExpiredError(TokenError):
    """Token ``exp`` claim is in the past."""

    code: str = "TOKEN_EXPIRED"
    message: str = "Token expired"


class TokenTypeMismatchError(TokenError):
    """A token of one type was presented where another was required."""

    code: str = "TOKEN_TYPE_MISMATCH"
    message: str = "Invalid token type"


class StorageError(AdvotecateAuthError):
    """Key-value store operation failed."""

    code: str = "STORAGE_ERROR"


class SessionStoreUnavailableError(StorageError):
    """Session store did not answer (error or timeout) after the retry."""

    code: str = "SESSION_STORE_UNAVAILABLE"
    message: str = "Session store unavailable"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[AdvotecateAuthError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AdvotecateAuthError]] = {}

    def register(self, code: str, error_cls: type[AdvotecateAuthError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AdvotecateAuthError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AdvotecateAuthError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("DONATION_LIMIT")
        class DonationLimitError(AdvotecateAuthError):
            code = "DONATION_LIMIT"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", AdvotecateAuthError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("SECURITY_ERROR", SecurityError)
error_registry.register("MALFORMED_INPUT", MalformedInputError)
error_registry.register("TOKEN_INVALID", TokenInvalidError)
error_registry.register("TOKEN_EXPIRED", TokenExpiredError)
error_registry.register("TOKEN_TYPE_MISMATCH", TokenTypeMismatchError)
error_registry.register("STORAGE_ERROR", StorageError)
error_registry.register("SESSION_STORE_UNAVAILABLE", SessionStoreUnavailableError)


# ---- gRPC Error Handling Utilities ------------------------------------------


def get_grpc_status_code(error: AdvotecateAuthError) -> Any:
    """Map AdvotecateAuthError to a gRPC status code.

    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    error_to_status = {
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "SECURITY_ERROR": grpc.StatusCode.PERMISSION_DENIED,
        "MALFORMED_INPUT": grpc.StatusCode.INVALID_ARGUMENT,
        "TOKEN_INVALID": grpc.StatusCode.UNAUTHENTICATED,
        "TOKEN_EXPIRED": grpc.StatusCode.UNAUTHENTICATED,
        "TOKEN_TYPE_MISMATCH": grpc.StatusCode.UNAUTHENTICATED,
        "STORAGE_ERROR": grpc.StatusCode.UNAVAILABLE,
        "SESSION_STORE_UNAVAILABLE": grpc.StatusCode.UNAVAILABLE,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)


def grpc_error_handler(method):
    """Decorator for unary gRPC service methods with proper error handling.

    Catches AdvotecateAuthError and aborts with the mapped status code.
    Unexpected exceptions abort with INTERNAL and a generic message so
    that internals never reach the client.

    Usage:
        @grpc_error_handler
        async def CreateDonation(self, request, context):
            ...
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except AdvotecateAuthError as e:
            status_code = get_grpc_status_code(e)
            error_message = f"[{e.code}] {e.message}"

            logger.error(
                "%s failed: %s",
                method.__name__,
                error_message,
                extra={
                    "error_code": e.code,
                    "error_details": e.details,
                },
            )

            context.set_trailing_metadata([("error-code", e.code)])
            await context.abort(status_code, error_message)
            return

        except Exception as e:
            import grpc

            logger.exception("%s unexpected error: %s", method.__name__, e)
            await context.abort(grpc.StatusCode.INTERNAL, "Internal server error")
            return

    return wrapper
