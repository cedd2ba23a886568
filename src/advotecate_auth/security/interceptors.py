"""gRPC server interceptor for per-RPC authentication and authorization.

Provides:
- ``EnforcementMode`` — three-state toggle: off / warn / enforce.
- ``ServicePermissionInterceptor`` — maps each RPC to ``(resource, action)``
  and runs it through ``AuthGuard``.
- ``context_from_metadata()`` — permission context from ``x-*`` metadata.
- ``_extract_rpc_name``, ``_should_skip`` — helper utilities.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union

import grpc

from ..permissions import ContextKey
from ..token_utils import extract_token_from_metadata
from .guard import AuthGuard, AuthResult, AuthStatus, client_ip

logger = logging.getLogger(__name__)


# ── Enforcement Mode ────────────────────────────────────────────


class EnforcementMode(str, Enum):
    """Three-state security enforcement toggle.

    - ``off``     — no checks, only caller logging.
    - ``warn``    — check, log denials as WARNING, let the call through.
    - ``enforce`` — check and abort on denial (production).

    Set via env ``SECURITY_ENFORCEMENT=off|warn|enforce``.
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"

    @classmethod
    def from_env(cls) -> EnforcementMode:
        """Read from ``SECURITY_ENFORCEMENT`` env var (default: enforce)."""
        import os  # Localized: the only env read outside load_config_from_env()

        raw = os.environ.get("SECURITY_ENFORCEMENT", "enforce").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            logger.warning("Unknown SECURITY_ENFORCEMENT=%r, defaulting to 'enforce'", raw)
            return cls.ENFORCE


# Method prefixes that bypass permission checks
_SKIP_PREFIXES = (
    "grpc.health.v1",
    "grpc.reflection.v1",
)

_GRPC_STATUS = {
    AuthStatus.UNAUTHENTICATED: grpc.StatusCode.UNAUTHENTICATED,
    AuthStatus.FORBIDDEN: grpc.StatusCode.PERMISSION_DENIED,
    AuthStatus.ERROR: grpc.StatusCode.INTERNAL,
}

_CLIENT_MESSAGE = {
    AuthStatus.UNAUTHENTICATED: "Authentication required",
    AuthStatus.FORBIDDEN: "Permission denied",
    AuthStatus.ERROR: "Internal server error",
}


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """``/donations.DonationService/CreateDonation`` → ``CreateDonation``"""
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    """Check if this method should skip permission checks."""
    return any(prefix in method for prefix in _SKIP_PREFIXES)


def _metadata_value(metadata: Mapping[str, Any], key: str) -> str | None:
    value = metadata.get(key)
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    return value or None


# ── Request context ─────────────────────────────────────────────

ContextExtractor = Callable[[Mapping[str, Any]], Mapping[str, Any]]
RpcRule = Union[tuple[str, str], tuple[str, str, Optional[ContextExtractor]], None]

# Metadata key → permission context key
METADATA_CONTEXT_KEYS: dict[str, str] = {
    "x-organization-id": ContextKey.ORGANIZATION_ID,
    "x-target-organization-id": ContextKey.TARGET_ORGANIZATION_ID,
    "x-user-id": ContextKey.USER_ID,
    "x-donation-id": "donationId",
    "x-fundraiser-id": "fundraiserId",
    "x-resource-type": ContextKey.TYPE,
    "x-resource-status": ContextKey.STATUS,
    "x-purpose": ContextKey.PURPOSE,
    "x-request-type": ContextKey.REQUEST_TYPE,
}


def context_from_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Build a permission context from invocation metadata.

    gRPC counterpart of ``context_from_request``: the caller names the
    target resource in ``x-organization-id``, ``x-user-id`` and friends
    (see ``METADATA_CONTEXT_KEYS``). The handler must act on the same ids
    it was authorized for.
    """
    context: dict[str, Any] = {}
    for header, key in METADATA_CONTEXT_KEYS.items():
        value = _metadata_value(metadata, header)
        if value:
            context[key] = value
    return context


def _split_rule(rule: RpcRule) -> tuple[tuple[str, str] | None, ContextExtractor | None]:
    if rule is None:
        return None, None
    if len(rule) == 2:
        return (rule[0], rule[1]), context_from_metadata
    resource, action, extract = rule
    return (resource, action), extract


# ── Interceptor ─────────────────────────────────────────────────


class ServicePermissionInterceptor(grpc.aio.ServerInterceptor):
    """Authorize every RPC through an ``AuthGuard``.

    For each call:
    1. Extract the bearer token from ``authorization`` metadata.
    2. Look up the RPC in ``rpc_permission_map`` and build the permission
       context from metadata.
    3. ``guard.authenticate(...)`` with the mapped permission and context.
    4. Abort with ``UNAUTHENTICATED`` / ``PERMISSION_DENIED`` on denial.

    Unmapped RPCs are denied. Health and reflection RPCs are skipped.
    The client only sees a generic message; the reason is logged.

    Args:
        guard: Authentication guard.
        rpc_permission_map: RPC name → rule. A rule is
            ``(resource, action)`` (context read by ``context_from_metadata``),
            ``(resource, action, extractor)`` (context built by ``extractor``
            from the metadata dict, or no context when ``extractor`` is
            ``None``), or ``None`` for "authenticated, no specific permission".
        service_name: Name used in log messages.
        enforcement: Defaults to ``SECURITY_ENFORCEMENT`` (``enforce`` if unset).

    Usage::

        interceptor = ServicePermissionInterceptor(
            guard,
            {
                "CreateDonation": ("donation", "create"),
                "UpdateFundraiser": ("fundraiser", "update"),  # x-organization-id
                "GetProfile": None,
            },
            service_name="Donations",
        )
        server = grpc.aio.server(interceptors=[interceptor])
    """

    def __init__(
        self,
        guard: AuthGuard,
        rpc_permission_map: Mapping[str, RpcRule],
        *,
        service_name: str = "Service",
        enforcement: EnforcementMode | None = None,
    ) -> None:
        self._guard = guard
        self._rpc_map = dict(rpc_permission_map)
        self._service_name = service_name
        self._mode = enforcement if enforcement is not None else EnforcementMode.from_env()

        if self._mode != EnforcementMode.ENFORCE:
            logger.warning("%s interceptor mode: %s", self._service_name, self._mode.value)

    @property
    def mode(self) -> EnforcementMode:
        return self._mode

    async def _authorize(self, rule: RpcRule, token: str | None, metadata: Mapping[str, Any]) -> AuthResult:
        required, extract = _split_rule(rule)
        try:
            context = extract(metadata) if extract is not None else None
        except Exception:
            logger.exception("%s context extraction failed", self._service_name)
            return AuthResult.deny(AuthStatus.ERROR, "INTERNAL_ERROR", "Context extraction failed")

        return await self._guard.authenticate(
            token,
            ip_address=client_ip(metadata) or None,
            user_agent=_metadata_value(metadata, "user-agent"),
            required_permission=required,
            context=context,
        )

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        """Intercept incoming gRPC calls for permission validation."""
        method = handler_call_details.method or ""

        if _should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = dict(handler_call_details.invocation_metadata or [])
        token = extract_token_from_metadata(metadata)

        if self._mode == EnforcementMode.OFF:
            logger.info("%s RPC %s | token=%s", self._service_name, rpc_name, "yes" if token else "no")
            return await continuation(handler_call_details)

        if rpc_name not in self._rpc_map:
            result = AuthResult.deny(AuthStatus.FORBIDDEN, "RPC_NOT_MAPPED", "RPC not mapped to permission")
        else:
            result = await self._authorize(self._rpc_map[rpc_name], token, metadata)

        if result.allowed:
            logger.debug(
                "%s ALLOWED '%s' for user %s",
                self._service_name,
                rpc_name,
                result.payload.user_id if result.payload else "anonymous",
            )
            return await continuation(handler_call_details)

        if self._mode == EnforcementMode.WARN:
            logger.warning(
                "%s WARN_DENIED '%s': %s %s (would block in enforce mode)",
                self._service_name,
                rpc_name,
                result.code,
                result.message,
            )
            return await continuation(handler_call_details)

        logger.warning("%s DENIED '%s': %s %s", self._service_name, rpc_name, result.code, result.message)

        deny_status = _GRPC_STATUS.get(result.status, grpc.StatusCode.PERMISSION_DENIED)
        deny_message = _CLIENT_MESSAGE.get(result.status, "Permission denied")

        async def _denied(request, context):
            await context.abort(deny_status, deny_message)

        return grpc.unary_unary_rpc_method_handler(_denied)


__all__ = [
    "ContextExtractor",
    "EnforcementMode",
    "METADATA_CONTEXT_KEYS",
    "RpcRule",
    "ServicePermissionInterceptor",
    "context_from_metadata",
    "_extract_rpc_name",
    "_should_skip",
]
