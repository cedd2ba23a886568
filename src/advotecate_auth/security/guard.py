"""Request authentication guard.

Provides:
- ``AuthStatus`` / ``AuthResult`` — outcome of one authentication attempt.
- ``AuthGuard`` — token → session → role → permission → MFA pipeline.
- ``context_from_request()`` — build the matcher context from route params.
- ``client_ip()`` — resolve the caller address behind proxies.

The guard never raises for a denial. Transports (HTTP middleware, the gRPC
interceptor) translate ``AuthResult.status`` into their own status codes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from ..logging import short_id
from ..permissions import Authorizer, AuthzUser, ContextKey
from ..sessions import SessionData, SessionManager
from ..tokens import TokenService, UserPayload

logger = logging.getLogger(__name__)


# ── Result ───────────────────────────────────────────────────────


class AuthStatus(str, Enum):
    """Outcome class, mapped one-to-one onto HTTP status codes."""

    OK = "ok"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    ERROR = "error"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    AuthStatus.OK: 200,
    AuthStatus.UNAUTHENTICATED: 401,
    AuthStatus.FORBIDDEN: 403,
    AuthStatus.ERROR: 500,
}


@dataclass(frozen=True)
class AuthResult:
    """Result of ``AuthGuard.authenticate``."""

    allowed: bool
    status: AuthStatus
    code: str = ""
    message: str = ""
    payload: Optional[UserPayload] = None
    user: Optional[AuthzUser] = None
    session: Optional[SessionData] = None

    @property
    def http_status(self) -> int:
        return self.status.http_status

    @classmethod
    def deny(cls, status: AuthStatus, code: str, message: str, **kwargs: Any) -> "AuthResult":
        return cls(allowed=False, status=status, code=code, message=message, **kwargs)


# ── Request helpers ──────────────────────────────────────────────

_PARAM_KEYS = (
    ContextKey.ORGANIZATION_ID,
    ContextKey.USER_ID,
    "donationId",
    "fundraiserId",
)
_QUERY_KEYS = (ContextKey.TYPE, ContextKey.STATUS)


def context_from_request(
    params: Optional[Mapping[str, Any]] = None,
    query: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Build a permission context from route params and query string.

    Only ``organizationId``, ``userId``, ``donationId`` and ``fundraiserId``
    are taken from ``params``; only ``type`` and ``status`` from ``query``.
    Empty values are dropped.
    """
    context: dict[str, Any] = {}
    for source, keys in ((params or {}, _PARAM_KEYS), (query or {}, _QUERY_KEYS)):
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                context[key] = value
    return context


def client_ip(headers: Optional[Mapping[str, str]], remote_addr: Optional[str] = None) -> str:
    """Caller IP: first ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the socket peer."""
    lowered = {k.lower(): v for k, v in (headers or {}).items()}

    forwarded = lowered.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = lowered.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip

    return remote_addr or ""


# ── Guard ────────────────────────────────────────────────────────


class AuthGuard:
    """Authenticate a bearer token and authorize the request.

    Checks run in this order and stop at the first failure:

    1. token present (401 ``AUTH_REQUIRED``) and valid (401 ``TOKEN_INVALID``)
    2. session, when the token names one and it belongs to the token
       subject (401 ``SESSION_EXPIRED``);
       IP/user-agent drift is logged and activity is touched
    3. minimum role (403 ``INSUFFICIENT_ROLE``)
    4. ``(resource, action)`` permission (403 ``INSUFFICIENT_PERMISSIONS``)
    5. MFA (403 ``MFA_REQUIRED``)

    Usage::

        guard = AuthGuard(token_service, session_manager, authorizer)
        result = await guard.authenticate(
            token,
            ip_address=client_ip(request.headers, request.client.host),
            required_permission=("fundraiser", "update"),
            context=context_from_request(request.path_params, request.query_params),
        )
        if not result.allowed:
            return JSONResponse({"code": result.code}, status_code=result.http_status)
    """

    def __init__(
        self,
        token_service: TokenService,
        session_manager: SessionManager,
        authorizer: Authorizer | None = None,
    ) -> None:
        self._tokens = token_service
        self._sessions = session_manager
        self._authorizer = authorizer or Authorizer()

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer

    async def authenticate(
        self,
        token: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        require_mfa: bool = False,
        required_role: Optional[str] = None,
        required_permission: Optional[tuple[str, str]] = None,
        context: Optional[Mapping[str, Any]] = None,
        allow_anonymous: bool = False,
    ) -> AuthResult:
        try:
            return await self._authenticate(
                token,
                ip_address=ip_address,
                user_agent=user_agent,
                require_mfa=require_mfa,
                required_role=required_role,
                required_permission=required_permission,
                context=context,
                allow_anonymous=allow_anonymous,
            )
        except Exception:
            logger.exception("Authentication failed unexpectedly")
            return AuthResult.deny(AuthStatus.ERROR, "INTERNAL_ERROR", "Internal server error")

    async def _authenticate(
        self,
        token: Optional[str],
        *,
        ip_address: Optional[str],
        user_agent: Optional[str],
        require_mfa: bool,
        required_role: Optional[str],
        required_permission: Optional[tuple[str, str]],
        context: Optional[Mapping[str, Any]],
        allow_anonymous: bool,
    ) -> AuthResult:
        if not token:
            if allow_anonymous:
                return AuthResult(allowed=True, status=AuthStatus.OK)
            return AuthResult.deny(AuthStatus.UNAUTHENTICATED, "AUTH_REQUIRED", "Authentication required")

        payload = self._tokens.verify_access_token(token)
        if payload is None:
            return AuthResult.deny(AuthStatus.UNAUTHENTICATED, "TOKEN_INVALID", "Invalid or expired token")

        user = payload.to_authz_user()
        session: Optional[SessionData] = None

        if payload.session_id:
            session = await self._sessions.get_session(payload.session_id)
            if session is None:
                return AuthResult.deny(
                    AuthStatus.UNAUTHENTICATED, "SESSION_EXPIRED", "Session expired", payload=payload
                )
            if session.user_id != payload.user_id:
                logger.warning(
                    "Session %s belongs to another user than token subject %s",
                    short_id(payload.session_id),
                    payload.user_id,
                )
                return AuthResult.deny(
                    AuthStatus.UNAUTHENTICATED, "SESSION_EXPIRED", "Session expired", payload=payload
                )
            self._sessions.detect_drift(session, ip_address, user_agent)
            await self._sessions.update_session_activity(
                payload.session_id, ip_address=ip_address, user_agent=user_agent
            )
            if session.organizations:
                user = AuthzUser(id=user.id, roles=user.roles, organizations=session.organizations)

        if required_role and not Authorizer.has_required_role(payload.role, required_role):
            logger.info("User %s role %s below required %s", payload.user_id, payload.role, required_role)
            return AuthResult.deny(
                AuthStatus.FORBIDDEN, "INSUFFICIENT_ROLE", "Insufficient permissions",
                payload=payload, user=user, session=session,
            )

        if required_permission is not None:
            resource, action = required_permission
            if not self._authorizer.has_permission(user, resource, action, context):
                logger.info("User %s denied %s:%s", payload.user_id, resource, action)
                return AuthResult.deny(
                    AuthStatus.FORBIDDEN, "INSUFFICIENT_PERMISSIONS", f"Missing permission {resource}:{action}",
                    payload=payload, user=user, session=session,
                )

        if require_mfa and not (session is not None and session.mfa_verified):
            return AuthResult.deny(
                AuthStatus.FORBIDDEN, "MFA_REQUIRED", "MFA verification required",
                payload=payload, user=user, session=session,
            )

        logger.debug(
            "Authenticated user %s (session %s)",
            payload.user_id,
            short_id(payload.session_id) if payload.session_id else "none",
        )
        return AuthResult(
            allowed=True, status=AuthStatus.OK, payload=payload, user=user, session=session
        )


__all__ = [
    "AuthGuard",
    "AuthResult",
    "AuthStatus",
    "client_ip",
    "context_from_request",
]
