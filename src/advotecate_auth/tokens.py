"""Signed access/refresh/password-reset tokens.

Tokens are HS256 JWTs (PyJWT). Every token carries ``iss``, ``aud``,
``sub``, ``iat``, ``exp`` and a ``type`` claim; verification checks all of
them so that a refresh or password-reset token can never be replayed as an
access token.

- Access tokens: short-lived, full user payload, access secret.
- Refresh tokens: long-lived, minimal payload, refresh secret. Used only to
  mint a new pair.
- Password-reset tokens: 30 minutes, access secret, ``type=password_reset``.

``verify_*`` methods never raise; they return ``None`` and log the failure
class. ``decode()`` raises the typed ``TokenError`` subclasses for callers
that need the reason.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import jwt

from .config import TokenConfig
from .exceptions import (
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    TokenTypeMismatchError,
)
from .permissions.models import AuthzUser

logger = logging.getLogger(__name__)

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}
_DEFAULT_EXPIRY_SECONDS = 900


class TokenType(str, Enum):
    """Value of the ``type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class UserPayload:
    """Identity carried by an access token."""

    user_id: str
    email: str
    role: str
    kyc_status: str = "pending"
    organizations: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    session_id: Optional[str] = None

    def to_claims(self) -> dict[str, Any]:
        claims: dict[str, Any] = {
            "userId": self.user_id,
            "email": self.email,
            "role": self.role,
            "kycStatus": self.kyc_status,
            "organizations": list(self.organizations),
            "permissions": list(self.permissions),
        }
        if self.session_id:
            claims["sessionId"] = self.session_id
        return claims

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "UserPayload":
        return cls(
            user_id=claims["userId"],
            email=claims["email"],
            role=claims["role"],
            kyc_status=claims.get("kycStatus", "pending"),
            organizations=tuple(claims.get("organizations") or ()),
            permissions=tuple(claims.get("permissions") or ()),
            session_id=claims.get("sessionId"),
        )

    def to_authz_user(self) -> AuthzUser:
        """Authorization view: the token's role plus its organization memberships."""
        return AuthzUser(
            id=self.user_id,
            roles=(self.role,) if self.role else (),
            organizations=self.organizations,
        )


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str
    email: str
    session_id: Optional[str] = None


@dataclass(frozen=True)
class PasswordResetClaims:
    user_id: str
    email: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = field(default="Bearer")


def parse_expiry_to_seconds(expiry: str) -> int:
    """Convert ``"30s"``/``"15m"``/``"2h"``/``"7d"`` to seconds.

    Anything unparsable falls back to 900 (15 minutes).
    """
    if not expiry or len(expiry) < 2:
        return _DEFAULT_EXPIRY_SECONDS
    unit = expiry[-1]
    try:
        value = int(expiry[:-1])
    except ValueError:
        return _DEFAULT_EXPIRY_SECONDS
    if unit not in _UNIT_SECONDS:
        return _DEFAULT_EXPIRY_SECONDS
    return value * _UNIT_SECONDS[unit]


def extract_token_from_header(auth_header: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


def is_token_expiring_soon(token: str, buffer_minutes: int = 5, *, now: float | None = None) -> bool:
    """Whether ``token`` expires within ``buffer_minutes``.

    Reads ``exp`` without verifying the signature; a token that cannot be
    parsed is reported as expiring.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        exp = float(claims["exp"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
        return True
    current = time.time() if now is None else now
    return exp - current <= buffer_minutes * 60


class TokenService:
    """Mint and verify platform JWTs.

    Args:
        config: Token configuration; both secrets must be set.
        clock: Returns the current UNIX time. Injected for tests.

    Raises:
        ConfigurationError: If a signing secret is missing.

    Usage::

        tokens = TokenService(config.tokens)
        pair = tokens.generate_token_pair(UserPayload(user_id="u1", email="a@b.c", role="donor"))
        payload = tokens.verify_access_token(pair.access_token)
    """

    def __init__(self, config: TokenConfig, *, clock: Callable[[], float] = time.time) -> None:
        config.require_secrets()
        self._config = config
        self._clock = clock
        self._access_ttl = parse_expiry_to_seconds(config.access_expires_in)
        self._refresh_ttl = parse_expiry_to_seconds(config.refresh_expires_in)
        self._reset_ttl = parse_expiry_to_seconds(config.password_reset_expires_in)

    @property
    def access_ttl_seconds(self) -> int:
        return self._access_ttl

    # ── Minting ─────────────────────────────────────────

    def _encode(self, claims: dict[str, Any], *, subject: str, token_type: TokenType, ttl: int, secret: str) -> str:
        now = int(self._clock())
        body = {
            **claims,
            "type": token_type.value,
            "iss": self._config.issuer,
            "aud": self._config.audience,
            "sub": subject,
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(body, secret, algorithm=self._config.algorithm, headers={"typ": "JWT"})

    def generate_token_pair(self, payload: UserPayload) -> TokenPair:
        """Mint an access token (full payload) and a refresh token (minimal)."""
        access_token = self._encode(
            payload.to_claims(),
            subject=payload.user_id,
            token_type=TokenType.ACCESS,
            ttl=self._access_ttl,
            secret=self._config.access_secret,
        )

        refresh_claims: dict[str, Any] = {"userId": payload.user_id, "email": payload.email}
        if payload.session_id:
            refresh_claims["sessionId"] = payload.session_id
        refresh_token = self._encode(
            refresh_claims,
            subject=payload.user_id,
            token_type=TokenType.REFRESH,
            ttl=self._refresh_ttl,
            secret=self._config.refresh_secret,
        )

        return TokenPair(access_token=access_token, refresh_token=refresh_token, expires_in=self._access_ttl)

    def generate_password_reset_token(self, user_id: str, email: str) -> str:
        return self._encode(
            {"userId": user_id, "email": email},
            subject=user_id,
            token_type=TokenType.PASSWORD_RESET,
            ttl=self._reset_ttl,
            secret=self._config.access_secret,
        )

    # ── Verification ────────────────────────────────────

    def decode(self, token: str, expected_type: TokenType) -> dict[str, Any]:
        """Verify ``token`` and return its claims.

        Raises:
            TokenExpiredError: ``exp`` has passed.
            TokenTypeMismatchError: ``type`` claim differs from ``expected_type``.
            TokenInvalidError: anything else (signature, issuer, audience, shape).
        """
        if not isinstance(token, str) or not token:
            raise TokenInvalidError("Missing token")

        secret = self._config.refresh_secret if expected_type is TokenType.REFRESH else self._config.access_secret
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self._config.algorithm],
                issuer=self._config.issuer,
                audience=self._config.audience,
                options={"require": ["exp", "iat", "sub", "iss", "aud"]},
                leeway=0,
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError(token_type=expected_type.value) from e
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {type(e).__name__}", token_type=expected_type.value) from e

        if claims.get("type") != expected_type.value:
            raise TokenTypeMismatchError(expected=expected_type.value, got=claims.get("type"))
        return claims

    def _verify(self, token: str, expected_type: TokenType) -> dict[str, Any] | None:
        try:
            return self.decode(token, expected_type)
        except TokenError as e:
            logger.info("%s token verification failed: %s", expected_type.value, e.code)
            return None

    def verify_access_token(self, token: str) -> Optional[UserPayload]:
        claims = self._verify(token, TokenType.ACCESS)
        if claims is None:
            return None
        try:
            return UserPayload.from_claims(claims)
        except KeyError as e:
            logger.info("access token verification failed: missing claim %s", e)
            return None

    def verify_refresh_token(self, token: str) -> Optional[RefreshClaims]:
        claims = self._verify(token, TokenType.REFRESH)
        if claims is None or "userId" not in claims:
            return None
        return RefreshClaims(
            user_id=claims["userId"],
            email=claims.get("email", ""),
            session_id=claims.get("sessionId"),
        )

    def verify_password_reset_token(self, token: str) -> Optional[PasswordResetClaims]:
        claims = self._verify(token, TokenType.PASSWORD_RESET)
        if claims is None or "userId" not in claims:
            return None
        return PasswordResetClaims(user_id=claims["userId"], email=claims.get("email", ""))

    def refresh_access_token(self, refresh_token: str, current: UserPayload) -> Optional[TokenPair]:
        """Mint a fresh pair from a valid refresh token.

        ``current`` is the caller's up-to-date view of the user (role and
        memberships may have changed since login). It must belong to the
        same user as the refresh token; the session id is carried over.
        """
        claims = self.verify_refresh_token(refresh_token)
        if claims is None:
            return None
        if claims.user_id != current.user_id:
            logger.warning("Refresh token subject mismatch for user %s", current.user_id)
            return None

        payload = UserPayload(
            user_id=current.user_id,
            email=current.email,
            role=current.role,
            kyc_status=current.kyc_status,
            organizations=current.organizations,
            permissions=current.permissions,
            session_id=claims.session_id,
        )
        return self.generate_token_pair(payload)


__all__ = [
    "PasswordResetClaims",
    "RefreshClaims",
    "TokenPair",
    "TokenService",
    "TokenType",
    "UserPayload",
    "extract_token_from_header",
    "is_token_expiring_soon",
    "parse_expiry_to_seconds",
]
