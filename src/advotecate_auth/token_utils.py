"""Bearer-token transport helpers.

This module moves access tokens between callers and services:
- gRPC services (invocation metadata)
- HTTP services (Authorization header, ``access_token`` cookie)
- outbound clients (metadata injection)

Verification is not done here; pass the extracted string to
``TokenService.verify_access_token``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import grpc

from .tokens import extract_token_from_header

logger = logging.getLogger(__name__)

# gRPC metadata keys
GRPC_AUTH_HEADER = "authorization"

# HTTP header / cookie keys
HTTP_AUTH_HEADER = "HTTP_AUTHORIZATION"
ACCESS_TOKEN_COOKIE = "access_token"  # nosec B105


# =========================================
# gRPC Token Utilities
# =========================================


def extract_token_from_metadata(metadata: Optional[Mapping[str, str]]) -> Optional[str]:
    """Return the bearer token from an already-materialised metadata mapping."""
    if not metadata:
        return None
    return extract_token_from_header(metadata.get(GRPC_AUTH_HEADER, ""))


def extract_token_from_grpc_metadata(context: grpc.ServicerContext) -> Optional[str]:
    """Extract the bearer token from gRPC invocation metadata.

    Example:
        async def GetDonation(self, request, context):
            token = extract_token_from_grpc_metadata(context)
            if not token:
                await context.abort(grpc.StatusCode.UNAUTHENTICATED, "Missing token")
    """
    try:
        return extract_token_from_metadata(dict(context.invocation_metadata() or ()))
    except (TypeError, ValueError) as e:
        logger.warning("Failed to read gRPC metadata: %s", e)
        return None


def create_grpc_metadata_with_token(
    token: Optional[str],
    additional_metadata: Optional[list[tuple[str, str]]] = None,
) -> list[tuple[str, str]]:
    """Create a gRPC metadata list carrying ``token`` as a bearer credential."""
    metadata: list[tuple[str, str]] = []

    if token:
        metadata.append((GRPC_AUTH_HEADER, f"Bearer {token}"))

    if additional_metadata:
        metadata.extend(additional_metadata)

    return metadata


# =========================================
# HTTP Token Utilities
# =========================================


def extract_token_from_http_request(request: Any) -> Optional[str]:
    """Extract the access token from an HTTP request object.

    Looks for the token in:
    1. ``request.META['HTTP_AUTHORIZATION']`` (Django)
    2. ``request.headers['Authorization']`` (Starlette/FastAPI/aiohttp)
    3. ``request.COOKIES`` / ``request.cookies`` under ``access_token``

    The header always wins over the cookie.
    """
    meta = getattr(request, "META", None)
    if isinstance(meta, Mapping):
        token = extract_token_from_header(meta.get(HTTP_AUTH_HEADER, ""))
        if token:
            return token

    headers = getattr(request, "headers", None)
    if headers is not None and hasattr(headers, "get"):
        token = extract_token_from_header(headers.get("authorization") or headers.get("Authorization") or "")
        if token:
            return token

    for attr in ("COOKIES", "cookies"):
        cookies = getattr(request, attr, None)
        if isinstance(cookies, Mapping):
            value = cookies.get(ACCESS_TOKEN_COOKIE)
            if isinstance(value, str) and value.strip():
                return value.strip()

    return None


def create_http_headers_with_token(
    token: Optional[str],
    additional_headers: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """Create an HTTP headers dict with ``Authorization: Bearer <token>``."""
    headers: dict[str, str] = {}

    if token:
        headers["Authorization"] = f"Bearer {token}"

    if additional_headers:
        headers.update(additional_headers)

    return headers


# =========================================
# Client Utilities
# =========================================


class TokenMetadataInterceptor(grpc.aio.UnaryUnaryClientInterceptor):
    """gRPC client interceptor that injects the bearer token into metadata.

    Usage:
        interceptor = TokenMetadataInterceptor(pair.access_token)
        channel = grpc.aio.insecure_channel("localhost:50051", interceptors=[interceptor])
    """

    def __init__(self, token: Optional[str]):
        self.token = token

    async def intercept_unary_unary(self, continuation, client_call_details, request):
        """Intercept unary-unary calls to add token metadata."""
        if self.token:
            metadata = create_grpc_metadata_with_token(self.token)
            if client_call_details.metadata:
                metadata.extend(
                    (k, v) for k, v in client_call_details.metadata if k != GRPC_AUTH_HEADER
                )
            client_call_details = client_call_details._replace(metadata=metadata)
        return await continuation(client_call_details, request)


__all__ = [
    # gRPC utilities
    "extract_token_from_metadata",
    "extract_token_from_grpc_metadata",
    "create_grpc_metadata_with_token",
    # HTTP utilities
    "extract_token_from_http_request",
    "create_http_headers_with_token",
    # Client utilities
    "TokenMetadataInterceptor",
    # Constants
    "ACCESS_TOKEN_COOKIE",
    "GRPC_AUTH_HEADER",
    "HTTP_AUTH_HEADER",
]
