"""Request authentication and gRPC enforcement.

Usage::

    from advotecate_auth.security import AuthGuard, get_security_interceptors

    guard = AuthGuard(token_service, session_manager, authorizer)
    server = grpc.aio.server(interceptors=get_security_interceptors(guard, RPC_MAP))

Configuration (env vars)::

    SECURITY_ENFORCEMENT=enforce   # off | warn | enforce (default: enforce)
"""

from __future__ import annotations

from typing import Mapping

import grpc

from .guard import AuthGuard, AuthResult, AuthStatus, client_ip, context_from_request
from .interceptors import (
    EnforcementMode,
    RpcRule,
    ServicePermissionInterceptor,
    context_from_metadata,
    _extract_rpc_name,
    _should_skip,
)


def get_security_interceptors(
    guard: AuthGuard,
    rpc_permission_map: Mapping[str, RpcRule],
    enforcement: EnforcementMode | None = None,
    *,
    service_name: str = "Service",
) -> list[grpc.aio.ServerInterceptor]:
    """Get gRPC server interceptors for security.

    Returns a list to pass to ``grpc.aio.server(interceptors=...)``. Empty
    when enforcement is ``off``.
    """
    mode = enforcement if enforcement is not None else EnforcementMode.from_env()
    if mode == EnforcementMode.OFF:
        return []
    return [
        ServicePermissionInterceptor(
            guard,
            rpc_permission_map,
            service_name=service_name,
            enforcement=mode,
        )
    ]


__all__ = [
    # Guard
    "AuthGuard",
    "AuthResult",
    "AuthStatus",
    "client_ip",
    "context_from_request",
    # Interceptors
    "EnforcementMode",
    "RpcRule",
    "ServicePermissionInterceptor",
    "context_from_metadata",
    "_extract_rpc_name",
    "_should_skip",
    "get_security_interceptors",
]
