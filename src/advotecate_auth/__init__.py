from .config import AuthConfig, LogLevel, SessionConfig, TokenConfig, load_config_from_env
from .permissions import Authorizer, AuthzUser, Permission, Role, RoleRegistry
from .tokens import TokenPair, TokenService, UserPayload
from .sessions import InMemorySessionStore, RedisSessionStore, SessionData, SessionManager
from .security import AuthGuard, AuthResult, AuthStatus
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AuthLogFormatter,
    AuthLoggerAdapter,
    setup_logging,
    get_auth_logger,
)

__all__ = [
    'AuthConfig',
    'LogLevel',
    'SessionConfig',
    'TokenConfig',
    'load_config_from_env',
    'Authorizer',
    'AuthzUser',
    'Permission',
    'Role',
    'RoleRegistry',
    'TokenPair',
    'TokenService',
    'UserPayload',
    'InMemorySessionStore',
    'RedisSessionStore',
    'SessionData',
    'SessionManager',
    'AuthGuard',
    'AuthResult',
    'AuthStatus',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AuthLogFormatter',
    'AuthLoggerAdapter',
    'setup_logging',
    'get_auth_logger',
]
