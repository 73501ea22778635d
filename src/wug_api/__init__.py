"""
WhatsUp Gold REST API client core.

Authenticated requests with proactive and reactive (401) token refresh.
Refreshes are single-flight, so the client is safe to share between threads
(WUGClient) or tasks (AsyncWUGClient).
"""

__version__ = "0.1.0"

from .errors import (
    WUGError,
    NotConnectedError,
    AuthenticationError,
    TokenRefreshError,
    RequestError,
    HTTPStatusError,
    UnauthorizedError,
    NetworkError,
)
from .session import (
    get_int_env,
    get_bool_env,
    Session,
    TokenState,
    DEFAULT_PORT,
    API_PREFIX,
    REFRESH_MINUTES,
    REQUEST_TIMEOUT,
    TOKEN_TIMEOUT,
)
from .token import (
    refresh_session,
    async_refresh_session,
    request_password_token,
    parse_token_response,
    get_token_remaining_seconds,
)
from .connection import (
    create_ssl_context,
    create_timeout,
    create_http_client,
    create_async_http_client,
    build_auth_headers,
)
from .config import Config, redact_token
from .client import WUGClient, with_auth_retry, HTTP_METHODS
from .aio import AsyncWUGClient, async_with_auth_retry

__all__ = [
    # Errors
    "WUGError",
    "NotConnectedError",
    "AuthenticationError",
    "TokenRefreshError",
    "RequestError",
    "HTTPStatusError",
    "UnauthorizedError",
    "NetworkError",
    # Session state
    "get_int_env",
    "get_bool_env",
    "Session",
    "TokenState",
    "DEFAULT_PORT",
    "API_PREFIX",
    "REFRESH_MINUTES",
    "REQUEST_TIMEOUT",
    "TOKEN_TIMEOUT",
    # Token endpoint
    "refresh_session",
    "async_refresh_session",
    "request_password_token",
    "parse_token_response",
    "get_token_remaining_seconds",
    # Connection utilities
    "create_ssl_context",
    "create_timeout",
    "create_http_client",
    "create_async_http_client",
    "build_auth_headers",
    # Configuration
    "Config",
    "redact_token",
    # Clients
    "WUGClient",
    "AsyncWUGClient",
    "with_auth_retry",
    "async_with_auth_retry",
    "HTTP_METHODS",
]
