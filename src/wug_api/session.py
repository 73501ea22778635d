"""
Session state for a WhatsUp Gold connection.

Holds the server endpoints, the TLS policy and the current bearer token.
The token, refresh token and expiry travel together in one immutable
snapshot, so a reader can never observe a token without its expiry.
"""

import asyncio
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlparse


def get_int_env(name: str, default: int) -> int:
    """Get an integer from environment variable, with fallback to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def get_bool_env(name: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(name, "").lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


# Connection constants
DEFAULT_PORT = 9644  # WhatsUp Gold REST API port
DEFAULT_PROTOCOL = "https"
API_PREFIX = "/api/v1"
TOKEN_PATH = f"{API_PREFIX}/token"
REFRESH_MINUTES = get_int_env("WUG_REFRESH_MINUTES", 5)  # refresh when expiry is this close
REQUEST_TIMEOUT = get_int_env("WUG_REQUEST_TIMEOUT", 60)  # seconds - per API request
TOKEN_TIMEOUT = get_int_env("WUG_TOKEN_TIMEOUT", 30)  # seconds - token endpoint calls


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenState:
    """One issued access token and the refresh token that came with it."""
    token_type: str
    access_token: str
    refresh_token: str
    expiry: datetime

    @property
    def authorization(self) -> str:
        """Value for the Authorization header."""
        return f"{self.token_type} {self.access_token}"

    def is_expired(self, within_minutes: float = REFRESH_MINUTES, now: Optional[datetime] = None) -> bool:
        """Return True if this token expires within ``within_minutes`` of now."""
        now = now or _utcnow()
        return now + timedelta(minutes=within_minutes) >= self.expiry


class Session:
    """Process-wide record of the current credentials and server endpoints.

    ``base_uri``, ``token_uri`` and ``ignore_tls_errors`` are fixed at connect
    time. The token snapshot is replaced only through :meth:`update`, and
    every replacement bumps :attr:`generation` so concurrent callers can tell
    whether a refresh already happened while they waited on :attr:`lock`.
    """

    def __init__(
        self,
        base_uri: str,
        token_uri: str,
        token: TokenState,
        ignore_tls_errors: bool = False,
    ):
        self._base_uri = base_uri.rstrip("/")
        self._token_uri = token_uri
        self._ignore_tls_errors = ignore_tls_errors
        self._token = token
        self._generation = 0
        self._update_lock = threading.Lock()
        # Serializes refresh-and-update; held by clients across the round-trip
        self.lock = threading.Lock()
        # Same role for AsyncWUGClient; binds to the first loop that contends for it
        self.async_lock = asyncio.Lock()

    @property
    def base_uri(self) -> str:
        return self._base_uri

    @property
    def token_uri(self) -> str:
        return self._token_uri

    @property
    def ignore_tls_errors(self) -> bool:
        return self._ignore_tls_errors

    @property
    def token(self) -> TokenState:
        """Current token snapshot."""
        return self._token

    @property
    def generation(self) -> int:
        """Number of token updates applied since the session was created."""
        return self._generation

    @property
    def authorization(self) -> str:
        return self._token.authorization

    @property
    def expiry(self) -> datetime:
        return self._token.expiry

    def is_expired(self, within_minutes: float = REFRESH_MINUTES, now: Optional[datetime] = None) -> bool:
        """Return True if the token expires within ``within_minutes`` of now."""
        return self._token.is_expired(within_minutes, now)

    def update(
        self,
        access_token: str,
        refresh_token: str,
        expiry: datetime,
        token_type: Optional[str] = None,
    ) -> TokenState:
        """Replace the token snapshot and return it."""
        new_token = TokenState(
            token_type=token_type or self._token.token_type,
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
        )
        with self._update_lock:
            self._token = new_token
            self._generation += 1
        return new_token

    def resolve(self, uri: str) -> str:
        """Join a path beginning with ``/`` onto the base URI."""
        if uri.startswith("/"):
            return self._base_uri + uri
        return uri

    @classmethod
    def from_token_response(
        cls,
        base_uri: str,
        token_uri: str,
        payload: dict,
        ignore_tls_errors: bool = False,
        issued_at: Optional[datetime] = None,
    ) -> "Session":
        """Build a session from a token endpoint JSON payload."""
        from .token import parse_token_response

        token = parse_token_response(payload, issued_at=issued_at)
        return cls(base_uri, token_uri, token, ignore_tls_errors=ignore_tls_errors)

    def __repr__(self) -> str:
        host = urlparse(self._base_uri).netloc or self._base_uri
        return (
            f"Session(host={host!r}, expiry={self._token.expiry.isoformat()}, "
            f"generation={self._generation})"
        )
