"""
Token endpoint operations for WhatsUp Gold.

Covers the initial password grant used by connect and the refresh-token
grant used to renew an expiring session. Refresh tokens rotate: the one
sent in a refresh is invalid as soon as the server answers.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx

from .config import redact_token
from .errors import AuthenticationError, TokenRefreshError
from .session import TOKEN_TIMEOUT, Session, TokenState

logger = logging.getLogger(__name__)

# The token endpoint receives a form-encoded body under a JSON content type.
TOKEN_HEADERS = {"Content-Type": "application/json"}

DEFAULT_TOKEN_TYPE = "Bearer"

# Maximum response body characters carried into an error message
MAX_ERROR_BODY = 2000


def build_refresh_body(refresh_token: str) -> str:
    return urlencode({"grant_type": "refresh_token", "refresh_token": refresh_token})


def build_password_body(username: str, password: str) -> str:
    return urlencode({"grant_type": "password", "username": username, "password": password})


def parse_token_response(payload: dict, issued_at: Optional[datetime] = None) -> TokenState:
    """
    Build a TokenState from a token endpoint response.

    Args:
        payload: Decoded JSON with access_token, refresh_token, expires_in
                 and optionally token_type.
        issued_at: Time the response was received (default: now, UTC).

    Returns:
        TokenState whose expiry is issued_at + expires_in seconds.

    Raises:
        TokenRefreshError: If a required field is missing or malformed.
    """
    if not isinstance(payload, dict):
        raise TokenRefreshError(f"Unexpected token response type: {type(payload).__name__}")

    missing = [k for k in ("access_token", "refresh_token", "expires_in") if payload.get(k) is None]
    if missing:
        raise TokenRefreshError(f"Token response missing field(s): {', '.join(missing)}")

    try:
        expires_in = float(payload["expires_in"])
    except (TypeError, ValueError):
        raise TokenRefreshError(f"Invalid expires_in in token response: {payload['expires_in']!r}")
    if expires_in < 0:
        raise TokenRefreshError(f"Negative expires_in in token response: {expires_in}")

    issued_at = issued_at or datetime.now(timezone.utc)
    return TokenState(
        token_type=payload.get("token_type") or DEFAULT_TOKEN_TYPE,
        access_token=payload["access_token"],
        refresh_token=payload["refresh_token"],
        expiry=issued_at + timedelta(seconds=expires_in),
    )


def get_token_remaining_seconds(token: TokenState, now: Optional[datetime] = None) -> float:
    """Seconds until the token expires (negative once expired)."""
    now = now or datetime.now(timezone.utc)
    return (token.expiry - now).total_seconds()


def describe_transport_error(exc: Exception) -> str:
    """Turn an httpx transport exception into a short diagnostic message."""
    text = str(exc)
    text_lower = text.lower()
    if isinstance(exc, httpx.TimeoutException):
        return "Connection timed out. Server may be slow or unreachable."
    if "name resolution" in text_lower or "getaddrinfo" in text_lower or "name or service" in text_lower:
        return "DNS resolution failed. Check the server name and your network connection."
    if "certificate" in text_lower or "ssl" in text_lower:
        return "SSL/TLS error. Check the server certificate or set ignore_tls_errors / a CA bundle."
    if "refused" in text_lower:
        return "Connection refused. Check the server address and port."
    if isinstance(exc, httpx.ConnectError):
        return f"Connection failed: {text or type(exc).__name__}"
    first_line = text.split("\n")[0] if text else type(exc).__name__
    if len(first_line) > 200:
        first_line = first_line[:200] + "..."
    return f"Network error: {first_line}"


def _error_body(response: httpx.Response) -> str:
    body = response.text
    if len(body) > MAX_ERROR_BODY:
        body = body[:MAX_ERROR_BODY] + "..."
    return body


def _decode_json(response: httpx.Response) -> dict:
    try:
        return response.json()
    except ValueError as e:
        raise TokenRefreshError(
            f"Token endpoint returned invalid JSON: {e}",
            status_code=response.status_code,
            body=_error_body(response),
        )


def _apply_refresh(session: Session, response: httpx.Response) -> TokenState:
    if not response.is_success:
        body = _error_body(response)
        raise TokenRefreshError(
            f"Token refresh failed: status={response.status_code}, body={body}",
            status_code=response.status_code,
            body=body,
        )
    token = parse_token_response(_decode_json(response))
    new_token = session.update(
        token.access_token,
        token.refresh_token,
        token.expiry,
        token_type=token.token_type,
    )
    logger.info(
        "Access token refreshed, expires %s (refresh token %s)",
        new_token.expiry.isoformat(),
        redact_token(new_token.refresh_token),
    )
    return new_token


def refresh_session(
    session: Session,
    client: httpx.Client,
    timeout: Optional[float] = None,
) -> TokenState:
    """
    Exchange the session's refresh token for a new token and update the session.

    Makes exactly one request. The caller is responsible for serializing
    concurrent refreshes (see WUGClient.refresh).

    Returns:
        The new TokenState, already stored in the session.

    Raises:
        TokenRefreshError: On a transport failure or non-2xx response. The
            session is left unchanged.
    """
    logger.debug("Refreshing access token at %s", session.token_uri)
    try:
        response = client.post(
            session.token_uri,
            content=build_refresh_body(session.token.refresh_token),
            headers=TOKEN_HEADERS,
            timeout=TOKEN_TIMEOUT if timeout is None else timeout,
        )
    except httpx.TransportError as e:
        raise TokenRefreshError(f"Token refresh failed: {describe_transport_error(e)}") from e
    return _apply_refresh(session, response)


async def async_refresh_session(
    session: Session,
    client: httpx.AsyncClient,
    timeout: Optional[float] = None,
) -> TokenState:
    """Async counterpart of refresh_session."""
    logger.debug("Refreshing access token at %s", session.token_uri)
    try:
        response = await client.post(
            session.token_uri,
            content=build_refresh_body(session.token.refresh_token),
            headers=TOKEN_HEADERS,
            timeout=TOKEN_TIMEOUT if timeout is None else timeout,
        )
    except httpx.TransportError as e:
        raise TokenRefreshError(f"Token refresh failed: {describe_transport_error(e)}") from e
    return _apply_refresh(session, response)


def _parse_login(response: httpx.Response, username: str) -> TokenState:
    if not response.is_success:
        body = _error_body(response)
        if response.status_code in (400, 401):
            message = f"Login rejected for user '{username}'"
        else:
            message = f"Login failed: status={response.status_code}"
        raise AuthenticationError(f"{message}, body={body}", status_code=response.status_code, body=body)
    try:
        return parse_token_response(response.json())
    except (ValueError, TokenRefreshError) as e:
        raise AuthenticationError(f"Login returned an unusable token response: {e}") from e


def request_password_token(
    client: httpx.Client,
    token_uri: str,
    username: str,
    password: str,
    timeout: Optional[float] = None,
) -> TokenState:
    """
    Log in with username and password (OAuth password grant).

    Raises:
        AuthenticationError: If the server rejects the credentials or is unreachable.
    """
    logger.info("Requesting access token for '%s' from %s", username, token_uri)
    try:
        response = client.post(
            token_uri,
            content=build_password_body(username, password),
            headers=TOKEN_HEADERS,
            timeout=TOKEN_TIMEOUT if timeout is None else timeout,
        )
    except httpx.TransportError as e:
        raise AuthenticationError(f"Login failed: {describe_transport_error(e)}") from e
    return _parse_login(response, username)


async def async_request_password_token(
    client: httpx.AsyncClient,
    token_uri: str,
    username: str,
    password: str,
    timeout: Optional[float] = None,
) -> TokenState:
    """Async counterpart of request_password_token."""
    logger.info("Requesting access token for '%s' from %s", username, token_uri)
    try:
        response = await client.post(
            token_uri,
            content=build_password_body(username, password),
            headers=TOKEN_HEADERS,
            timeout=TOKEN_TIMEOUT if timeout is None else timeout,
        )
    except httpx.TransportError as e:
        raise AuthenticationError(f"Login failed: {describe_transport_error(e)}") from e
    return _parse_login(response, username)
