"""
Authenticated request executor for the WhatsUp Gold REST API.

WUGClient owns the Session and the HTTP client. Every API call goes through
execute(), which refreshes the token when it is about to expire, sends the
request, and on a 401 refreshes once and retries once.

Refresh tokens rotate, so two callers refreshing at the same time would
leave one of them holding a dead refresh token. Refreshes are serialized on
the session lock: a caller that waited while another refreshed reuses that
result instead of issuing its own.
"""

import logging
import threading
from typing import Any, Callable, Iterator, Optional

import httpx

from .config import Config
from .connection import build_auth_headers, create_http_client
from .errors import HTTPStatusError, NetworkError, NotConnectedError, UnauthorizedError
from .session import REFRESH_MINUTES, REQUEST_TIMEOUT, Session, TokenState
from .token import describe_transport_error, refresh_session, request_password_token

logger = logging.getLogger(__name__)

HTTP_METHODS = frozenset({
    "GET", "HEAD", "POST", "PUT", "DELETE", "CONNECT", "OPTIONS", "TRACE", "PATCH",
})

# Query parameter carrying the page cursor on paged WUG endpoints
PAGE_PARAM = "pageId"


def normalize_method(method: str) -> str:
    """Upper-case and validate an HTTP method name."""
    normalized = method.upper()
    if normalized not in HTTP_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method!r}")
    return normalized


def with_auth_retry(
    send: Callable[[TokenState], httpx.Response],
    refresh: Callable[[TokenState], TokenState],
    token: TokenState,
) -> httpx.Response:
    """
    Send a request, refreshing and retrying exactly once on 401.

    Args:
        send: Sends the request with the given token and returns the response.
        refresh: Given the rejected token, returns a usable one.
        token: Token for the first attempt.

    Returns:
        Response of the last attempt, which may still be a 401.
    """
    response = send(token)
    if response.status_code != 401:
        return response
    logger.info("Request rejected with 401, refreshing token and retrying once")
    return send(refresh(token))


def raise_for_status(response: httpx.Response, uri: str, method: str) -> None:
    """Raise HTTPStatusError (or UnauthorizedError for 401) unless 2xx."""
    if response.is_success:
        return
    error_cls = UnauthorizedError if response.status_code == 401 else HTTPStatusError
    raise error_cls(uri, method, response.status_code, response.reason_phrase, response.text)


def decode_response(response: httpx.Response) -> Any:
    """Decoded JSON body; None for an empty body, text if it is not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def next_page_id(response: Any) -> Optional[str]:
    """Cursor for the next page, or None on the last page."""
    if not isinstance(response, dict):
        return None
    paging = response.get("paging") or {}
    return paging.get("nextPageId") or None


def set_page_param(uri: str, page_id: str, page_param: str = PAGE_PARAM) -> str:
    return str(httpx.URL(uri).copy_set_param(page_param, page_id))


def collect_page_data(items: list, data: Any, key: Optional[str] = None) -> None:
    """Append one page's data onto items."""
    if key is not None and isinstance(data, dict):
        data = data.get(key)
    if data is None:
        return
    if isinstance(data, list):
        items.extend(data)
    else:
        items.append(data)


class WUGClient:
    """Synchronous WhatsUp Gold API client.

    Safe to share between threads: session reads are snapshot-based and
    refreshes are serialized on the session lock.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        refresh_minutes: float = REFRESH_MINUTES,
        timeout: float = REQUEST_TIMEOUT,
        ca_bundle: Optional[str] = None,
    ):
        self.session = session
        self.refresh_minutes = refresh_minutes
        self.timeout = timeout
        self.ca_bundle = ca_bundle
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_ignores_tls: Optional[bool] = None
        self._client_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, *, transport: Optional[httpx.BaseTransport] = None) -> "WUGClient":
        """Create a client and connect it with the given configuration."""
        client = cls(transport=transport)
        client.connect(config)
        return client

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def is_connected(self) -> bool:
        return self.session is not None

    def close(self) -> None:
        """Close the underlying HTTP client. The session is kept."""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                self._client_ignores_tls = None

    def _http(self, ignore_tls_errors: bool) -> httpx.Client:
        # Rebuilt when the TLS policy changes, e.g. after connecting elsewhere
        with self._client_lock:
            if self._client is None or self._client_ignores_tls != ignore_tls_errors:
                if self._client is not None:
                    self._client.close()
                self._client = create_http_client(
                    ignore_tls_errors,
                    transport=self._transport,
                    ca_bundle=self.ca_bundle,
                    timeout=self.timeout,
                )
                self._client_ignores_tls = ignore_tls_errors
            return self._client

    def _require_session(self) -> Session:
        session = self.session
        if session is None:
            raise NotConnectedError()
        return session

    def connect(self, config: Config) -> Session:
        """
        Log in with the configured credentials and start a new session.

        Raises:
            ValueError: If no server is configured.
            AuthenticationError: If the login fails.
        """
        if not config.server:
            raise ValueError("No WhatsUp Gold server configured")
        self.refresh_minutes = config.refresh_minutes
        self.timeout = config.request_timeout
        if config.ca_bundle:
            self.ca_bundle = config.ca_bundle
            self.close()
        token = request_password_token(
            self._http(config.ignore_tls_errors),
            config.token_uri,
            config.username,
            config.password,
        )
        self.session = Session(
            config.base_uri,
            config.token_uri,
            token,
            ignore_tls_errors=config.ignore_tls_errors,
        )
        logger.info("Connected to %s as '%s'", config.server_uri, config.username)
        return self.session

    def disconnect(self) -> None:
        """Drop the session; later calls raise NotConnectedError."""
        if self.session is not None:
            logger.info("Disconnected from %s", self.session.base_uri)
        self.session = None
        self.close()

    def refresh(self, observed: Optional[TokenState] = None) -> TokenState:
        """
        Refresh the session token, at most once per expired token.

        Args:
            observed: The token the caller found stale. If the session already
                holds a different token when the lock is acquired, another
                caller refreshed in the meantime and that token is returned.

        Raises:
            NotConnectedError: If there is no session.
            TokenRefreshError: If the token endpoint call fails.
        """
        session = self._require_session()
        with session.lock:
            current = session.token
            if observed is not None and current is not observed:
                logger.debug("Token already refreshed by another caller, reusing it")
                return current
            new_token = refresh_session(session, self._http(session.ignore_tls_errors))
        if new_token.is_expired(self.refresh_minutes):
            logger.warning(
                "Refreshed token expires %s, inside the %s minute refresh window; "
                "every request will refresh until refresh_minutes is lowered",
                new_token.expiry.isoformat(),
                self.refresh_minutes,
            )
        return new_token

    def execute(
        self,
        uri: str,
        method: str = "GET",
        body: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send an authenticated request and return the decoded response.

        Args:
            uri: Absolute URI, or a path starting with "/" relative to the
                 session base URI.
            method: HTTP method (GET, HEAD, POST, PUT, DELETE, CONNECT,
                    OPTIONS, TRACE, PATCH).
            body: Serialized JSON body, if any.
            timeout: Per-call timeout in seconds (default: client timeout).

        Returns:
            Decoded JSON body (None for an empty body).

        Raises:
            NotConnectedError: No session.
            ValueError: Unsupported method.
            TokenRefreshError: A needed refresh failed.
            UnauthorizedError: 401 even after one refresh and retry.
            HTTPStatusError: Any other non-2xx response.
            NetworkError: No response received.
        """
        session = self._require_session()
        method = normalize_method(method)
        uri = session.resolve(uri)

        token = session.token
        if token.is_expired(self.refresh_minutes):
            logger.info("Access token expires %s, refreshing before request", token.expiry.isoformat())
            token = self.refresh(observed=token)

        client = self._http(session.ignore_tls_errors)
        request_timeout = self.timeout if timeout is None else timeout

        def send(attempt_token: TokenState) -> httpx.Response:
            logger.debug("%s %s", method, uri)
            try:
                return client.request(
                    method,
                    uri,
                    headers=build_auth_headers(attempt_token.authorization),
                    content=body,
                    timeout=request_timeout,
                )
            except httpx.TransportError as e:
                raise NetworkError(f"{method} {uri} failed: {describe_transport_error(e)}", uri, method) from e

        response = with_auth_retry(send, self.refresh, token)
        logger.debug("%s %s -> %s", method, uri, response.status_code)
        raise_for_status(response, uri, method)
        return decode_response(response)

    def iter_pages(
        self,
        uri: str,
        *,
        page_param: str = PAGE_PARAM,
        timeout: Optional[float] = None,
    ) -> Iterator[Any]:
        """Yield the ``data`` of each page, following ``paging.nextPageId``."""
        page_uri = uri
        while True:
            response = self.execute(page_uri, "GET", timeout=timeout)
            yield response.get("data") if isinstance(response, dict) else response
            page_id = next_page_id(response)
            if not page_id:
                return
            page_uri = set_page_param(uri, page_id, page_param)

    def get_all(
        self,
        uri: str,
        *,
        key: Optional[str] = None,
        page_param: str = PAGE_PARAM,
        timeout: Optional[float] = None,
    ) -> list:
        """
        Fetch every page and accumulate the data.

        Args:
            uri: First page URI.
            key: When each page's data is an object, the field holding the
                 list to accumulate (e.g. "devices").
        """
        items: list = []
        for data in self.iter_pages(uri, page_param=page_param, timeout=timeout):
            collect_page_data(items, data, key)
        return items
