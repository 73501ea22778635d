"""
Asyncio variant of the WhatsUp Gold client.

Same contract as WUGClient, on httpx.AsyncClient. Concurrent tasks that find
the token stale wait on the session's asyncio.Lock; the first performs the
refresh and the rest reuse its token, even across clients sharing a session.
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx

from .client import (
    PAGE_PARAM,
    collect_page_data,
    decode_response,
    next_page_id,
    normalize_method,
    raise_for_status,
    set_page_param,
)
from .config import Config
from .connection import build_auth_headers, create_async_http_client
from .errors import NetworkError, NotConnectedError
from .session import REFRESH_MINUTES, REQUEST_TIMEOUT, Session, TokenState
from .token import async_refresh_session, async_request_password_token, describe_transport_error

logger = logging.getLogger(__name__)


async def async_with_auth_retry(
    send: Callable[[TokenState], Awaitable[httpx.Response]],
    refresh: Callable[[TokenState], Awaitable[TokenState]],
    token: TokenState,
) -> httpx.Response:
    """Async counterpart of with_auth_retry: one refresh and one retry on 401."""
    response = await send(token)
    if response.status_code != 401:
        return response
    logger.info("Request rejected with 401, refreshing token and retrying once")
    return await send(await refresh(token))


class AsyncWUGClient:
    """Asyncio WhatsUp Gold API client."""

    def __init__(
        self,
        session: Optional[Session] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        refresh_minutes: float = REFRESH_MINUTES,
        timeout: float = REQUEST_TIMEOUT,
        ca_bundle: Optional[str] = None,
    ):
        self.session = session
        self.refresh_minutes = refresh_minutes
        self.timeout = timeout
        self.ca_bundle = ca_bundle
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_ignores_tls: Optional[bool] = None

    @classmethod
    async def from_config(
        cls,
        config: Config,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "AsyncWUGClient":
        client = cls(transport=transport)
        await client.connect(config)
        return client

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self.session is not None

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            self._client_ignores_tls = None
            await client.aclose()

    async def _http(self, ignore_tls_errors: bool) -> httpx.AsyncClient:
        if self._client is None or self._client_ignores_tls != ignore_tls_errors:
            await self.close()
            self._client = create_async_http_client(
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

    async def connect(self, config: Config) -> Session:
        """Log in with the configured credentials and start a new session."""
        if not config.server:
            raise ValueError("No WhatsUp Gold server configured")
        self.refresh_minutes = config.refresh_minutes
        self.timeout = config.request_timeout
        if config.ca_bundle:
            self.ca_bundle = config.ca_bundle
            await self.close()
        token = await async_request_password_token(
            await self._http(config.ignore_tls_errors),
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

    async def disconnect(self) -> None:
        if self.session is not None:
            logger.info("Disconnected from %s", self.session.base_uri)
        self.session = None
        await self.close()

    async def refresh(self, observed: Optional[TokenState] = None) -> TokenState:
        """Refresh the session token; concurrent callers share one refresh."""
        session = self._require_session()
        async with session.async_lock:
            current = session.token
            if observed is not None and current is not observed:
                logger.debug("Token already refreshed by another task, reusing it")
                return current
            new_token = await async_refresh_session(session, await self._http(session.ignore_tls_errors))
        if new_token.is_expired(self.refresh_minutes):
            logger.warning(
                "Refreshed token expires %s, inside the %s minute refresh window; "
                "every request will refresh until refresh_minutes is lowered",
                new_token.expiry.isoformat(),
                self.refresh_minutes,
            )
        return new_token

    async def execute(
        self,
        uri: str,
        method: str = "GET",
        body: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send an authenticated request; see WUGClient.execute."""
        session = self._require_session()
        method = normalize_method(method)
        uri = session.resolve(uri)

        token = session.token
        if token.is_expired(self.refresh_minutes):
            logger.info("Access token expires %s, refreshing before request", token.expiry.isoformat())
            token = await self.refresh(observed=token)

        client = await self._http(session.ignore_tls_errors)
        request_timeout = self.timeout if timeout is None else timeout

        async def send(attempt_token: TokenState) -> httpx.Response:
            logger.debug("%s %s", method, uri)
            try:
                return await client.request(
                    method,
                    uri,
                    headers=build_auth_headers(attempt_token.authorization),
                    content=body,
                    timeout=request_timeout,
                )
            except httpx.TransportError as e:
                raise NetworkError(f"{method} {uri} failed: {describe_transport_error(e)}", uri, method) from e

        response = await async_with_auth_retry(send, self.refresh, token)
        logger.debug("%s %s -> %s", method, uri, response.status_code)
        raise_for_status(response, uri, method)
        return decode_response(response)

    async def iter_pages(
        self,
        uri: str,
        *,
        page_param: str = PAGE_PARAM,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[Any]:
        """Yield the ``data`` of each page, following ``paging.nextPageId``."""
        page_uri = uri
        while True:
            response = await self.execute(page_uri, "GET", timeout=timeout)
            yield response.get("data") if isinstance(response, dict) else response
            page_id = next_page_id(response)
            if not page_id:
                return
            page_uri = set_page_param(uri, page_id, page_param)

    async def get_all(
        self,
        uri: str,
        *,
        key: Optional[str] = None,
        page_param: str = PAGE_PARAM,
        timeout: Optional[float] = None,
    ) -> list:
        items: list = []
        async for data in self.iter_pages(uri, page_param=page_param, timeout=timeout):
            collect_page_data(items, data, key)
        return items
