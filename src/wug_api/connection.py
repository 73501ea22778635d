"""
Connection utilities for WhatsUp Gold.

Contains SSL context, timeout, header and HTTP client factory functions
shared by the synchronous and asyncio clients.
"""

import logging
import os
import ssl
from typing import Optional

import httpx

from .session import REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

CA_BUNDLE_DEFAULT = os.environ.get("WUG_CA_BUNDLE", "")

USER_AGENT = "wug-api"


def create_ssl_context(
    verify: bool = True,
    ca_bundle: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context for WhatsUp Gold connections.

    Args:
        verify: Whether to verify the server certificate. WhatsUp Gold ships
                with a self-signed certificate, so sessions created with
                ignore_tls_errors pass False here.
        ca_bundle: Path to a custom CA certificate file. If None, uses
                   WUG_CA_BUNDLE environment variable. Prefer this over
                   disabling verification for self-signed servers.

    Returns:
        ssl.SSLContext configured for API connections.
    """
    ssl_ctx = ssl.create_default_context()

    if not verify:
        ssl_ctx.check_hostname = False
        ssl_ctx.verify_mode = ssl.CERT_NONE
        logger.warning(
            "TLS certificate verification is DISABLED. "
            "Connections are vulnerable to interception. "
            "Use ca_bundle or WUG_CA_BUNDLE for a safer alternative."
        )

    effective_ca_bundle = ca_bundle or CA_BUNDLE_DEFAULT
    if effective_ca_bundle:
        ssl_ctx.load_verify_locations(cafile=effective_ca_bundle)

    return ssl_ctx


def create_timeout(
    total: float = REQUEST_TIMEOUT,
    connect: Optional[float] = None,
) -> httpx.Timeout:
    """
    Create a Timeout for API requests.

    Args:
        total: Read/write/pool timeout in seconds
        connect: Connection establishment timeout (defaults to total)
    """
    return httpx.Timeout(total, connect=connect if connect is not None else total)


def build_auth_headers(authorization: Optional[str] = None) -> dict[str, str]:
    """
    Build HTTP headers for an API request.

    Args:
        authorization: Full Authorization header value ("Bearer ...")
    """
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if authorization:
        headers["Authorization"] = authorization
    return headers


def create_http_client(
    ignore_tls_errors: bool = False,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    ca_bundle: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> httpx.Client:
    """
    Create the synchronous HTTP client used for API and token calls.

    Args:
        ignore_tls_errors: Disable certificate validation.
        transport: Optional transport override (e.g. httpx.MockTransport).
        ca_bundle: Path to a custom CA certificate file.
        timeout: Default per-request timeout in seconds.
    """
    return httpx.Client(
        verify=create_ssl_context(verify=not ignore_tls_errors, ca_bundle=ca_bundle),
        timeout=create_timeout(timeout),
        transport=transport,
        headers={"User-Agent": USER_AGENT},
    )


def create_async_http_client(
    ignore_tls_errors: bool = False,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    ca_bundle: Optional[str] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> httpx.AsyncClient:
    """Asyncio counterpart of create_http_client."""
    return httpx.AsyncClient(
        verify=create_ssl_context(verify=not ignore_tls_errors, ca_bundle=ca_bundle),
        timeout=create_timeout(timeout),
        transport=transport,
        headers={"User-Agent": USER_AGENT},
    )
