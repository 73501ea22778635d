"""
Exception hierarchy for the WhatsUp Gold API client.

Callers branch on the exception type, never on message text.
"""

from typing import Optional


class WUGError(Exception):
    """Base class for every error raised by wug_api."""
    pass


class NotConnectedError(WUGError):
    """Raised when a request is attempted without an established session."""

    def __init__(self, message: str = "Not connected to a WhatsUp Gold server. Call connect() first."):
        super().__init__(message)


class AuthenticationError(WUGError):
    """Raised when the initial password grant is rejected or unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenRefreshError(WUGError):
    """Raised when the token endpoint refuses or cannot serve a refresh."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RequestError(WUGError):
    """Base class for failures of an authenticated API request."""

    def __init__(self, message: str, uri: str, method: str):
        super().__init__(message)
        self.uri = uri
        self.method = method


class HTTPStatusError(RequestError):
    """Raised for a non-2xx response. Carries the full response body text."""

    def __init__(self, uri: str, method: str, status_code: int, reason: str, body: str):
        message = f"{method} {uri} failed: {status_code} {reason}"
        if body:
            message += f": {body}"
        super().__init__(message, uri, method)
        self.status_code = status_code
        self.reason = reason
        self.body = body


class UnauthorizedError(HTTPStatusError):
    """Raised when a request is still rejected with 401 after one refresh and retry."""
    pass


class NetworkError(RequestError):
    """Raised when no response was received (DNS, refused connection, timeout)."""
    pass
