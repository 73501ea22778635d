"""Shared test configuration.

FakeWUGServer plays both the token endpoint and the REST API behind an
httpx.MockTransport. Refresh tokens rotate exactly like WhatsUp Gold: a
refresh token is accepted once and is dead afterwards.
"""

import json
import threading
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from wug_api.client import WUGClient
from wug_api.session import Session, TokenState

SERVER_URI = "https://wug.test:9644"
BASE_URI = SERVER_URI + "/api/v1"
TOKEN_URI = BASE_URI + "/token"
TOKEN_PATH = "/api/v1/token"

USERNAME = "admin"
PASSWORD = "s3cret&pass"


class FakeWUGServer:
    """In-memory WhatsUp Gold server with rotating refresh tokens."""

    def __init__(self, expires_in: int = 3600, token_delay: float = 0.0):
        self.expires_in = expires_in
        self.token_delay = token_delay
        self.issued = 0
        self.valid_access = {"access-0"}
        self.valid_refresh = {"refresh-0"}
        self.token_requests: list[httpx.Request] = []
        self.api_requests: list[httpx.Request] = []
        self.routes: dict = {}
        self.reject_next = 0  # upcoming API calls answered 401 regardless of token
        self.refresh_status: int | None = None  # force the token endpoint to fail
        self._lock = threading.Lock()

    # --- token endpoint ---

    def _issue(self) -> dict:
        self.issued += 1
        access = f"access-{self.issued}"
        refresh = f"refresh-{self.issued}"
        self.valid_access.add(access)
        self.valid_refresh.add(refresh)
        return {
            "token_type": "Bearer",
            "access_token": access,
            "refresh_token": refresh,
            "expires_in": self.expires_in,
        }

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_delay:
            time.sleep(self.token_delay)
        with self._lock:
            self.token_requests.append(request)
            if self.refresh_status is not None:
                return httpx.Response(self.refresh_status, json={"error": "server_error"})
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            grant = form.get("grant_type")
            if grant == "password":
                if form.get("username") == USERNAME and form.get("password") == PASSWORD:
                    return httpx.Response(200, json=self._issue())
                return httpx.Response(401, json={"error": "invalid_grant"})
            if grant == "refresh_token":
                refresh = form.get("refresh_token")
                if refresh not in self.valid_refresh:
                    return httpx.Response(400, json={"error": "invalid_grant"})
                self.valid_refresh.discard(refresh)
                return httpx.Response(200, json=self._issue())
            return httpx.Response(400, json={"error": "unsupported_grant_type"})

    def revoke(self, access_token: str) -> None:
        self.valid_access.discard(access_token)

    # --- REST API ---

    def route(self, path: str, status: int = 200, json_body=None, text: str | None = None) -> None:
        """Answer every request to ``path`` with a fixed response."""
        def respond(request):
            if text is not None:
                return httpx.Response(status, text=text)
            return httpx.Response(status, json=json_body)
        self.routes[path] = respond

    def _api(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.api_requests.append(request)
            if self.reject_next > 0:
                self.reject_next -= 1
                return httpx.Response(401, json={"error": "unauthorized"})
            auth = request.headers.get("Authorization", "")
            token = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
            if token not in self.valid_access:
                return httpx.Response(401, json={"error": "unauthorized"})
        respond = self.routes.get(request.url.path)
        if respond is not None:
            return respond(request)
        return httpx.Response(200, json={"data": {"path": request.url.path}})

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            return self._token(request)
        return self._api(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_session(expires_in: float = 3600, ignore_tls_errors: bool = False) -> Session:
    """Session holding access-0/refresh-0 that expires ``expires_in`` seconds from now."""
    token = TokenState(
        token_type="Bearer",
        access_token="access-0",
        refresh_token="refresh-0",
        expiry=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
    return Session(BASE_URI, TOKEN_URI, token, ignore_tls_errors=ignore_tls_errors)


def request_json(request: httpx.Request):
    return json.loads(request.content) if request.content else None


@pytest.fixture
def server():
    return FakeWUGServer()


@pytest.fixture
def session():
    return make_session()


@pytest.fixture
def client(server, session):
    with WUGClient(session, transport=server.transport()) as c:
        yield c
