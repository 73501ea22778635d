"""
Configuration for WhatsUp Gold connections.

Settings come from a JSON file, a dict, or WUG_* environment variables.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from .session import (
    API_PREFIX,
    DEFAULT_PORT,
    DEFAULT_PROTOCOL,
    REFRESH_MINUTES,
    REQUEST_TIMEOUT,
    TOKEN_PATH,
    get_bool_env,
    get_int_env,
)

PROTOCOLS = ("http", "https")


def normalize_server(server: str) -> tuple[Optional[str], str, Optional[int]]:
    """Reduce a hostname or pasted URL to (scheme-or-None, hostname, port-or-None).

    Accepts: bare hostname, host:port, or a full URL with scheme and path.
    """
    server = server.strip().rstrip("/")
    if "//" not in server:
        server = "//" + server
    parsed = urlparse(server)
    if not parsed.hostname:
        raise ValueError(f"Invalid server: {server!r}")
    return parsed.scheme.lower() or None, parsed.hostname, parsed.port


def redact_token(value: Optional[str]) -> str:
    """Redact a token or password for safe logging."""
    if not value:
        return ""
    if len(value) <= 8:
        return "***"
    return value[:4] + "***"


@dataclass
class Config:
    """WhatsUp Gold connection configuration."""
    server: str = ""
    port: int = DEFAULT_PORT
    protocol: str = DEFAULT_PROTOCOL
    username: str = ""
    password: str = ""
    ignore_tls_errors: bool = False
    refresh_minutes: int = REFRESH_MINUTES
    request_timeout: int = REQUEST_TIMEOUT
    ca_bundle: Optional[str] = None

    def __post_init__(self):
        self.protocol = self.protocol.lower()
        if self.server:
            scheme, host, port = normalize_server(self.server)
            self.server = host
            # A pasted URL supplies whatever was left at its default
            if scheme and self.protocol == DEFAULT_PROTOCOL:
                self.protocol = scheme
            if port and self.port == DEFAULT_PORT:
                self.port = port
        if self.protocol not in PROTOCOLS:
            raise ValueError(f"Invalid protocol {self.protocol!r}, expected one of {PROTOCOLS}")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")

    @property
    def server_uri(self) -> str:
        return f"{self.protocol}://{self.server}:{self.port}"

    @property
    def base_uri(self) -> str:
        """Root of the REST API, e.g. https://wug:9644/api/v1."""
        return self.server_uri + API_PREFIX

    @property
    def token_uri(self) -> str:
        return self.server_uri + TOKEN_PATH

    def to_dict(self) -> dict:
        """Convert config to dictionary. The password is never included."""
        d = {
            "server": self.server,
            "port": self.port,
            "protocol": self.protocol,
            "username": self.username,
            "ignore_tls_errors": self.ignore_tls_errors,
            "refresh_minutes": self.refresh_minutes,
            "request_timeout": self.request_timeout,
        }
        if self.ca_bundle:
            d["ca_bundle"] = self.ca_bundle
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        return cls(
            server=data.get("server", ""),
            port=int(data.get("port", DEFAULT_PORT)),
            protocol=data.get("protocol", DEFAULT_PROTOCOL),
            username=data.get("username", ""),
            password=data.get("password", ""),
            ignore_tls_errors=bool(data.get("ignore_tls_errors", False)),
            refresh_minutes=int(data.get("refresh_minutes", REFRESH_MINUTES)),
            request_timeout=int(data.get("request_timeout", REQUEST_TIMEOUT)),
            ca_bundle=data.get("ca_bundle"),
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from WUG_* environment variables."""
        return cls(
            server=os.environ.get("WUG_SERVER", ""),
            port=get_int_env("WUG_PORT", DEFAULT_PORT),
            protocol=os.environ.get("WUG_PROTOCOL", DEFAULT_PROTOCOL),
            username=os.environ.get("WUG_USERNAME", ""),
            password=os.environ.get("WUG_PASSWORD", ""),
            ignore_tls_errors=get_bool_env("WUG_IGNORE_TLS_ERRORS", False),
            refresh_minutes=get_int_env("WUG_REFRESH_MINUTES", REFRESH_MINUTES),
            request_timeout=get_int_env("WUG_REQUEST_TIMEOUT", REQUEST_TIMEOUT),
            ca_bundle=os.environ.get("WUG_CA_BUNDLE") or None,
        )

    def save(self, path: Path) -> None:
        """Save configuration to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load configuration from file, or return defaults if not found."""
        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
                return cls.from_dict(data)
            except (json.JSONDecodeError, IOError):
                # Corrupted file
                pass
        return cls()
