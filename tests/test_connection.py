"""
Tests for wug_api.connection module.

Covers SSL context creation for ignore_tls_errors and CA bundle support.
"""

import logging
import ssl
from unittest.mock import patch

import httpx
import pytest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _import_fresh(env_overrides: dict | None = None):
    """Import connection module with a clean environment.

    CA_BUNDLE_DEFAULT is evaluated at import time, so we need to reload the
    module after patching the environment.
    """
    import importlib
    import os

    env = os.environ.copy()
    env.pop("WUG_CA_BUNDLE", None)
    if env_overrides:
        env.update(env_overrides)

    with patch.dict(os.environ, env, clear=True):
        import wug_api.connection as mod

        importlib.reload(mod)
        return mod


@pytest.fixture(autouse=True)
def _restore_module():
    yield
    _import_fresh()


# ---------------------------------------------------------------------------
# Verification policy
# ---------------------------------------------------------------------------


class TestVerification:
    def test_verification_enabled_by_default(self):
        mod = _import_fresh()
        ctx = mod.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_verify_false_disables_verification(self):
        mod = _import_fresh()
        ctx = mod.create_ssl_context(verify=False)
        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False

    def test_warning_logged_when_disabled(self, caplog):
        mod = _import_fresh()
        with caplog.at_level(logging.WARNING, logger="wug_api.connection"):
            mod.create_ssl_context(verify=False)
        assert "TLS certificate verification is DISABLED" in caplog.text

    def test_no_warning_when_verifying(self, caplog):
        mod = _import_fresh()
        with caplog.at_level(logging.WARNING, logger="wug_api.connection"):
            mod.create_ssl_context(verify=True)
        assert caplog.text == ""


# ---------------------------------------------------------------------------
# CA bundle
# ---------------------------------------------------------------------------


class TestCaBundle:
    def test_ca_bundle_env_var(self, tmp_path):
        """WUG_CA_BUNDLE env var should load the CA file."""
        ca_file = tmp_path / "ca.pem"
        ca_file.write_text(_make_self_signed_pem())

        mod = _import_fresh({"WUG_CA_BUNDLE": str(ca_file)})
        ctx = mod.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.cert_store_stats()["x509_ca"] >= 1

    def test_ca_bundle_parameter_overrides_env(self, tmp_path):
        env_file = tmp_path / "env_ca.pem"
        env_file.write_text(_make_self_signed_pem())

        mod = _import_fresh({"WUG_CA_BUNDLE": str(env_file)})
        # The parameter wins, so a missing file must fail even though the env file exists
        with pytest.raises((ssl.SSLError, FileNotFoundError, OSError)):
            mod.create_ssl_context(ca_bundle=str(tmp_path / "missing.pem"))

    def test_invalid_ca_bundle_raises(self, tmp_path):
        mod = _import_fresh()
        with pytest.raises((ssl.SSLError, FileNotFoundError, OSError)):
            mod.create_ssl_context(ca_bundle=str(tmp_path / "nonexistent.pem"))


# ---------------------------------------------------------------------------
# Headers, timeouts and clients
# ---------------------------------------------------------------------------


class TestBuildAuthHeaders:
    def test_without_token(self):
        mod = _import_fresh()
        assert mod.build_auth_headers() == {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def test_with_token(self):
        mod = _import_fresh()
        assert mod.build_auth_headers("Bearer abc")["Authorization"] == "Bearer abc"


class TestCreateHttpClient:
    def test_timeout(self):
        mod = _import_fresh()
        timeout = mod.create_timeout(20, connect=5)
        assert timeout.read == 20
        assert timeout.connect == 5

    def test_passes_tls_policy_to_ssl_context(self):
        mod = _import_fresh()
        calls = []
        original = mod.create_ssl_context

        def tracking_wrapper(**kwargs):
            calls.append(kwargs)
            return original(**kwargs)

        with patch.object(mod, "create_ssl_context", side_effect=tracking_wrapper):
            with mod.create_http_client(True, ca_bundle=None) as client:
                assert isinstance(client, httpx.Client)

        assert calls == [{"verify": False, "ca_bundle": None}]

    def test_uses_transport(self):
        mod = _import_fresh()
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))
        with mod.create_http_client(transport=transport, timeout=12) as client:
            response = client.get("https://wug.test:9644/api/v1/product/version")
            assert response.json() == {"ok": True}
            assert client.timeout.read == 12
            assert response.request.headers["User-Agent"] == "wug-api"

    def test_async_client(self):
        mod = _import_fresh()
        client = mod.create_async_http_client(False)
        assert isinstance(client, httpx.AsyncClient)


# ---------------------------------------------------------------------------
# PEM helper
# ---------------------------------------------------------------------------


def _make_self_signed_pem() -> str:
    """Generate a minimal self-signed CA certificate for testing."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.x509.oid import NameOID
    import datetime

    key = ec.generate_private_key(ec.SECP256R1())
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, "wug-test-ca"),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()
