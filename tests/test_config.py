"""Tests for environment-based configuration."""

import pytest

from nebulauth import (
    BearerAuth,
    ClientOptions,
    DashboardClientOptions,
    InvalidInput,
    ReplayProtectionMode,
    SessionAuth,
)

ENV_VARS = [
    "NEBULAUTH_BASE_URL",
    "NEBULAUTH_BEARER_TOKEN",
    "NEBULAUTH_SIGNING_SECRET",
    "NEBULAUTH_SERVICE_SLUG",
    "NEBULAUTH_REPLAY_PROTECTION",
    "NEBULAUTH_TIMEOUT_MS",
    "NEBULAUTH_DASHBOARD_BASE_URL",
    "NEBULAUTH_DASHBOARD_BEARER_TOKEN",
    "NEBULAUTH_DASHBOARD_SESSION_COOKIE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test without NebulAuth variables."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestClientOptionsFromEnv:
    """Tests for ClientOptions.from_env."""

    def test_defaults(self):
        """Unset variables keep the documented defaults."""
        options = ClientOptions.from_env()
        assert options.base_url == "https://api.nebulauth.com/api/v1"
        assert options.bearer_token is None
        assert options.signing_secret is None
        assert options.replay_protection is ReplayProtectionMode.STRICT
        assert options.timeout_ms == 15000
        assert options.clock_skew_tolerance_ms == 300000

    def test_reads_variables(self, monkeypatch):
        """All supported variables are read."""
        monkeypatch.setenv("NEBULAUTH_BASE_URL", "http://localhost:8080/api/v1/")
        monkeypatch.setenv("NEBULAUTH_BEARER_TOKEN", "mk_at_x")
        monkeypatch.setenv("NEBULAUTH_SIGNING_SECRET", "mk_sig_y")
        monkeypatch.setenv("NEBULAUTH_SERVICE_SLUG", "acme")
        monkeypatch.setenv("NEBULAUTH_REPLAY_PROTECTION", "nonce")
        monkeypatch.setenv("NEBULAUTH_TIMEOUT_MS", "2500")

        options = ClientOptions.from_env()

        assert options.base_url == "http://localhost:8080/api/v1"
        assert options.bearer_token.reveal() == "mk_at_x"
        assert options.signing_secret.reveal() == "mk_sig_y"
        assert options.service_slug == "acme"
        assert options.replay_protection is ReplayProtectionMode.LENIENT
        assert options.timeout_ms == 2500
        assert options.timeout_s == 2.5

    def test_custom_prefix(self, monkeypatch):
        """Prefix can be changed."""
        monkeypatch.setenv("ACME_BEARER_TOKEN", "mk_at_acme")
        options = ClientOptions.from_env(prefix="ACME_")
        assert options.bearer_token.reveal() == "mk_at_acme"

    def test_blank_secret_is_unset(self, monkeypatch):
        """Blank credentials are treated as missing."""
        monkeypatch.setenv("NEBULAUTH_SIGNING_SECRET", "")
        assert ClientOptions.from_env().signing_secret is None

    def test_bad_timeout(self, monkeypatch):
        """Non-integer timeout is invalid input."""
        monkeypatch.setenv("NEBULAUTH_TIMEOUT_MS", "soon")
        with pytest.raises(InvalidInput, match="NEBULAUTH_TIMEOUT_MS"):
            ClientOptions.from_env()

    def test_bad_mode(self, monkeypatch):
        """Unknown replay mode is invalid input."""
        monkeypatch.setenv("NEBULAUTH_REPLAY_PROTECTION", "sometimes")
        with pytest.raises(InvalidInput, match="replay_protection"):
            ClientOptions.from_env()


class TestDashboardOptionsFromEnv:
    """Tests for DashboardClientOptions.from_env."""

    def test_defaults(self):
        """No credential and the hosted dashboard URL by default."""
        options = DashboardClientOptions.from_env()
        assert options.base_url == "https://api.nebulauth.com/dashboard"
        assert options.auth is None

    def test_bearer(self, monkeypatch):
        """Bearer token is picked up."""
        monkeypatch.setenv("NEBULAUTH_DASHBOARD_BEARER_TOKEN", "mk_at_dash")
        options = DashboardClientOptions.from_env()
        assert isinstance(options.auth, BearerAuth)
        assert options.auth.token.reveal() == "mk_at_dash"

    def test_session_cookie(self, monkeypatch):
        """Session cookie is used when no bearer token is set."""
        monkeypatch.setenv("NEBULAUTH_DASHBOARD_SESSION_COOKIE", "sess-1")
        options = DashboardClientOptions.from_env()
        assert isinstance(options.auth, SessionAuth)

    def test_bearer_wins(self, monkeypatch):
        """Bearer token takes precedence over a session cookie."""
        monkeypatch.setenv("NEBULAUTH_DASHBOARD_BEARER_TOKEN", "mk_at_dash")
        monkeypatch.setenv("NEBULAUTH_DASHBOARD_SESSION_COOKIE", "sess-1")
        assert isinstance(DashboardClientOptions.from_env().auth, BearerAuth)

    def test_base_url(self, monkeypatch):
        """Dashboard URL can be overridden."""
        monkeypatch.setenv("NEBULAUTH_DASHBOARD_BASE_URL", "http://localhost:8080/dashboard")
        assert DashboardClientOptions.from_env().base_url == "http://localhost:8080/dashboard"
