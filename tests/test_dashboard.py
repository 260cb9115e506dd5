"""Tests for NebulAuthDashboardClient."""

import json
import time

import httpx
import pytest
import respx

from nebulauth import (
    BearerAuth,
    DashboardClientOptions,
    DashboardRequestOptions,
    InvalidInput,
    NebulAuthDashboardClient,
    ServerError,
    SessionAuth,
    TransportError,
)
from nebulauth.dashboard import (
    ApiTokenCreateRequest,
    CheckpointCreateRequest,
    CheckpointStepInput,
    DashboardAuth,
    KeyBatchCreateRequest,
    KeyCreateRequest,
    LoginRequest,
    RevokeAllSessionsRequest,
    TeamMemberCreateRequest,
)

DASHBOARD_URL = "https://api.test/dashboard"


@pytest.fixture
def mock_dashboard():
    """Create a respx mock for the dashboard API."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


def make_client(auth=None) -> NebulAuthDashboardClient:
    return NebulAuthDashboardClient(
        DashboardClientOptions(base_url=DASHBOARD_URL, auth=auth or BearerAuth("mk_at_dash"))
    )


class TestAuth:
    """Tests for dashboard credentials."""

    @pytest.mark.asyncio
    async def test_bearer(self, mock_dashboard):
        """Bearer auth sets the Authorization header."""
        mock_dashboard.get(f"{DASHBOARD_URL}/me").respond(json={"email": "owner@example.com"})

        client = make_client()
        response = await client.me()

        assert response.data["email"] == "owner@example.com"
        request = mock_dashboard.calls.last.request
        assert request.headers["Authorization"] == "Bearer mk_at_dash"
        assert "Cookie" not in request.headers

    @pytest.mark.asyncio
    async def test_session_cookie(self, mock_dashboard):
        """Session auth sends the mc_session cookie."""
        mock_dashboard.get(f"{DASHBOARD_URL}/me").respond(json={})

        client = make_client(auth=SessionAuth("sess-1"))
        await client.me()

        request = mock_dashboard.calls.last.request
        assert request.headers["Cookie"] == "mc_session=sess-1"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_per_call_override(self, mock_dashboard):
        """Per-call auth replaces the client default."""
        mock_dashboard.get(f"{DASHBOARD_URL}/users").respond(json=[])

        client = make_client()
        await client.list_users(DashboardRequestOptions(auth=BearerAuth("mk_at_other")))

        assert mock_dashboard.calls.last.request.headers["Authorization"] == "Bearer mk_at_other"

    @pytest.mark.asyncio
    async def test_never_signed(self, mock_dashboard):
        """Dashboard calls carry no signing or replay headers."""
        mock_dashboard.get(f"{DASHBOARD_URL}/keys").respond(json=[])

        await make_client().list_keys()

        request = mock_dashboard.calls.last.request
        for header in ("X-Signature", "X-Nonce", "X-Timestamp", "X-Body-Sha256"):
            assert header not in request.headers

    def test_auth_repr_hides_credentials(self):
        """Credentials stay out of repr()."""
        assert "mk_at_dash" not in repr(BearerAuth("mk_at_dash"))
        assert "sess-1" not in repr(SessionAuth("sess-1"))

    def test_auth_base_is_abstract(self):
        """DashboardAuth cannot be used without an apply()."""
        with pytest.raises(TypeError):
            DashboardAuth()

    @pytest.mark.asyncio
    async def test_custom_auth_scheme(self, mock_dashboard):
        """Subclasses plug their own headers into every call."""

        class ApiKeyAuth(DashboardAuth):
            def apply(self, headers):
                headers["X-Api-Key"] = "ak-1"

        mock_dashboard.get(f"{DASHBOARD_URL}/me").respond(json={})

        await make_client(auth=ApiKeyAuth()).me()

        request = mock_dashboard.calls.last.request
        assert request.headers["X-Api-Key"] == "ak-1"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_extra_header_line_break_rejected(self, mock_dashboard):
        """Header values with CR or LF are refused before sending."""
        route = mock_dashboard.get(f"{DASHBOARD_URL}/me").respond(json={})

        with pytest.raises(InvalidInput, match="line breaks"):
            await make_client().request(
                "GET",
                "/me",
                options=DashboardRequestOptions(extra_headers={"X-Trace": "t1\r\nX-Evil: 1"}),
            )

        assert route.called is False

    @pytest.mark.asyncio
    async def test_empty_bearer_rejected(self):
        """Empty bearer token is invalid input."""
        client = make_client(auth=BearerAuth(""))
        with pytest.raises(InvalidInput, match="bearer token"):
            await client.me()


class TestRequests:
    """Tests for request building."""

    @pytest.mark.asyncio
    async def test_login_body(self, mock_dashboard):
        """login posts email and password."""
        mock_dashboard.post(f"{DASHBOARD_URL}/auth/login").respond(
            json={"ok": True},
            headers={"Set-Cookie": "mc_session=new; HttpOnly"},
        )

        client = NebulAuthDashboardClient(DashboardClientOptions(base_url=DASHBOARD_URL))
        response = await client.login(LoginRequest(email="owner@example.com", password="pw"))

        assert json.loads(mock_dashboard.calls.last.request.content) == {
            "email": "owner@example.com",
            "password": "pw",
        }
        assert "mc_session=new" in response.headers["set-cookie"]

    def test_login_repr_hides_password(self):
        """Passwords stay out of repr()."""
        assert "hunter2" not in repr(LoginRequest(email="a@b.c", password="hunter2"))
        assert "hunter2" not in repr(TeamMemberCreateRequest(email="a@b.c", password="hunter2", role="admin"))

    @pytest.mark.asyncio
    async def test_none_fields_dropped(self, mock_dashboard):
        """Unset optional fields are not sent."""
        mock_dashboard.post(f"{DASHBOARD_URL}/keys").respond(json={"id": "k1"})

        await make_client().create_key(KeyCreateRequest(label="vip"))

        assert json.loads(mock_dashboard.calls.last.request.content) == {"label": "vip"}

    @pytest.mark.asyncio
    async def test_bulk_create_text_format(self, mock_dashboard):
        """Text output is returned as a string."""
        route = mock_dashboard.post(f"{DASHBOARD_URL}/keys/batch").respond(
            text="mk_live_1\nmk_live_2\n",
            headers={"Content-Type": "text/plain"},
        )

        response = await make_client().bulk_create_keys(KeyBatchCreateRequest(count=2), format="txt")

        assert response.data == "mk_live_1\nmk_live_2\n"
        assert route.calls.last.request.url.params["format"] == "txt"

    @pytest.mark.asyncio
    async def test_query_not_shared(self, mock_dashboard):
        """Call-specific query params do not leak into the caller's options."""
        mock_dashboard.get(f"{DASHBOARD_URL}/analytics/summary").respond(json={})

        options = DashboardRequestOptions(query={"tz": "UTC"})
        await make_client().analytics_summary(days=7, options=options)

        params = mock_dashboard.calls.last.request.url.params
        assert params["days"] == "7"
        assert params["tz"] == "UTC"
        assert options.query == {"tz": "UTC"}

    @pytest.mark.asyncio
    async def test_path_segment_quoted(self, mock_dashboard):
        """Ids are URL-encoded into the path."""
        mock_dashboard.delete(url__startswith=f"{DASHBOARD_URL}/keys/").respond(json={"revoked": True})

        response = await make_client().delete_key("a/b")

        assert response.data == {"revoked": True}
        assert mock_dashboard.calls.last.request.url.raw_path == b"/dashboard/keys/a%2Fb"

    @pytest.mark.asyncio
    async def test_empty_id_rejected(self):
        """Empty ids are invalid input."""
        with pytest.raises(InvalidInput, match="id"):
            await make_client().get_key("")

    @pytest.mark.asyncio
    async def test_nested_payload(self, mock_dashboard):
        """Checkpoint steps serialize as nested objects."""
        mock_dashboard.post(f"{DASHBOARD_URL}/checkpoints").respond(json={"id": "c1"})

        await make_client().create_checkpoint(
            CheckpointCreateRequest(
                name="Gate",
                duration_hours=24,
                is_active=True,
                steps=[CheckpointStepInput(ad_url="https://ads.example.com/1")],
            )
        )

        payload = json.loads(mock_dashboard.calls.last.request.content)
        assert payload == {
            "name": "Gate",
            "duration_hours": 24,
            "is_active": True,
            "steps": [{"ad_url": "https://ads.example.com/1"}],
        }

    @pytest.mark.asyncio
    async def test_revoke_all_sessions(self, mock_dashboard):
        """revoke_all_key_sessions posts to the revoke-all endpoint."""
        mock_dashboard.post(f"{DASHBOARD_URL}/key-sessions/revoke-all").respond(json={"revoked": 3})

        response = await make_client().revoke_all_key_sessions(RevokeAllSessionsRequest(key_id="k1"))

        assert response.data["revoked"] == 3
        assert json.loads(mock_dashboard.calls.last.request.content) == {"key_id": "k1"}

    @pytest.mark.asyncio
    async def test_api_token_create(self, mock_dashboard):
        """API token settings use the service's replay names."""
        mock_dashboard.post(f"{DASHBOARD_URL}/api-tokens").respond(json={"token": "mk_at_new"})

        await make_client().create_api_token(
            ApiTokenCreateRequest(scopes=["keys:verify"], replay_protection="nonce", auth_mode="bearer")
        )

        payload = json.loads(mock_dashboard.calls.last.request.content)
        assert payload["replay_protection"] == "nonce"

    @pytest.mark.asyncio
    async def test_get_has_no_body(self, mock_dashboard):
        """Reads send no body and no content type."""
        mock_dashboard.get(f"{DASHBOARD_URL}/customer").respond(json={"paused": False})

        await make_client().get_customer()

        request = mock_dashboard.calls.last.request
        assert request.content == b""
        assert "Content-Type" not in request.headers

    @pytest.mark.asyncio
    async def test_unsupported_method(self):
        """Only GET, POST, PATCH and DELETE are allowed."""
        with pytest.raises(InvalidInput, match="unsupported"):
            await make_client().request("PUT", "/keys")


class TestResponses:
    """Tests for dashboard response handling."""

    @pytest.mark.asyncio
    async def test_server_error(self, mock_dashboard):
        """Non-2xx responses raise ServerError."""
        mock_dashboard.get(f"{DASHBOARD_URL}/me").respond(status_code=401, json={"error": "Unauthorized"})

        with pytest.raises(ServerError) as exc_info:
            await make_client().me()

        assert exc_info.value.status_code == 401
        assert "mk_at_dash" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_server_error_text(self, mock_dashboard):
        """Non-JSON error bodies are kept as text."""
        mock_dashboard.get(f"{DASHBOARD_URL}/me").respond(status_code=503, text="Service Unavailable")

        with pytest.raises(ServerError) as exc_info:
            await make_client().me()

        assert exc_info.value.data == "Service Unavailable"
        assert exc_info.value.message == "NebulAuth API returned 503: Service Unavailable"

    @pytest.mark.asyncio
    async def test_transport_error(self, mock_dashboard):
        """Connection failures raise TransportError."""
        mock_dashboard.get(f"{DASHBOARD_URL}/me").side_effect = httpx.ConnectError

        with pytest.raises(TransportError) as exc_info:
            await make_client().me()

        assert exc_info.value.reason == "connection_failed"

    @pytest.mark.asyncio
    async def test_deadline(self, drip_server):
        """A response trickling in byte by byte fails once timeout_ms has passed."""
        client = NebulAuthDashboardClient(
            DashboardClientOptions(
                base_url=f"{drip_server}/dashboard",
                auth=BearerAuth("mk_at_dash"),
                timeout_ms=500,
            )
        )

        started = time.monotonic()
        with pytest.raises(TransportError) as exc_info:
            await client.me()
        elapsed = time.monotonic() - started

        assert exc_info.value.reason == "timeout"
        assert "mk_at_dash" not in exc_info.value.message
        assert elapsed < 1.0
