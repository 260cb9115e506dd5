"""
Dashboard management API client.

Dashboard calls are plain authenticated reads and writes: they carry a
bearer token or session cookie and are never signed or replay-protected.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from typing import Any
from urllib.parse import quote

import httpx

from .canonical import reject_line_breaks
from .client import exchange, parse_response
from .errors import InvalidInput
from .headers import HEADER_AUTHORIZATION, HEADER_CONTENT_TYPE, redact_headers
from .models import (
    DEFAULT_TIMEOUT_MS,
    ENV_PREFIX,
    NebulAuthResponse,
    Secret,
    env_int,
)

logger = logging.getLogger(__name__)

DEFAULT_DASHBOARD_BASE_URL = "https://api.nebulauth.com/dashboard"

SESSION_COOKIE_NAME = "mc_session"

ALLOWED_METHODS = frozenset({"GET", "POST", "PATCH", "DELETE"})

DashboardResponse = NebulAuthResponse


class DashboardAuth(ABC):
    """Credential attached to dashboard calls. Subclass to add a scheme."""

    @abstractmethod
    def apply(self, headers: dict[str, str]) -> None:
        """Add this credential's headers to ``headers`` in place."""


@dataclass(frozen=True)
class BearerAuth(DashboardAuth):
    """``Authorization: Bearer <token>``"""
    token: Secret | str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "token", Secret(self.token))

    def apply(self, headers: dict[str, str]) -> None:
        if not self.token:
            raise InvalidInput("dashboard bearer token must not be empty")
        headers[HEADER_AUTHORIZATION] = f"Bearer {self.token.reveal()}"


@dataclass(frozen=True)
class SessionAuth(DashboardAuth):
    """``Cookie: mc_session=<session>`` as issued by login."""
    session_cookie: Secret | str = field(repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "session_cookie", Secret(self.session_cookie))

    def apply(self, headers: dict[str, str]) -> None:
        if not self.session_cookie:
            raise InvalidInput("dashboard session cookie must not be empty")
        headers["Cookie"] = f"{SESSION_COOKIE_NAME}={self.session_cookie.reveal()}"


@dataclass(frozen=True)
class DashboardClientOptions:
    """
    Configuration for NebulAuthDashboardClient.

    Attributes:
        base_url: Dashboard API base URL
        auth: Default credential for every call (overridable per call)
        timeout_ms: Deadline for each call, in milliseconds
    """
    base_url: str = DEFAULT_DASHBOARD_BASE_URL
    auth: DashboardAuth | None = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        base_url = (self.base_url or "").strip() or DEFAULT_DASHBOARD_BASE_URL
        object.__setattr__(self, "base_url", base_url.rstrip("/"))
        if not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise InvalidInput("timeout_ms must be a positive integer")

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> DashboardClientOptions:
        """
        Build options from ``{prefix}DASHBOARD_BASE_URL``,
        ``DASHBOARD_BEARER_TOKEN`` / ``DASHBOARD_SESSION_COOKIE`` and
        ``TIMEOUT_MS``. A bearer token wins over a session cookie.
        """
        auth: DashboardAuth | None = None
        token = os.getenv(f"{prefix}DASHBOARD_BEARER_TOKEN")
        cookie = os.getenv(f"{prefix}DASHBOARD_SESSION_COOKIE")
        if token:
            auth = BearerAuth(token)
        elif cookie:
            auth = SessionAuth(cookie)

        return cls(
            base_url=os.getenv(f"{prefix}DASHBOARD_BASE_URL", DEFAULT_DASHBOARD_BASE_URL),
            auth=auth,
            timeout_ms=env_int(f"{prefix}TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        )


@dataclass
class DashboardRequestOptions:
    """
    Per-call options for dashboard requests.

    Attributes:
        auth: Overrides the client's default credential
        query: Query string parameters (pagination, filters, ...)
        extra_headers: Additional headers sent as-is
    """
    auth: DashboardAuth | None = None
    query: dict[str, str] = field(default_factory=dict)
    extra_headers: dict[str, str] = field(default_factory=dict)


class _Payload:
    def to_payload(self) -> dict[str, Any]:
        """JSON body with unset (None) fields dropped."""
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class LoginRequest(_Payload):
    email: str
    password: str = field(repr=False)


@dataclass
class CustomerUpdateRequest(_Payload):
    require_discord_redeem: bool | None = None
    require_hwid: bool | None = None
    paused: bool | None = None


@dataclass
class TeamMemberCreateRequest(_Payload):
    email: str
    password: str = field(repr=False)
    role: str


@dataclass
class TeamMemberUpdateRequest(_Payload):
    role: str | None = None
    password: str | None = field(default=None, repr=False)


@dataclass
class KeyCreateRequest(_Payload):
    label: str | None = None
    duration_hours: int | None = None
    metadata: Any = None


@dataclass
class KeyBatchCreateRequest(_Payload):
    count: int
    label_prefix: str | None = None
    duration_hours: int | None = None
    key_only: bool | None = None
    metadata: Any = None


@dataclass
class KeyUpdateRequest(_Payload):
    label: str | None = None
    duration_hours: int | None = None
    metadata: Any = None


@dataclass
class KeyRevokeRequest(_Payload):
    reason: str | None = None


@dataclass
class RevokeSessionRequest(_Payload):
    reason: str | None = None
    revoke_key: bool | None = None
    reset_hwid: bool | None = None
    blacklist_discord: bool | None = None
    terminate_all_for_key: bool | None = None
    terminate_all_for_token: bool | None = None


@dataclass
class RevokeAllSessionsRequest(_Payload):
    reason: str | None = None
    key_id: str | None = None
    token_id: str | None = None


@dataclass
class CheckpointStepInput(_Payload):
    ad_url: str


@dataclass
class CheckpointCreateRequest(_Payload):
    name: str
    duration_hours: int
    is_active: bool
    steps: list[CheckpointStepInput] = field(default_factory=list)
    referrer_domain_only: bool | None = None


@dataclass
class CheckpointUpdateRequest(_Payload):
    name: str | None = None
    duration_hours: int | None = None
    is_active: bool | None = None
    referrer_domain_only: bool | None = None
    steps: list[CheckpointStepInput] | None = None


@dataclass
class BlacklistCreateRequest(_Payload):
    type: str
    value: str
    reason: str | None = None


@dataclass
class ApiTokenCreateRequest(_Payload):
    """``replay_protection`` uses the service's names: "strict", "nonce", "none"."""
    scopes: list[str]
    replay_protection: str
    auth_mode: str
    expires_at: str | None = None


@dataclass
class ApiTokenUpdateRequest(_Payload):
    scopes: list[str] | None = None
    replay_protection: str | None = None
    auth_mode: str | None = None
    expires_at: str | None = None


def _segment(value: str, name: str = "id") -> str:
    if not value:
        raise InvalidInput(f"{name} is required")
    return quote(value, safe="")


def _with_query(options: DashboardRequestOptions | None, **params: Any) -> DashboardRequestOptions:
    options = options or DashboardRequestOptions()
    extra = {key: str(value) for key, value in params.items() if value is not None}
    if not extra:
        return options
    return replace(options, query={**options.query, **extra})


class NebulAuthDashboardClient:
    """
    Client for the NebulAuth dashboard API.

    Args:
        options: Dashboard configuration. Default: ``DashboardClientOptions()``
        transport: Optional async httpx transport

    Example:
        >>> client = NebulAuthDashboardClient(DashboardClientOptions(
        ...     auth=BearerAuth("mk_at_..."),
        ... ))
        >>> me = await client.me()
        >>> print(me.data["email"])
    """

    def __init__(
        self,
        options: DashboardClientOptions | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.options = options or DashboardClientOptions()
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.options.base_url

    # Auth

    async def login(
        self, payload: LoginRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/auth/login", payload.to_payload(), options)

    async def logout(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("POST", "/auth/logout", {}, options)

    async def me(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        """Current dashboard user."""
        return await self.request("GET", "/me", None, options)

    # Customer

    async def get_customer(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/customer", None, options)

    async def update_customer(
        self, payload: CustomerUpdateRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("PATCH", "/customer", payload.to_payload(), options)

    # Team users

    async def create_user(
        self, payload: TeamMemberCreateRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/users", payload.to_payload(), options)

    async def list_users(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/users", None, options)

    async def update_user(
        self,
        user_id: str,
        payload: TeamMemberUpdateRequest,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        return await self.request("PATCH", f"/users/{_segment(user_id)}", payload.to_payload(), options)

    async def delete_user(
        self, user_id: str, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("DELETE", f"/users/{_segment(user_id)}", None, options)

    # Keys

    async def create_key(
        self, payload: KeyCreateRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/keys", payload.to_payload(), options)

    async def bulk_create_keys(
        self,
        payload: KeyBatchCreateRequest,
        format: str = "json",
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        """Create keys in bulk. ``format="txt"`` returns a plain-text key list."""
        return await self.request(
            "POST", "/keys/batch", payload.to_payload(), _with_query(options, format=format)
        )

    async def extend_key_durations(
        self, hours: int, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/keys/extend-duration", {"hours": hours}, options)

    async def get_key(self, key_id: str, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", f"/keys/{_segment(key_id)}", None, options)

    async def list_keys(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/keys", None, options)

    async def update_key(
        self,
        key_id: str,
        payload: KeyUpdateRequest,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        return await self.request("PATCH", f"/keys/{_segment(key_id)}", payload.to_payload(), options)

    async def reset_key_hwid(
        self, key_id: str, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", f"/keys/{_segment(key_id)}/reset-hwid", {}, options)

    async def delete_key(
        self,
        key_id: str,
        payload: KeyRevokeRequest | None = None,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        body = (payload or KeyRevokeRequest()).to_payload()
        return await self.request("DELETE", f"/keys/{_segment(key_id)}", body, options)

    # Key sessions

    async def list_key_sessions(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/key-sessions", None, options)

    async def revoke_key_session(
        self,
        session_id: str,
        payload: RevokeSessionRequest | None = None,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        body = (payload or RevokeSessionRequest()).to_payload()
        return await self.request("DELETE", f"/key-sessions/{_segment(session_id)}", body, options)

    async def revoke_all_key_sessions(
        self, payload: RevokeAllSessionsRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/key-sessions/revoke-all", payload.to_payload(), options)

    # Checkpoints

    async def list_checkpoints(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/checkpoints", None, options)

    async def get_checkpoint(
        self, checkpoint_id: str, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("GET", f"/checkpoints/{_segment(checkpoint_id)}", None, options)

    async def create_checkpoint(
        self, payload: CheckpointCreateRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/checkpoints", payload.to_payload(), options)

    async def update_checkpoint(
        self,
        checkpoint_id: str,
        payload: CheckpointUpdateRequest,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        return await self.request(
            "PATCH", f"/checkpoints/{_segment(checkpoint_id)}", payload.to_payload(), options
        )

    async def delete_checkpoint(
        self, checkpoint_id: str, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("DELETE", f"/checkpoints/{_segment(checkpoint_id)}", None, options)

    # Blacklist

    async def list_blacklist(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/blacklist", None, options)

    async def create_blacklist_entry(
        self, payload: BlacklistCreateRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/blacklist", payload.to_payload(), options)

    async def delete_blacklist_entry(
        self, entry_id: str, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("DELETE", f"/blacklist/{_segment(entry_id)}", None, options)

    # API tokens

    async def create_api_token(
        self, payload: ApiTokenCreateRequest, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("POST", "/api-tokens", payload.to_payload(), options)

    async def update_api_token(
        self,
        token_id: str,
        payload: ApiTokenUpdateRequest,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        return await self.request("PATCH", f"/api-tokens/{_segment(token_id)}", payload.to_payload(), options)

    async def list_api_tokens(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/api-tokens", None, options)

    async def delete_api_token(
        self, token_id: str, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("DELETE", f"/api-tokens/{_segment(token_id)}", None, options)

    # Analytics

    async def analytics_summary(
        self, days: int | None = None, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("GET", "/analytics/summary", None, _with_query(options, days=days))

    async def analytics_geo(
        self, days: int | None = None, options: DashboardRequestOptions | None = None
    ) -> DashboardResponse:
        return await self.request("GET", "/analytics/geo", None, _with_query(options, days=days))

    async def analytics_activity(self, options: DashboardRequestOptions | None = None) -> DashboardResponse:
        return await self.request("GET", "/analytics/activity", None, options)

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        options: DashboardRequestOptions | None = None,
    ) -> DashboardResponse:
        """
        Send one authenticated dashboard call.

        Args:
            method: GET, POST, PATCH or DELETE
            path: Path relative to the dashboard base URL
            body: JSON-serializable body, or None for no body
            options: Per-call auth, query and headers

        Returns:
            DashboardResponse; non-JSON bodies are kept as text

        Raises:
            InvalidInput: On an unsupported method
            TransportError: On network errors or timeout
            ServerError: On a non-2xx response
        """
        options = options or DashboardRequestOptions()
        method_upper = method.upper()
        if method_upper not in ALLOWED_METHODS:
            raise InvalidInput(f"unsupported dashboard method: {method}")

        endpoint = path if path.startswith("/") else f"/{path}"
        url = f"{self.options.base_url}{endpoint}"

        for name, value in options.extra_headers.items():
            reject_line_breaks(name, value)
        headers: dict[str, str] = dict(options.extra_headers)
        auth = options.auth or self.options.auth
        if auth is not None:
            auth.apply(headers)

        content: bytes | None = None
        if body is not None:
            headers[HEADER_CONTENT_TYPE] = "application/json"
            content = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

        logger.debug("dashboard %s %s headers=%s", method_upper, endpoint, redact_headers(headers))
        response = await exchange(
            method_upper,
            url,
            path=endpoint,
            timeout_s=self.options.timeout_ms / 1000,
            transport=self._transport,
            params=options.query or None,
            headers=headers,
            content=content,
        )

        logger.debug("dashboard %s %s -> %s", method_upper, endpoint, response.status_code)
        return parse_response(response, require_json=False)
