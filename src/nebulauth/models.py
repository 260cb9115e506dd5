"""
Data models for the NebulAuth client.
"""

from __future__ import annotations

import hmac
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import InvalidInput

# Default hosted API base URL
DEFAULT_BASE_URL = "https://api.nebulauth.com/api/v1"

DEFAULT_TIMEOUT_MS = 15_000

# Accepted clock skew between request timestamp and verifier clock (±5 minutes)
DEFAULT_CLOCK_SKEW_MS = 300_000

ENV_PREFIX = "NEBULAUTH_"


class Secret:
    """
    Opaque holder for a credential.

    The raw value is only reachable through ``reveal()``; ``repr()`` and
    ``str()`` are redacted so a secret can't leak through logging or
    exception text by accident.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        if isinstance(value, Secret):
            value = value.reveal()
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return "Secret('**********')"

    def __str__(self) -> str:
        return "**********"

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return hmac.compare_digest(self._value.encode("utf-8"), other._value.encode("utf-8"))

    def __hash__(self) -> int:
        return hash(self._value)


def as_secret(value: Secret | str | None) -> Secret | None:
    """Wrap a plain string as a Secret; blank values become None."""
    if value is None:
        return None
    secret = Secret(value)
    return secret if secret else None


class ReplayProtectionMode(str, Enum):
    """
    How strictly replay is prevented.

    STRICT: nonce + timestamp attached, duplicates and clock skew rejected locally
    LENIENT: nonce + timestamp attached, enforcement left to the server
    DISABLED: no nonce or timestamp at all

    The service's own names ("strict", "nonce", "none") are accepted too.
    """

    STRICT = "strict"
    LENIENT = "lenient"
    DISABLED = "disabled"

    @classmethod
    def _missing_(cls, value: object) -> ReplayProtectionMode | None:
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        if lowered == "nonce":
            return cls.LENIENT
        if lowered == "none":
            return cls.DISABLED
        for member in cls:
            if member.value == lowered:
                return member
        return None

    @property
    def wire_value(self) -> str:
        """Name of this mode in the service's API token settings."""
        if self is ReplayProtectionMode.LENIENT:
            return "nonce"
        if self is ReplayProtectionMode.DISABLED:
            return "none"
        return "strict"


def parse_mode(value: ReplayProtectionMode | str) -> ReplayProtectionMode:
    try:
        return ReplayProtectionMode(value)
    except ValueError:
        raise InvalidInput(f"unknown replay_protection mode: {value!r}") from None


@dataclass(frozen=True)
class ClientOptions:
    """
    Configuration for NebulAuthClient. Immutable once constructed.

    Attributes:
        base_url: API base URL. Blank falls back to the hosted API.
        bearer_token: API token sent as ``Authorization: Bearer ...``
        signing_secret: HMAC key used to sign requests
        service_slug: Tenant identifier, sent as a header and used by redeem_key
        replay_protection: STRICT (default), LENIENT or DISABLED
        timeout_ms: Deadline for each outbound call, in milliseconds
        clock_skew_tolerance_ms: Freshness window for Strict-mode checks
    """

    base_url: str = DEFAULT_BASE_URL
    bearer_token: Secret | str | None = field(default=None, repr=False)
    signing_secret: Secret | str | None = field(default=None, repr=False)
    service_slug: str | None = None
    replay_protection: ReplayProtectionMode | str = ReplayProtectionMode.STRICT
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    clock_skew_tolerance_ms: int = DEFAULT_CLOCK_SKEW_MS

    def __post_init__(self) -> None:
        base_url = (self.base_url or "").strip() or DEFAULT_BASE_URL
        object.__setattr__(self, "base_url", base_url.rstrip("/"))
        object.__setattr__(self, "bearer_token", as_secret(self.bearer_token))
        object.__setattr__(self, "signing_secret", as_secret(self.signing_secret))
        object.__setattr__(self, "service_slug", self.service_slug or None)
        object.__setattr__(self, "replay_protection", parse_mode(self.replay_protection))

        if not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise InvalidInput("timeout_ms must be a positive integer")
        if not isinstance(self.clock_skew_tolerance_ms, int) or self.clock_skew_tolerance_ms <= 0:
            raise InvalidInput("clock_skew_tolerance_ms must be a positive integer")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> ClientOptions:
        """
        Build options from environment variables.

        Reads ``{prefix}BASE_URL``, ``BEARER_TOKEN``, ``SIGNING_SECRET``,
        ``SERVICE_SLUG``, ``REPLAY_PROTECTION`` and ``TIMEOUT_MS``. Unset
        variables keep their defaults.
        """
        kwargs: dict[str, Any] = {
            "base_url": os.getenv(f"{prefix}BASE_URL", DEFAULT_BASE_URL),
            "bearer_token": os.getenv(f"{prefix}BEARER_TOKEN"),
            "signing_secret": os.getenv(f"{prefix}SIGNING_SECRET"),
            "service_slug": os.getenv(f"{prefix}SERVICE_SLUG"),
        }

        mode = os.getenv(f"{prefix}REPLAY_PROTECTION")
        if mode:
            kwargs["replay_protection"] = mode

        kwargs["timeout_ms"] = env_int(f"{prefix}TIMEOUT_MS", DEFAULT_TIMEOUT_MS)
        return cls(**kwargs)


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInput(f"{name} must be an integer") from None


@dataclass
class VerifyKeyInput:
    """
    Input for verify_key.

    Attributes:
        key: License key being verified (sent as-is, never case-folded)
        request_id: Caller-supplied nonce / correlation id. Generated when omitted.
        hwid: Hardware fingerprint, sent as ``X-HWID``
        use_pop: Authenticate with a proof-of-possession token instead of the client's bearer token
        access_token: PoP access token
        pop_key: PoP signing key
    """
    key: str
    request_id: str | None = None
    hwid: str | None = None
    use_pop: bool = False
    access_token: Secret | str | None = field(default=None, repr=False)
    pop_key: Secret | str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.access_token = as_secret(self.access_token)
        self.pop_key = as_secret(self.pop_key)


@dataclass
class AuthVerifyInput:
    """Input for auth_verify (session bootstrap)."""
    key: str
    hwid: str | None = None
    request_id: str | None = None


@dataclass
class RedeemKeyInput:
    """
    Input for redeem_key.

    ``service_slug`` falls back to the client's configured slug.
    """
    key: str
    discord_id: str
    service_slug: str | None = None
    request_id: str | None = None
    use_pop: bool = False
    access_token: Secret | str | None = field(default=None, repr=False)
    pop_key: Secret | str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.access_token = as_secret(self.access_token)
        self.pop_key = as_secret(self.pop_key)


@dataclass
class ResetHwidInput:
    """Input for reset_hwid. At least one of discord_id or key is required."""
    discord_id: str | None = None
    key: str | None = None
    request_id: str | None = None
    use_pop: bool = False
    access_token: Secret | str | None = field(default=None, repr=False)
    pop_key: Secret | str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.access_token = as_secret(self.access_token)
        self.pop_key = as_secret(self.pop_key)


@dataclass
class RequestOptions:
    """
    Per-call options for NebulAuthClient.post.

    Attributes:
        use_pop: Sign with pop_key and authenticate with access_token
        access_token: PoP access token
        pop_key: PoP signing key
        request_id: Explicit nonce for this call
        extra_headers: Additional headers sent as-is
        require_signature: Fail with SigningUnavailable instead of sending unsigned
    """
    use_pop: bool = False
    access_token: Secret | str | None = field(default=None, repr=False)
    pop_key: Secret | str | None = field(default=None, repr=False)
    request_id: str | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    require_signature: bool = False

    def __post_init__(self) -> None:
        self.access_token = as_secret(self.access_token)
        self.pop_key = as_secret(self.pop_key)


@dataclass(frozen=True)
class NebulAuthResponse:
    """
    Parsed service response.

    Attributes:
        status_code: HTTP status code
        ok: True for 2xx
        data: Parsed JSON body ({} when empty)
        headers: Response headers (lowercase keys)
    """
    status_code: int
    ok: bool
    data: Any
    headers: dict[str, str] = field(default_factory=dict)


VerifyKeyResponse = NebulAuthResponse


@dataclass
class LicenseState:
    """
    License state attached to requests by the middleware.

    Attributes:
        present: Whether the request carried a license key
        response: verify_key response if the service answered
        error: Error message if verification could not complete
    """
    present: bool
    response: NebulAuthResponse | None = None
    error: str | None = None

    @property
    def valid(self) -> bool:
        if self.response is None or not self.response.ok:
            return False
        data = self.response.data
        return isinstance(data, dict) and data.get("valid") is True
