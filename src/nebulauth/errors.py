"""
Typed failures raised by the NebulAuth SDK.

Every error carries a machine-readable ``kind`` and a human message. Messages
never include bearer tokens, signing secrets, PoP keys or signatures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import NebulAuthResponse


class NebulAuthError(Exception):
    """Base class for all SDK failures."""

    kind = "nebulauth"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, message={self.message!r})"


class InvalidInput(NebulAuthError, ValueError):
    """A required field is missing or malformed. Raised before any network activity."""

    kind = "invalid_input"


class SigningUnavailable(NebulAuthError):
    """The call must be signed but no signing secret is configured."""

    kind = "signing_unavailable"


class ReplayProtectionViolation(NebulAuthError):
    """
    Strict-mode replay check failed.

    Attributes:
        nonce: The offending nonce (request id)
        reason: "duplicate_nonce" or "clock_skew"
    """

    kind = "replay_protection_violation"

    def __init__(self, message: str, nonce: str, reason: str):
        super().__init__(message)
        self.nonce = nonce
        self.reason = reason


class TransportError(NebulAuthError):
    """
    The request never produced a response.

    Attributes:
        reason: "timeout", "connection_failed", "tls_error" or "transport"
    """

    kind = "transport"

    def __init__(self, message: str, reason: str = "transport"):
        super().__init__(message)
        self.reason = reason


class ServerError(NebulAuthError):
    """
    The service answered with a non-2xx status.

    Attributes:
        status_code: HTTP status code
        data: Parsed error payload
        response: The full parsed response
    """

    kind = "server"

    def __init__(self, message: str, response: NebulAuthResponse):
        super().__init__(message)
        self.response = response
        self.status_code = response.status_code
        self.data: Any = response.data


class DeserializationError(NebulAuthError):
    """A successful response body did not have the expected shape."""

    kind = "deserialization"

    def __init__(self, message: str, status_code: int, body: str):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
