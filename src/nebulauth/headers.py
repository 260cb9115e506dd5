"""
Wire header names and log-safe header redaction.
"""

from typing import Mapping

HEADER_AUTHORIZATION = "Authorization"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_TIMESTAMP = "X-Timestamp"
HEADER_NONCE = "X-Nonce"
HEADER_SIGNATURE = "X-Signature"
HEADER_BODY_SHA256 = "X-Body-Sha256"
HEADER_SERVICE_SLUG = "X-Service-Slug"
HEADER_HWID = "X-HWID"

# Inbound headers read and written by the license-gate middleware
HEADER_LICENSE_KEY = "X-License-Key"
HEADER_DECISION = "X-NebulAuth-Decision"

# Headers whose values must never reach logs or error text
SENSITIVE_HEADERS = frozenset({
    "authorization",
    "cookie",
    "proxy-authorization",
    "x-signature",
})

# Replay protection headers, attached unless replay protection is disabled
REPLAY_HEADERS = frozenset({
    "x-timestamp",
    "x-nonce",
})

REDACTED = "[redacted]"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Copy headers with sensitive values replaced, for logging.

    Examples:
        >>> redact_headers({"Authorization": "Bearer mk_at_x", "X-Nonce": "req-1"})
        {'Authorization': '[redacted]', 'X-Nonce': 'req-1'}
    """
    return {
        key: REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def has_replay_headers(headers: Mapping[str, str]) -> bool:
    """Check if any replay protection header is present (case-insensitive)."""
    return any(key.lower() in REPLAY_HEADERS for key in headers)
