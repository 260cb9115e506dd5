"""
Canonical request form (protocol v1).

The signed string is the UTF-8 encoding of these lines joined with ``\\n``::

    METHOD
    PATH
    TIMESTAMP       epoch milliseconds, empty when replay fields are absent
    NONCE           empty when replay fields are absent
    BODY_SHA256     lowercase hex SHA-256 of the raw body
    SERVICE_SLUG    only present when a slug is configured

``\\n`` is reserved: no field may contain a line break, the digest has a fixed
width and the slug line changes the line count, so two different requests
can never serialize to the same bytes.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from .errors import InvalidInput

SIGNATURE_VERSION = "v1"

_DELIMITER = "\n"
_FORBIDDEN = ("\n", "\r")


def body_sha256(body: bytes | str) -> str:
    """Lowercase hex SHA-256 of a request body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def canonical_path(base_path: str, path: str) -> str:
    """
    Path as signed: the URL path with the API base path stripped.

    Examples:
        >>> canonical_path("/api/v1", "/api/v1/keys/verify")
        '/keys/verify'
        >>> canonical_path("", "keys/verify")
        '/keys/verify'
    """
    base_path = base_path.rstrip("/")
    if base_path and path.startswith(base_path):
        path = path[len(base_path):] or "/"
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def reject_line_breaks(name: str, value: str) -> None:
    if any(ch in value for ch in _FORBIDDEN):
        raise InvalidInput(f"{name} must not contain line breaks")


@dataclass(frozen=True)
class SignableRequest:
    """
    The signable view of one outbound request. Lives for a single call.

    Attributes:
        method: HTTP method, exactly as sent
        path: Canonical path (see canonical_path)
        timestamp: Epoch milliseconds, or None when replay protection is disabled
        nonce: Request id, or None when replay protection is disabled
        body_sha256: Hex digest of the body
        service_slug: Tenant slug, if configured
    """
    method: str
    path: str
    timestamp: int | None
    nonce: str | None
    body_sha256: str
    service_slug: str | None = None

    def __post_init__(self) -> None:
        if not self.method:
            raise InvalidInput("method must not be empty")
        reject_line_breaks("method", self.method)

        if not self.path or not self.path.startswith("/"):
            raise InvalidInput("path must be non-empty and start with '/'")
        reject_line_breaks("path", self.path)

        if (self.timestamp is None) != (self.nonce is None):
            raise InvalidInput("timestamp and nonce must be supplied together")
        if self.timestamp is not None and self.timestamp < 0:
            raise InvalidInput("timestamp must not be negative")
        if self.nonce is not None:
            if not self.nonce:
                raise InvalidInput("nonce must not be empty")
            reject_line_breaks("nonce", self.nonce)

        if len(self.body_sha256) != 64:
            raise InvalidInput("body_sha256 must be a hex SHA-256 digest")
        reject_line_breaks("body_sha256", self.body_sha256)

        if self.service_slug is not None:
            if not self.service_slug:
                raise InvalidInput("service_slug must not be empty")
            reject_line_breaks("service_slug", self.service_slug)

    @classmethod
    def from_body(
        cls,
        method: str,
        path: str,
        timestamp: int | None,
        nonce: str | None,
        service_slug: str | None,
        body: bytes | str,
    ) -> SignableRequest:
        return cls(
            method=method,
            path=path,
            timestamp=timestamp,
            nonce=nonce,
            body_sha256=body_sha256(body),
            service_slug=service_slug,
        )

    def encode(self) -> bytes:
        """Canonical bytes for signing."""
        lines = [
            self.method,
            self.path,
            "" if self.timestamp is None else str(self.timestamp),
            self.nonce or "",
            self.body_sha256,
        ]
        if self.service_slug is not None:
            lines.append(self.service_slug)
        return _DELIMITER.join(lines).encode("utf-8")


def canonicalize(
    method: str,
    path: str,
    timestamp: int | None,
    nonce: str | None,
    service_slug: str | None,
    body: bytes | str,
) -> bytes:
    """
    Serialize a request into its canonical bytes.

    Pure and deterministic: no field is normalized, so any change to any
    field changes the output.

    Raises:
        InvalidInput: If a field is empty where the protocol requires a value,
            or contains a line break
    """
    return SignableRequest.from_body(method, path, timestamp, nonce, service_slug, body).encode()
