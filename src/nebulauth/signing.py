"""
HMAC-SHA256 request signatures.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field

from .errors import SigningUnavailable
from .models import Secret


@dataclass(frozen=True)
class Signature:
    """Signature over canonical request bytes. The value is kept out of repr()."""
    value: str = field(repr=False)

    def __str__(self) -> str:
        return self.value


def _key_bytes(signing_secret: Secret | str | None) -> bytes:
    if isinstance(signing_secret, Secret):
        raw = signing_secret.reveal()
    else:
        raw = signing_secret or ""
    if not raw:
        raise SigningUnavailable("a signing secret is required to sign this request")
    return raw.encode("utf-8")


def sign(canonical_bytes: bytes, signing_secret: Secret | str | None) -> Signature:
    """
    Compute the lowercase-hex HMAC-SHA256 of canonical request bytes.

    Raises:
        SigningUnavailable: If no signing secret is available
    """
    key = _key_bytes(signing_secret)
    digest = hmac.new(key, canonical_bytes, hashlib.sha256).hexdigest()
    return Signature(digest)


def verify_signature(
    canonical_bytes: bytes,
    signing_secret: Secret | str | None,
    candidate: Signature | str,
) -> bool:
    """
    Check a signature (e.g. one echoed back by the server) in constant time.
    """
    expected = sign(canonical_bytes, signing_secret).value
    value = candidate.value if isinstance(candidate, Signature) else candidate
    return hmac.compare_digest(expected.encode("ascii"), value.encode("utf-8"))
