"""
NebulAuth client SDK for Python

Sign license-verification requests with HMAC-SHA256, guard them against
replay, and manage licenses through the dashboard API.
"""

import logging

from .canonical import SIGNATURE_VERSION, SignableRequest, body_sha256, canonicalize
from .client import NebulAuthClient
from .dashboard import (
    BearerAuth,
    DashboardClientOptions,
    DashboardRequestOptions,
    NebulAuthDashboardClient,
    SessionAuth,
)
from .errors import (
    DeserializationError,
    InvalidInput,
    NebulAuthError,
    ReplayProtectionViolation,
    ServerError,
    SigningUnavailable,
    TransportError,
)
from .headers import redact_headers
from .models import (
    AuthVerifyInput,
    ClientOptions,
    LicenseState,
    NebulAuthResponse,
    RedeemKeyInput,
    ReplayProtectionMode,
    RequestOptions,
    ResetHwidInput,
    Secret,
    VerifyKeyInput,
    VerifyKeyResponse,
)
from .replay import ReplayGuard
from .signing import Signature, sign, verify_signature

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "SIGNATURE_VERSION",
    "SignableRequest",
    "body_sha256",
    "canonicalize",
    "Signature",
    "sign",
    "verify_signature",
    "ReplayGuard",
    "ReplayProtectionMode",
    "NebulAuthClient",
    "ClientOptions",
    "RequestOptions",
    "VerifyKeyInput",
    "AuthVerifyInput",
    "RedeemKeyInput",
    "ResetHwidInput",
    "NebulAuthResponse",
    "VerifyKeyResponse",
    "LicenseState",
    "Secret",
    "NebulAuthDashboardClient",
    "DashboardClientOptions",
    "DashboardRequestOptions",
    "BearerAuth",
    "SessionAuth",
    "NebulAuthError",
    "InvalidInput",
    "SigningUnavailable",
    "ReplayProtectionViolation",
    "TransportError",
    "ServerError",
    "DeserializationError",
    "redact_headers",
]

# Middleware imports - optional, require framework dependencies
try:
    from .middleware.asgi import NebulAuthASGIMiddleware
    __all__.append("NebulAuthASGIMiddleware")
except ImportError:
    pass

from .middleware.wsgi import NebulAuthWSGIMiddleware  # noqa: E402

__all__.append("NebulAuthWSGIMiddleware")
