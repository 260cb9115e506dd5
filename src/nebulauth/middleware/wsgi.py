"""
WSGI middleware for NebulAuth license gating (Flask).
"""

from __future__ import annotations

import json
from typing import Any, Callable, Iterable

from ..client import NebulAuthClient
from ..errors import NebulAuthError, ServerError
from ..headers import HEADER_DECISION, HEADER_HWID, HEADER_LICENSE_KEY
from ..models import LicenseState, VerifyKeyInput

ENVIRON_KEY = "nebulauth.license"


def _environ_key(header: str) -> str:
    """X-License-Key -> HTTP_X_LICENSE_KEY"""
    return "HTTP_" + header.upper().replace("-", "_")


class NebulAuthWSGIMiddleware:
    """
    WSGI middleware that verifies a license key on every request.

    Attaches license state to `environ["nebulauth.license"]` with:
    - present: bool - whether the request carried a license key
    - response: NebulAuthResponse | None - verify_key response
    - error: str | None - why the key was missing or could not be verified

    Args:
        app: WSGI application
        client: Configured NebulAuthClient
        require_valid: If True, return 401 for missing or invalid keys.
            If False (default), operate in observe mode - attach state but allow all.
        license_header: Header carrying the license key
        hwid_header: Header carrying the hardware id

    Example (Flask):
        >>> from flask import Flask, request
        >>> from nebulauth import ClientOptions, NebulAuthClient
        >>> from nebulauth.middleware.wsgi import NebulAuthWSGIMiddleware
        >>>
        >>> app = Flask(__name__)
        >>> app.wsgi_app = NebulAuthWSGIMiddleware(
        ...     app.wsgi_app,
        ...     client=NebulAuthClient(ClientOptions.from_env()),
        ... )
        >>>
        >>> @app.route("/download")
        >>> def download():
        ...     state = request.environ["nebulauth.license"]
        ...     if not state.valid:
        ...         return {"error": "License required"}, 401
        ...     return {"ok": True}
    """

    def __init__(
        self,
        app: Callable[..., Iterable[bytes]],
        client: NebulAuthClient,
        require_valid: bool = False,
        license_header: str = HEADER_LICENSE_KEY,
        hwid_header: str = HEADER_HWID,
    ):
        self.app = app
        self.client = client
        self.require_valid = require_valid
        self.license_key = _environ_key(license_header)
        self.hwid_key = _environ_key(hwid_header)

    def __call__(
        self,
        environ: dict[str, Any],
        start_response: Callable[..., Any],
    ) -> Iterable[bytes]:
        key = environ.get(self.license_key)

        if not key:
            state = LicenseState(present=False, error="Missing license key")
        else:
            state = self._verify(key, environ.get(self.hwid_key))

        environ[ENVIRON_KEY] = state

        if self.require_valid and not state.valid:
            return self._error_response(start_response, state.error or "Invalid license key")

        def custom_start_response(
            status: str,
            response_headers: list[tuple[str, str]],
            exc_info: Any = None,
        ) -> Any:
            decision = "allow" if state.valid else "observe"
            response_headers.append((HEADER_DECISION, decision))
            return start_response(status, response_headers, exc_info)

        return self.app(environ, custom_start_response)

    def _verify(self, key: str, hwid: str | None) -> LicenseState:
        try:
            response = self.client.verify_key_sync(VerifyKeyInput(key=key, hwid=hwid or None))
        except ServerError as e:
            return LicenseState(present=True, response=e.response, error=e.message)
        except NebulAuthError as e:
            return LicenseState(present=True, error=f"License verification failed: {e.message}")
        return LicenseState(present=True, response=response)

    def _error_response(
        self,
        start_response: Callable[..., Any],
        error: str,
    ) -> Iterable[bytes]:
        """Return 401 error response."""
        body = json.dumps({"error": error}).encode("utf-8")
        start_response(
            "401 Unauthorized",
            [
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(body))),
                (HEADER_DECISION, "deny"),
            ],
        )
        return [body]
