"""
ASGI middleware for NebulAuth license gating (FastAPI/Starlette).
"""

from __future__ import annotations

from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..client import NebulAuthClient
from ..errors import NebulAuthError, ServerError
from ..headers import HEADER_DECISION, HEADER_HWID, HEADER_LICENSE_KEY
from ..models import LicenseState, VerifyKeyInput


class NebulAuthASGIMiddleware(BaseHTTPMiddleware):
    """
    ASGI middleware that verifies a license key on every request.

    Attaches license state to `request.state.nebulauth` with:
    - present: bool - whether the request carried a license key
    - response: NebulAuthResponse | None - verify_key response
    - error: str | None - why the key was missing or could not be verified

    Args:
        app: ASGI application
        client: Configured NebulAuthClient
        require_valid: If True, return 401 for missing or invalid keys.
            If False (default), operate in observe mode - attach state but allow all.
        license_header: Header carrying the license key
        hwid_header: Header carrying the hardware id

    Example (FastAPI):
        >>> from fastapi import FastAPI, Request
        >>> from nebulauth import ClientOptions, NebulAuthClient
        >>> from nebulauth.middleware import NebulAuthASGIMiddleware
        >>>
        >>> app = FastAPI()
        >>> app.add_middleware(
        ...     NebulAuthASGIMiddleware,
        ...     client=NebulAuthClient(ClientOptions.from_env()),
        ...     require_valid=True,
        ... )
        >>>
        >>> @app.get("/download")
        >>> async def download(request: Request):
        ...     return {"license": request.state.nebulauth.response.data}
    """

    def __init__(
        self,
        app: Any,
        client: NebulAuthClient,
        require_valid: bool = False,
        license_header: str = HEADER_LICENSE_KEY,
        hwid_header: str = HEADER_HWID,
    ):
        super().__init__(app)
        self.client = client
        self.require_valid = require_valid
        self.license_header = license_header.lower()
        self.hwid_header = hwid_header.lower()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        key = request.headers.get(self.license_header)

        if not key:
            state = LicenseState(present=False, error="Missing license key")
        else:
            state = await self._verify(key, request.headers.get(self.hwid_header))

        request.state.nebulauth = state

        if self.require_valid and not state.valid:
            return JSONResponse(
                status_code=401,
                content={"error": state.error or "Invalid license key"},
                headers={HEADER_DECISION: "deny"},
            )

        response = await call_next(request)
        response.headers[HEADER_DECISION] = "allow" if state.valid else "observe"
        return response

    async def _verify(self, key: str, hwid: str | None) -> LicenseState:
        try:
            response = await self.client.verify_key(VerifyKeyInput(key=key, hwid=hwid or None))
        except ServerError as e:
            return LicenseState(present=True, response=e.response, error=e.message)
        except NebulAuthError as e:
            return LicenseState(present=True, error=f"License verification failed: {e.message}")
        return LicenseState(present=True, response=response)
