"""
NebulAuth API client with request signing and replay protection.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable

import anyio
import httpx

from .canonical import SignableRequest, canonical_path, reject_line_breaks
from .errors import (
    DeserializationError,
    InvalidInput,
    ServerError,
    SigningUnavailable,
    TransportError,
)
from .headers import (
    HEADER_AUTHORIZATION,
    HEADER_BODY_SHA256,
    HEADER_CONTENT_TYPE,
    HEADER_HWID,
    HEADER_NONCE,
    HEADER_SERVICE_SLUG,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    has_replay_headers,
    redact_headers,
)
from .models import (
    AuthVerifyInput,
    ClientOptions,
    NebulAuthResponse,
    RedeemKeyInput,
    ReplayProtectionMode,
    RequestOptions,
    ResetHwidInput,
    Secret,
    VerifyKeyInput,
)
from .replay import Clock, Freshness, ReplayGuard
from .signing import sign

logger = logging.getLogger(__name__)

PayloadBuilder = Callable[[str | None], dict[str, Any]]


@dataclass(frozen=True)
class PreparedRequest:
    """Fully built outbound request, ready for the transport."""
    method: str
    url: httpx.URL
    path: str
    headers: dict[str, str]
    body: bytes
    freshness: Freshness | None


def _require_text(value: str | None, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidInput(f"{name} is required")
    return value


def _is_tls_failure(exc: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def transport_error(exc: httpx.RequestError, method: str, path: str) -> TransportError:
    """Map an httpx failure to a TransportError with a stable reason."""
    if isinstance(exc, httpx.TimeoutException):
        reason = "timeout"
    elif isinstance(exc, httpx.ConnectError):
        reason = "tls_error" if _is_tls_failure(exc) else "connection_failed"
    else:
        reason = "transport"
    return TransportError(f"{method} {path} failed ({reason}): {type(exc).__name__}", reason=reason)


def _deadline_error(method: str, path: str, timeout_s: float) -> TransportError:
    return TransportError(
        f"{method} {path} failed (timeout): no complete response within {timeout_s:g}s",
        reason="timeout",
    )


async def exchange(
    method: str,
    url: httpx.URL | str,
    *,
    path: str,
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None = None,
    headers: dict[str, str] | None = None,
    content: bytes | None = None,
    params: dict[str, str] | None = None,
) -> httpx.Response:
    """
    Send one request and read the whole response before ``timeout_s`` elapses.

    httpx timeouts apply per phase and per read; the surrounding cancel
    scope turns them into one deadline for the whole exchange.

    Raises:
        TransportError: On network errors or when the deadline passes
    """
    try:
        with anyio.fail_after(timeout_s):
            async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
                return await client.request(
                    method,
                    url,
                    params=params,
                    headers=headers,
                    content=content,
                )
    except TimeoutError as exc:
        raise _deadline_error(method, path, timeout_s) from exc
    except httpx.RequestError as exc:
        raise transport_error(exc, method, path) from exc


def _exchange_worker(
    future: Future[httpx.Response],
    abandoned: threading.Event,
    method: str,
    url: httpx.URL | str,
    timeout_s: float,
    transport: httpx.BaseTransport | None,
    headers: dict[str, str] | None,
    content: bytes | None,
) -> None:
    try:
        with httpx.Client(timeout=timeout_s, transport=transport) as client:
            with client.stream(method, url, headers=headers, content=content) as response:
                raw: list[bytes] = []
                for chunk in response.iter_raw():
                    if abandoned.is_set():
                        return
                    raw.append(chunk)
                result = httpx.Response(
                    response.status_code,
                    headers=response.headers,
                    content=b"".join(raw),
                    request=response.request,
                )
    except BaseException as exc:
        # Delivered to the waiting caller through the future
        future.set_exception(exc)
        return
    future.set_result(result)


def exchange_sync(
    method: str,
    url: httpx.URL | str,
    *,
    path: str,
    timeout_s: float,
    transport: httpx.BaseTransport | None = None,
    headers: dict[str, str] | None = None,
    content: bytes | None = None,
) -> httpx.Response:
    """
    Blocking twin of exchange().

    The exchange runs on a daemon worker thread and the caller waits at most
    ``timeout_s`` for it. A worker left behind by an expired deadline stops
    at its next read.

    Raises:
        TransportError: On network errors or when the deadline passes
    """
    future: Future[httpx.Response] = Future()
    abandoned = threading.Event()
    worker = threading.Thread(
        target=_exchange_worker,
        args=(future, abandoned, method, url, timeout_s, transport, headers, content),
        name=f"nebulauth-{method.lower()}",
        daemon=True,
    )
    worker.start()
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as exc:
        raise _deadline_error(method, path, timeout_s) from exc
    except httpx.RequestError as exc:
        raise transport_error(exc, method, path) from exc
    finally:
        abandoned.set()


def _error_message(result: NebulAuthResponse) -> str:
    detail = None
    if isinstance(result.data, dict):
        detail = result.data.get("error") or result.data.get("message")
    elif isinstance(result.data, str) and result.data.strip():
        detail = result.data
    if not isinstance(detail, str) or not detail:
        detail = "request failed"
    return f"NebulAuth API returned {result.status_code}: {detail}"


def parse_response(response: httpx.Response, *, require_json: bool = True) -> NebulAuthResponse:
    """
    Parse a service response into NebulAuthResponse.

    An empty body parses as ``{}``. A non-JSON error body is kept as
    ``{"error": text}`` when ``require_json`` is set, or as the raw text
    otherwise.

    Raises:
        ServerError: For non-2xx responses
        DeserializationError: For a 2xx non-JSON body when require_json is set
    """
    text = response.text
    ok = response.is_success

    if not text.strip():
        data: Any = {}
    else:
        try:
            data = json.loads(text)
        except ValueError:
            if not require_json:
                data = text
            elif ok:
                raise DeserializationError(
                    f"Expected a JSON body from the NebulAuth API, got "
                    f"{response.headers.get('content-type', 'unknown content type')}",
                    status_code=response.status_code,
                    body=text,
                ) from None
            else:
                data = {"error": text}

    result = NebulAuthResponse(
        status_code=response.status_code,
        ok=ok,
        data=data,
        headers={key.lower(): value for key, value in response.headers.items()},
    )
    if not ok:
        raise ServerError(_error_message(result), result)
    return result


class NebulAuthClient:
    """
    Client for the NebulAuth license API.

    Builds signed, replay-protected requests and sends each one exactly
    once. Safe to share between threads and tasks; the options are frozen
    and the replay guard is internally locked.

    Args:
        options: Client configuration. Default: ``ClientOptions()``
        transport: Optional httpx transport for the sync methods
        async_transport: Optional httpx transport for the async methods
        clock: Epoch-millisecond clock for the replay guard

    Example:
        >>> client = NebulAuthClient(ClientOptions(
        ...     bearer_token="mk_at_...",
        ...     signing_secret="mk_sig_...",
        ... ))
        >>> response = await client.verify_key(VerifyKeyInput(key="mk_live_..."))
        >>> if response.data.get("valid"):
        ...     print("license ok")
    """

    def __init__(
        self,
        options: ClientOptions | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
    ):
        self.options = options or ClientOptions()
        try:
            self._base = httpx.URL(self.options.base_url + "/")
        except httpx.InvalidURL as exc:
            raise InvalidInput(f"invalid base_url: {exc}") from None
        self._base_path = self._base.path.rstrip("/")
        self._transport = transport
        self._async_transport = async_transport
        self.replay_guard = ReplayGuard(
            self.options.replay_protection,
            tolerance_ms=self.options.clock_skew_tolerance_ms,
            clock=clock,
        )

    @property
    def base_url(self) -> str:
        return self.options.base_url

    async def verify_key(self, params: VerifyKeyInput) -> NebulAuthResponse:
        """
        Verify a license key.

        Args:
            params: Key, optional request id / HWID and PoP overrides

        Returns:
            NebulAuthResponse; ``data["valid"]`` carries the verdict

        Raises:
            InvalidInput: If the key or credentials are missing
            SigningUnavailable: If signing is required but no secret is set
            ReplayProtectionViolation: If the request id was already used (Strict)
            TransportError: On network errors or timeout
            ServerError: On a non-2xx response
        """
        return await self._send(self._prepare_verify_key(params))

    def verify_key_sync(self, params: VerifyKeyInput) -> NebulAuthResponse:
        """Synchronous verify_key."""
        return self._send_sync(self._prepare_verify_key(params))

    async def auth_verify(self, params: AuthVerifyInput) -> NebulAuthResponse:
        """Bootstrap a key session (``POST /auth/verify``)."""
        return await self._send(self._prepare_auth_verify(params))

    def auth_verify_sync(self, params: AuthVerifyInput) -> NebulAuthResponse:
        """Synchronous auth_verify."""
        return self._send_sync(self._prepare_auth_verify(params))

    async def redeem_key(self, params: RedeemKeyInput) -> NebulAuthResponse:
        """Bind a key to a Discord account (``POST /keys/redeem``)."""
        return await self._send(self._prepare_redeem_key(params))

    def redeem_key_sync(self, params: RedeemKeyInput) -> NebulAuthResponse:
        """Synchronous redeem_key."""
        return self._send_sync(self._prepare_redeem_key(params))

    async def reset_hwid(self, params: ResetHwidInput) -> NebulAuthResponse:
        """Clear the hardware binding of a key (``POST /keys/reset-hwid``)."""
        return await self._send(self._prepare_reset_hwid(params))

    def reset_hwid_sync(self, params: ResetHwidInput) -> NebulAuthResponse:
        """Synchronous reset_hwid."""
        return self._send_sync(self._prepare_reset_hwid(params))

    async def post(
        self,
        endpoint: str,
        payload: dict[str, Any],
        options: RequestOptions | None = None,
    ) -> NebulAuthResponse:
        """
        Send a signed POST to any API endpoint.

        The payload is sent unchanged; ``options.request_id`` becomes the
        nonce when replay protection is on.
        """
        return await self._send(self._prepare(endpoint, lambda _: payload, options or RequestOptions()))

    def post_sync(
        self,
        endpoint: str,
        payload: dict[str, Any],
        options: RequestOptions | None = None,
    ) -> NebulAuthResponse:
        """Synchronous post."""
        return self._send_sync(self._prepare(endpoint, lambda _: payload, options or RequestOptions()))

    def _prepare_verify_key(self, params: VerifyKeyInput) -> PreparedRequest:
        key = _require_text(params.key, "key")

        def build(request_id: str | None) -> dict[str, Any]:
            payload: dict[str, Any] = {"key": key}
            if request_id is not None:
                payload["requestId"] = request_id
            return payload

        extra_headers = {HEADER_HWID: params.hwid} if params.hwid else {}
        return self._prepare(
            "/keys/verify",
            build,
            RequestOptions(
                use_pop=params.use_pop,
                access_token=params.access_token,
                pop_key=params.pop_key,
                request_id=params.request_id,
                extra_headers=extra_headers,
            ),
        )

    def _prepare_auth_verify(self, params: AuthVerifyInput) -> PreparedRequest:
        key = _require_text(params.key, "key")

        def build(request_id: str | None) -> dict[str, Any]:
            payload: dict[str, Any] = {"key": key}
            if params.hwid is not None:
                payload["hwid"] = params.hwid
            if request_id is not None:
                payload["requestId"] = request_id
            return payload

        return self._prepare("/auth/verify", build, RequestOptions(request_id=params.request_id))

    def _prepare_redeem_key(self, params: RedeemKeyInput) -> PreparedRequest:
        key = _require_text(params.key, "key")
        discord_id = _require_text(params.discord_id, "discord_id")
        slug = params.service_slug or self.options.service_slug
        if not slug:
            raise InvalidInput("service_slug is required either in client options or redeem_key input")

        def build(request_id: str | None) -> dict[str, Any]:
            payload: dict[str, Any] = {
                "key": key,
                "discordId": discord_id,
                "serviceSlug": slug,
            }
            if request_id is not None:
                payload["requestId"] = request_id
            return payload

        return self._prepare(
            "/keys/redeem",
            build,
            RequestOptions(
                use_pop=params.use_pop,
                access_token=params.access_token,
                pop_key=params.pop_key,
                request_id=params.request_id,
            ),
        )

    def _prepare_reset_hwid(self, params: ResetHwidInput) -> PreparedRequest:
        if not params.discord_id and not params.key:
            raise InvalidInput("reset_hwid requires at least discord_id or key")

        def build(request_id: str | None) -> dict[str, Any]:
            payload: dict[str, Any] = {}
            if params.discord_id:
                payload["discordId"] = params.discord_id
            if params.key:
                payload["key"] = params.key
            if request_id is not None:
                payload["requestId"] = request_id
            return payload

        return self._prepare(
            "/keys/reset-hwid",
            build,
            RequestOptions(
                use_pop=params.use_pop,
                access_token=params.access_token,
                pop_key=params.pop_key,
                request_id=params.request_id,
            ),
        )

    def _prepare(
        self,
        endpoint: str,
        build_payload: PayloadBuilder,
        options: RequestOptions,
    ) -> PreparedRequest:
        """
        Build a signed POST without sending it.

        Credentials are resolved before a nonce is issued, so a
        configuration error never consumes one. In Strict mode the returned
        request holds a nonce reservation that _send/_send_sync settle.
        """
        bearer, signing_key = self._resolve_credentials(options)
        if has_replay_headers(options.extra_headers):
            raise InvalidInput("X-Timestamp and X-Nonce are set by the client, not extra_headers")
        for name, value in options.extra_headers.items():
            reject_line_breaks(name, value)
        if self.options.service_slug:
            reject_line_breaks("service_slug", self.options.service_slug)
        url = self._endpoint_url(endpoint)
        path = canonical_path(self._base_path, url.path)
        mode = self.options.replay_protection

        freshness = self.replay_guard.issue(options.request_id)
        try:
            request_id = freshness.nonce if freshness else options.request_id
            body = json.dumps(
                build_payload(request_id),
                separators=(",", ":"),
                ensure_ascii=False,
            ).encode("utf-8")

            headers: dict[str, str] = dict(options.extra_headers)
            headers[HEADER_CONTENT_TYPE] = "application/json"
            if bearer:
                headers[HEADER_AUTHORIZATION] = f"Bearer {bearer.reveal()}"
            if freshness is not None:
                headers[HEADER_TIMESTAMP] = str(freshness.timestamp)
                headers[HEADER_NONCE] = freshness.nonce
            if self.options.service_slug:
                headers[HEADER_SERVICE_SLUG] = self.options.service_slug

            if signing_key:
                signable = SignableRequest.from_body(
                    method="POST",
                    path=path,
                    timestamp=freshness.timestamp if freshness else None,
                    nonce=freshness.nonce if freshness else None,
                    service_slug=self.options.service_slug,
                    body=body,
                )
                headers[HEADER_SIGNATURE] = sign(signable.encode(), signing_key).value
                # The service's nonce mode does not bind the body digest header
                if options.use_pop or mode is not ReplayProtectionMode.LENIENT:
                    headers[HEADER_BODY_SHA256] = signable.body_sha256
        except BaseException:
            self.replay_guard.release(freshness)
            raise

        return PreparedRequest(
            method="POST",
            url=url,
            path=path,
            headers=headers,
            body=body,
            freshness=freshness,
        )

    def _resolve_credentials(self, options: RequestOptions) -> tuple[Secret | None, Secret | None]:
        """Return (bearer token, signing key) for a call."""
        if options.use_pop:
            if not options.access_token:
                raise InvalidInput("access_token is required when use_pop=True")
            if not options.pop_key:
                raise InvalidInput("pop_key is required when use_pop=True")
            return options.access_token, options.pop_key

        mode = self.options.replay_protection
        secret = self.options.signing_secret
        if not secret:
            if mode is not ReplayProtectionMode.DISABLED:
                raise SigningUnavailable(
                    f"signing_secret is required when replay_protection is {mode.value}"
                )
            if options.require_signature:
                raise SigningUnavailable("signing_secret is required when require_signature=True")

        bearer = self.options.bearer_token
        if not bearer and not secret:
            raise InvalidInput("bearer_token or signing_secret is required")
        return bearer, secret

    def _endpoint_url(self, endpoint: str) -> httpx.URL:
        try:
            return self._base.join(endpoint.lstrip("/"))
        except httpx.InvalidURL as exc:
            raise InvalidInput(f"invalid endpoint {endpoint!r}: {exc}") from None

    async def _send(self, prepared: PreparedRequest) -> NebulAuthResponse:
        self._log_request(prepared)
        try:
            response = await exchange(
                prepared.method,
                prepared.url,
                path=prepared.path,
                timeout_s=self.options.timeout_s,
                transport=self._async_transport,
                headers=prepared.headers,
                content=prepared.body,
            )
        except BaseException:
            # Never confirmed sent (includes cancellation): free the nonce for a retry
            self.replay_guard.release(prepared.freshness)
            raise

        self.replay_guard.commit(prepared.freshness)
        logger.debug("%s %s -> %s", prepared.method, prepared.path, response.status_code)
        return parse_response(response)

    def _send_sync(self, prepared: PreparedRequest) -> NebulAuthResponse:
        self._log_request(prepared)
        try:
            response = exchange_sync(
                prepared.method,
                prepared.url,
                path=prepared.path,
                timeout_s=self.options.timeout_s,
                transport=self._transport,
                headers=prepared.headers,
                content=prepared.body,
            )
        except BaseException:
            self.replay_guard.release(prepared.freshness)
            raise

        self.replay_guard.commit(prepared.freshness)
        logger.debug("%s %s -> %s", prepared.method, prepared.path, response.status_code)
        return parse_response(response)

    def _log_request(self, prepared: PreparedRequest) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s %s replay=%s headers=%s",
                prepared.method,
                prepared.path,
                self.options.replay_protection.value,
                redact_headers(prepared.headers),
            )
