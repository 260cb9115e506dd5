"""
Replay guard: nonce/timestamp issuance and Strict-mode de-duplication.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from .errors import InvalidInput, ReplayProtectionViolation
from .models import DEFAULT_CLOCK_SKEW_MS, ReplayProtectionMode, parse_mode

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def generate_nonce() -> str:
    """128 random bits, URL-safe base64 without padding."""
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class Freshness:
    """Timestamp and nonce attached to one outbound request."""
    timestamp: int
    nonce: str


class ReplayGuard:
    """
    Enforces a replay protection mode for one client.

    In STRICT mode every issued nonce is first reserved as *pending*, then
    committed once the request reached the server, or released if it was
    abandoned before a response arrived. A nonce that is pending or was
    committed within the tolerance window is rejected. Reservations and
    committed entries older than the window are evicted lazily, so a
    reservation that is never settled expires like a committed one.

    LENIENT mode only populates the fields. DISABLED issues nothing.

    Args:
        mode: Replay protection mode
        tolerance_ms: Accepted clock skew and de-duplication window
        clock: Epoch-millisecond clock (injectable for tests)
    """

    def __init__(
        self,
        mode: ReplayProtectionMode | str = ReplayProtectionMode.STRICT,
        tolerance_ms: int = DEFAULT_CLOCK_SKEW_MS,
        clock: Clock | None = None,
    ):
        self.mode = parse_mode(mode)
        self.tolerance_ms = tolerance_ms
        self._clock = clock or now_ms
        self._lock = threading.Lock()
        self._pending: OrderedDict[str, int] = OrderedDict()
        self._seen: OrderedDict[str, int] = OrderedDict()

    @property
    def strict(self) -> bool:
        return self.mode is ReplayProtectionMode.STRICT

    def issue(self, request_id: str | None = None) -> Freshness | None:
        """
        Produce freshness markers for a new request.

        The nonce is the caller's request id when given, otherwise a fresh
        random value. In STRICT mode the nonce is reserved until commit()
        or release().

        Raises:
            InvalidInput: If request_id is empty
            ReplayProtectionViolation: In STRICT mode, on nonce reuse
        """
        if self.mode is ReplayProtectionMode.DISABLED:
            return None

        if request_id is not None and not request_id:
            raise InvalidInput("request_id must not be empty")

        freshness = Freshness(timestamp=self._clock(), nonce=request_id or generate_nonce())
        if self.strict:
            with self._lock:
                self._check_locked(freshness.nonce, freshness.timestamp)
                self._pending[freshness.nonce] = freshness.timestamp
        return freshness

    def check(self, nonce: str, timestamp: int) -> None:
        """
        Validate a nonce/timestamp pair without recording it.

        No-op outside STRICT mode.

        Raises:
            ReplayProtectionViolation: On clock skew or nonce reuse
        """
        if not self.strict:
            return
        with self._lock:
            self._check_locked(nonce, timestamp)

    def commit(self, freshness: Freshness | None) -> None:
        """Record a nonce as sent."""
        if freshness is None or not self.strict:
            return
        with self._lock:
            self._pending.pop(freshness.nonce, None)
            self._seen[freshness.nonce] = self._clock()
            self._seen.move_to_end(freshness.nonce)

    def release(self, freshness: Freshness | None) -> None:
        """Drop the reservation for a nonce that was never confirmed sent."""
        if freshness is None or not self.strict:
            return
        with self._lock:
            self._pending.pop(freshness.nonce, None)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()
            self._seen.clear()

    def __len__(self) -> int:
        with self._lock:
            self._evict_locked(self._clock())
            return len(self._pending) + len(self._seen)

    def __contains__(self, nonce: object) -> bool:
        with self._lock:
            self._evict_locked(self._clock())
            return nonce in self._pending or nonce in self._seen

    def _check_locked(self, nonce: str, timestamp: int) -> None:
        now = self._clock()
        self._evict_locked(now)

        if abs(now - timestamp) > self.tolerance_ms:
            logger.warning("Rejected request %s: timestamp outside clock skew tolerance", nonce)
            raise ReplayProtectionViolation(
                f"timestamp is outside the ±{self.tolerance_ms} ms tolerance",
                nonce=nonce,
                reason="clock_skew",
            )

        if nonce in self._pending or nonce in self._seen:
            logger.warning("Rejected request %s: nonce already used", nonce)
            raise ReplayProtectionViolation(
                f"nonce {nonce!r} was already used within the replay window",
                nonce=nonce,
                reason="duplicate_nonce",
            )

    def _evict_locked(self, now: int) -> None:
        cutoff = now - self.tolerance_ms
        for entries in (self._pending, self._seen):
            while entries:
                _, recorded_at = next(iter(entries.items()))
                if recorded_at >= cutoff:
                    break
                entries.popitem(last=False)
