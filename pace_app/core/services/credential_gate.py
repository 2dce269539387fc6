"""Role credential verification and per-origin attempt throttling."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import hmac
import logging
import time
from typing import Callable, Protocol

from passlib.context import CryptContext

from pace_app.constants.session_constants import RATE_LIMITED_MESSAGE
from pace_app.core.errors import RateLimited

logger = logging.getLogger(__name__)


class CredentialHasher(Protocol):
    """Pluggable one-way (or identity) transform for stored secrets."""

    hashed: bool

    def hash(self, secret: str) -> str: ...

    def verify(self, secret: str, stored: str) -> bool: ...


class PlainCredentialHasher:
    hashed = False

    def hash(self, secret: str) -> str:
        return secret

    def verify(self, secret: str, stored: str) -> bool:
        return hmac.compare_digest(secret.encode("utf-8"), stored.encode("utf-8"))


class PasslibCredentialHasher:
    hashed = True

    def __init__(self, context: CryptContext | None = None) -> None:
        self._context = context or CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

    def hash(self, secret: str) -> str:
        return self._context.hash(secret)

    def verify(self, secret: str, stored: str) -> bool:
        try:
            return self._context.verify(secret, stored)
        except (ValueError, TypeError):
            # Malformed stored hash: treat as a mismatch rather than an internal error.
            logger.warning("Stored credential could not be parsed by the hasher")
            return False


class CredentialGate:
    """Hashes secrets at creation time and verifies them later.

    Whether a stored credential is hashed is decided per session (``hashed`` flag
    recorded at creation), so a session created before hashing was toggled keeps
    comparing the way it was created.
    """

    def __init__(self, hasher: CredentialHasher) -> None:
        self._hasher = hasher
        self._plain = PlainCredentialHasher()

    @property
    def hashing_enabled(self) -> bool:
        return self._hasher.hashed

    async def protect(self, secret: str, hashed: bool = True) -> str:
        if not (hashed and self._hasher.hashed):
            return secret
        return await asyncio.to_thread(self._hasher.hash, secret)

    async def verify(self, secret: str | None, stored: str, hashed: bool) -> bool:
        if not secret:
            return False
        if not hashed:
            return self._plain.verify(secret, stored)
        return await asyncio.to_thread(self._hasher.verify, secret, stored)


@dataclass(slots=True)
class _AttemptWindow:
    count: int
    resets_at: float


class RateLimiter:
    """Counts attempts per origin inside a fixed window that starts at the first attempt."""

    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._enabled = enabled
        self._clock = clock
        self._attempts: dict[str, _AttemptWindow] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    def check(self, origin: str) -> None:
        """Record an attempt from ``origin``; raise ``RateLimited`` when over the threshold."""
        if not self._enabled:
            return
        now = self._clock()
        window = self._attempts.get(origin)
        if window is None or now >= window.resets_at:
            self._attempts[origin] = _AttemptWindow(count=1, resets_at=now + self._window_seconds)
            return
        window.count += 1
        if window.count > self._max_attempts:
            logger.warning("Rate limit reached for origin %s", origin)
            raise RateLimited(RATE_LIMITED_MESSAGE)

    def reset(self, origin: str) -> None:
        self._attempts.pop(origin, None)

    def prune(self) -> None:
        """Drop windows that have rolled over."""
        now = self._clock()
        expired = [origin for origin, window in self._attempts.items() if now >= window.resets_at]
        for origin in expired:
            del self._attempts[origin]

    def tracked_origins(self) -> int:
        return len(self._attempts)
