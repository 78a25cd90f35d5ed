"""Single-slot authentication token cache."""

import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional

from core.utils.logging import get_logger

logger = get_logger(__name__)

# Tokens are treated as expired this many seconds early
EXPIRY_BUFFER_SECONDS = 5.0


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class TokenCache:
    """
    Holds at most one bearer token and its expiry.

    Owned by exactly one provider. Never persisted, never shared between
    providers.

    Usage:
        cache = TokenCache()
        cache.set("tok", ttl=3600)
        cache.get()   # "tok" until 3595s from now
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = ReadWriteLock()
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None

    def get(self) -> Optional[str]:
        """Return the token if present and unexpired, else None."""
        with self._lock.read():
            if self._token is None or self._expires_at is None:
                return None
            if self._clock() >= self._expires_at:
                return None
            return self._token

    def set(self, token: str, ttl: float) -> None:
        """
        Store a token valid for ``ttl`` seconds.

        The expiry buffer is only subtracted when ttl exceeds it.
        """
        effective = ttl - EXPIRY_BUFFER_SECONDS if ttl > EXPIRY_BUFFER_SECONDS else ttl
        with self._lock.write():
            self._token = token
            self._expires_at = self._clock() + effective
        logger.debug(f"Token cached, expires in {effective:.0f}s")

    def clear(self) -> None:
        with self._lock.write():
            self._token = None
            self._expires_at = None

    def is_expired(self) -> bool:
        return self.get() is None

    @property
    def expires_at(self) -> Optional[float]:
        with self._lock.read():
            return self._expires_at

    def ttl_remaining(self) -> float:
        """Seconds until expiry, 0 when empty or expired."""
        with self._lock.read():
            if self._expires_at is None:
                return 0.0
            return max(0.0, self._expires_at - self._clock())
