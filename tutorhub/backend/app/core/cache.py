from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ExpiringValue(Generic[T]):
    """A single cached value with an expiry, refreshed lazily.

    ``loader`` returns the fresh value together with its lifetime in seconds.
    Concurrent callers that find the value stale share one refresh: the first
    one to take the lock loads, the others wait and reuse its result.
    """

    def __init__(
        self,
        loader: Callable[[], tuple[T, float]],
        *,
        name: str = "value",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._value: T | None = None
        self._expires_at = 0.0

    def _fresh(self) -> bool:
        return self._value is not None and self._clock() < self._expires_at

    def get_or_refresh(self) -> T:
        if self._fresh():
            return self._value  # type: ignore[return-value]
        with self._lock:
            if self._fresh():
                return self._value  # type: ignore[return-value]
            logger.info("Refreshing cached %s", self._name)
            value, ttl_seconds = self._loader()
            self._value = value
            self._expires_at = self._clock() + max(ttl_seconds, 0)
            return value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._expires_at = 0.0
