"""Login throttling keyed by administrator email."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Protocol


def throttle_key(email: str) -> str:
    """Normalise an attempted email into the key its attempts are counted under."""
    return f"login:{email.strip().lower()}"


class LoginThrottle(Protocol):
    async def allow(self, email: str) -> bool: ...

    async def reset(self, email: str) -> None: ...


class InMemoryLoginThrottle:
    """Process-local sliding window of login attempts per email.

    Keys are kept in order of their latest recorded attempt, so idle keys
    are evicted from the front without scanning the whole table.
    """

    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._clock = clock
        self._attempts: dict[str, deque[float]] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    async def allow(self, email: str) -> bool:
        """Record an attempt for ``email`` unless its window is already full."""
        key = throttle_key(email)
        now = self._clock()
        self._evict_idle(now)

        attempts = self._attempts.get(key)
        if attempts is None:
            attempts = deque()
        else:
            while attempts and now - attempts[0] >= self._window:
                attempts.popleft()
            if len(attempts) >= self._max_attempts:
                return False
            del self._attempts[key]

        attempts.append(now)
        self._attempts[key] = attempts
        return True

    async def reset(self, email: str) -> None:
        self._attempts.pop(throttle_key(email), None)

    def _evict_idle(self, now: float) -> None:
        while self._attempts:
            key, attempts = next(iter(self._attempts.items()))
            if now - attempts[-1] < self._window:
                return
            del self._attempts[key]
