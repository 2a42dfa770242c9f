"""Request spacing and a short-lived response cache for third-party APIs."""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Hashable

_MISSING = object()


class RequestQueue:
    """
    Bounded-concurrency gate with a minimum gap between requests.

    With concurrency=1 calls are fully serialised; each caller waits until
    min_interval seconds have passed since the previous holder released.
    """

    def __init__(
        self,
        concurrency: int = 1,
        min_interval: float = 0.35,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._semaphore = asyncio.Semaphore(concurrency)
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_release: float | None = None

    @asynccontextmanager
    async def slot(self):
        async with self._semaphore:
            if self._last_release is not None:
                wait = self._last_release + self._min_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            try:
                yield
            finally:
                self._last_release = self._clock()


class TTLCache:
    """Dict-like cache whose entries expire ttl seconds after being set. None is a valid value."""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        stored_at, value = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return default
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
