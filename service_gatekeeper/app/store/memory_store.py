"""
In-process state store.

Only coordinates callers inside one event loop, so it is suitable for tests
and single-instance local runs, never for a multi-instance deployment.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple, Union

from shared.logging import get_logger
from .base import StateStore, ttl_to_ms

_Value = Union[str, int]


class InMemoryStateStore(StateStore):
    """Dict-backed store with per-key expiry and an atomic section.

    Expired keys are dropped when read, and writes sweep the whole map at
    most once per ``sweep_interval`` seconds so unread keys do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval
        self._data: Dict[str, Tuple[_Value, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self.logger = get_logger("gatekeeper.store.memory")

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator["InMemoryStateStore"]:
        """Hold the store lock; use the ``*_nowait`` methods inside."""
        async with self._lock:
            yield self

    def _live(self, key: str) -> Optional[Tuple[_Value, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _sweep_nowait(self) -> None:
        now = self._clock()
        if now < self._next_sweep:
            return
        expired = [
            key for key, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]
        self._next_sweep = now + self._sweep_interval
        if expired:
            self.logger.debug("Swept expired keys", count=len(expired), remaining=len(self._data))

    def get_nowait(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return None if entry is None else str(entry[0])

    def set_nowait(self, key: str, value: str, ttl_seconds: float) -> None:
        self._sweep_nowait()
        self._data[key] = (value, self._clock() + ttl_to_ms(ttl_seconds) / 1000.0)

    def increment_nowait(self, key: str, ttl_seconds: float) -> int:
        self._sweep_nowait()
        entry = self._live(key)
        if entry is None:
            self._data[key] = (1, self._clock() + ttl_to_ms(ttl_seconds) / 1000.0)
            return 1
        current = int(entry[0]) + 1
        self._data[key] = (current, entry[1])
        return current

    def pttl_nowait(self, key: str) -> int:
        """Remaining lifetime in ms; -2 when absent, -1 when no expiry."""
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return max(0, int((entry[1] - self._clock()) * 1000))

    async def get(self, key: str) -> Optional[str]:
        async with self.atomic():
            return self.get_nowait(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: float) -> None:
        async with self.atomic():
            self.set_nowait(key, value, ttl_seconds)

    async def increment_with_ttl_on_first_write(self, key: str, ttl_seconds: float) -> int:
        async with self.atomic():
            return self.increment_nowait(key, ttl_seconds)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        async with self.atomic():
            if self.get_nowait(key) == expected:
                del self._data[key]
                return True
            return False

    def __len__(self) -> int:
        return len(self._data)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()
