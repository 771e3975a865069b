"""
Shared state store interface.
"""

from abc import ABC, abstractmethod
from typing import Optional


class StateStore(ABC):
    """Key-value store shared by every gateway instance.

    Implementations are the single source of truth for idempotency records
    and rate counters; callers never cache what they read.
    """

    async def connect(self) -> None:
        """Open connections eagerly. Optional."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored at ``key`` or None when absent/expired."""

    @abstractmethod
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: float) -> None:
        """Store ``value`` at ``key``, expiring after ``ttl_seconds``."""

    @abstractmethod
    async def increment_with_ttl_on_first_write(self, key: str, ttl_seconds: float) -> int:
        """Increment the counter at ``key``; set its expiry only when created."""

    @abstractmethod
    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Delete ``key`` only if it still holds ``expected``."""

    @abstractmethod
    async def ping(self) -> bool:
        """Verify the store is reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release store resources."""


def ttl_to_ms(ttl_seconds: float) -> int:
    """Convert a positive duration to whole milliseconds (at least 1)."""
    if ttl_seconds <= 0:
        raise ValueError("ttl must be positive")
    return max(1, int(round(ttl_seconds * 1000)))
