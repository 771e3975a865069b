"""
Shared state store clients.

The gatekeeper delegates all coordination to the store: the Redis client
for deployments, the in-memory store for tests and single-process runs.
"""

from .base import StateStore
from .memory_store import InMemoryStateStore
from .redis_store import RedisStateStore

__all__ = [
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
]
