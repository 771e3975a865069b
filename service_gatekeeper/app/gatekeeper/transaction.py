"""
The gatekeeper transaction: duplicate detection and rate limiting decided
in one indivisible step against the shared state store.
"""

from abc import ABC, abstractmethod
from typing import Optional

from shared.logging import get_logger
from shared.errors import InvalidRequestError
from ..store.base import ttl_to_ms
from ..store.memory_store import InMemoryStateStore
from ..store.redis_store import RedisStateStore
from ..store.scripts import GATEKEEPER_LUA
from .decision import (
    GatekeeperDecision,
    PENDING_PREFIX,
    Reservation,
    decode_script_result,
    is_reservation,
)
from .keys import idempotency_key, rate_limit_key


class GatekeeperTransaction(ABC):
    """Atomic check-cache-then-rate-limit decision.

    1. If an idempotency record exists for the token, the decision is
       DUPLICATE and the rate counter is left untouched.
    2. Otherwise the identity's counter is incremented; the increment that
       creates it also sets its expiry to ``window_seconds``.
    3. A post-increment count above ``limit`` is RATE_LIMITED, anything
       else is ALLOW.

    When a ``reservation`` is given, an ALLOW decision also stores the
    reservation placeholder under the token inside the same atomic step,
    and a later reserving evaluation that finds a placeholder returns
    IN_PROGRESS. Without a reservation every stored value is a DUPLICATE.
    """

    @abstractmethod
    async def _evaluate(
        self,
        identity: str,
        idempotency_token: str,
        limit: int,
        window_seconds: float,
        reservation: Optional[Reservation],
    ) -> GatekeeperDecision:
        ...

    async def evaluate(
        self,
        identity: str,
        idempotency_token: str,
        limit: int,
        window_seconds: float,
        reservation: Optional[Reservation] = None,
    ) -> GatekeeperDecision:
        if not identity or not idempotency_token:
            raise InvalidRequestError("Identity and idempotency token are required")
        if limit <= 0:
            raise ValueError("limit must be a positive integer")
        if window_seconds <= 0:
            raise ValueError("window must be a positive duration")

        return await self._evaluate(identity, idempotency_token, limit, window_seconds, reservation)


class RedisScriptGatekeeper(GatekeeperTransaction):
    """Runs the decision as one Lua script on Redis."""

    def __init__(self, store: RedisStateStore):
        self.store = store
        self.logger = get_logger("gatekeeper.transaction.redis")

    async def _evaluate(self, identity, idempotency_token, limit, window_seconds, reservation):
        raw = await self.store.run_script(
            GATEKEEPER_LUA,
            keys=[rate_limit_key(identity), idempotency_key(idempotency_token)],
            args=[
                limit,
                ttl_to_ms(window_seconds),
                reservation.value if reservation else "",
                ttl_to_ms(reservation.ttl_seconds) if reservation else 0,
                PENDING_PREFIX if reservation else "",
            ],
        )
        decision = decode_script_result(raw)
        self.logger.debug("Gatekeeper decision", outcome=decision.outcome.value, count=decision.count)
        return decision


class InMemoryGatekeeper(GatekeeperTransaction):
    """Same contract as the Redis script, serialized by the store lock."""

    def __init__(self, store: InMemoryStateStore):
        self.store = store
        self.logger = get_logger("gatekeeper.transaction.memory")

    async def _evaluate(self, identity, idempotency_token, limit, window_seconds, reservation):
        limit_key = rate_limit_key(identity)
        idem_key = idempotency_key(idempotency_token)

        async with self.store.atomic() as store:
            cached = store.get_nowait(idem_key)
            if cached is not None:
                if reservation is not None and is_reservation(cached):
                    return GatekeeperDecision.in_progress()
                return GatekeeperDecision.duplicate(cached)

            current = store.increment_nowait(limit_key, window_seconds)
            ttl = store.pttl_nowait(limit_key)
            reset_in_ms = ttl if ttl >= 0 else None

            self.logger.debug("Rate counter incremented", count=current, limit=limit)

            if current > limit:
                return GatekeeperDecision.rate_limited(current, reset_in_ms)

            if reservation is not None:
                store.set_nowait(idem_key, reservation.value, reservation.ttl_seconds)

            return GatekeeperDecision.allow(current, reset_in_ms)
