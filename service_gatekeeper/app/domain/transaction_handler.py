"""
Request handling protocol around the gatekeeper decision.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from shared.logging import get_logger
from shared.errors import (
    GatewayException,
    InvalidRequestError,
    ProcessorFailureError,
    StoreUnavailableError,
)
from ..adapters.processor_client import TransactionProcessor
from ..gatekeeper.decision import GatekeeperDecision, Outcome, Reservation
from ..gatekeeper.keys import idempotency_key
from ..gatekeeper.transaction import GatekeeperTransaction
from ..store.base import StateStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import GatekeeperSettings
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class TransactionResult:
    """What the handler reports back for one call."""

    outcome: Outcome
    limit: int
    payload: Optional[str] = None
    count: Optional[int] = None
    reset_in_ms: Optional[int] = None

    @property
    def remaining(self) -> Optional[int]:
        if self.count is None:
            return None
        return max(0, self.limit - self.count)


class TransactionHandler:
    """Drives the gatekeeper for one inbound call and reacts to its decision.

    On ALLOW the processor runs and its result is written as the
    idempotency record. The write happens after the atomic decision, so
    two concurrent calls with the same token can both be allowed unless
    ``strict_idempotency`` is on; sequential retries are always caught.
    """

    def __init__(
        self,
        store: StateStore,
        gatekeeper: GatekeeperTransaction,
        processor: TransactionProcessor,
        *,
        rate_limit: int = 100,
        rate_window_seconds: float = 60.0,
        idempotency_ttl_seconds: float = 24 * 60 * 60,
        strict_idempotency: bool = False,
        reservation_ttl_seconds: float = 30.0,
        store_timeout: float = 5.0,
        processor_timeout: float = 10.0,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if strict_idempotency and reservation_ttl_seconds <= processor_timeout:
            # A placeholder must outlive the processor call it guards
            raise ValueError("reservation_ttl_seconds must exceed processor_timeout in strict mode")

        self.store = store
        self.gatekeeper = gatekeeper
        self.processor = processor
        self.rate_limit = rate_limit
        self.rate_window_seconds = rate_window_seconds
        self.idempotency_ttl_seconds = idempotency_ttl_seconds
        self.strict_idempotency = strict_idempotency
        self.reservation_ttl_seconds = reservation_ttl_seconds
        self.store_timeout = store_timeout
        self.processor_timeout = processor_timeout
        self.metrics = metrics
        self.logger = get_logger("gatekeeper.handler")

    @classmethod
    def from_settings(
        cls,
        store: StateStore,
        gatekeeper: GatekeeperTransaction,
        processor: TransactionProcessor,
        settings: "GatekeeperSettings",
        metrics: Optional["MetricsCollector"] = None,
    ) -> "TransactionHandler":
        return cls(
            store,
            gatekeeper,
            processor,
            rate_limit=settings.rate_limit,
            rate_window_seconds=settings.rate_window_seconds,
            idempotency_ttl_seconds=settings.idempotency_ttl_seconds,
            strict_idempotency=settings.strict_idempotency,
            reservation_ttl_seconds=settings.reservation_ttl_seconds,
            store_timeout=settings.store_timeout,
            processor_timeout=settings.processor_timeout,
            metrics=metrics,
        )

    async def handle(self, identity: Optional[str], token: Optional[str]) -> TransactionResult:
        """Admit, deduplicate, or throttle one call."""
        missing: List[str] = []
        if not identity:
            missing.append("user_id")
        if not token:
            missing.append("X-Idempotency-Key")
        if missing:
            raise InvalidRequestError("Incomplete request parameters", details={"missing": missing})

        reservation = Reservation.create(self.reservation_ttl_seconds) if self.strict_idempotency else None
        decision = await self._evaluate(identity, token, reservation)
        if self.metrics:
            self.metrics.record_decision(decision.outcome.value)

        if decision.outcome is Outcome.DUPLICATE:
            self.logger.info("Idempotency hit: returning cached result", idempotency_key=token)
            return self._result(decision, payload=decision.payload)

        if decision.outcome is Outcome.RATE_LIMITED:
            self.logger.warning(
                "Rate limit exceeded",
                user_id=identity,
                current_count=decision.count,
                limit=self.rate_limit,
            )
            return self._result(decision)

        if decision.outcome is Outcome.IN_PROGRESS:
            self.logger.info("Idempotency key in progress", idempotency_key=token)
            return self._result(decision)

        payload = await self._process(identity, token, reservation)
        await self._store_result(identity, token, payload)

        self.logger.info("Created transaction", transaction_id=payload, user_id=identity)
        return self._result(decision, payload=payload)

    def _result(self, decision: GatekeeperDecision, payload: Optional[str] = None) -> TransactionResult:
        return TransactionResult(
            outcome=decision.outcome,
            limit=self.rate_limit,
            payload=payload,
            count=decision.count,
            reset_in_ms=decision.reset_in_ms,
        )

    async def _evaluate(
        self, identity: str, token: str, reservation: Optional[Reservation]
    ) -> GatekeeperDecision:
        start = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self.gatekeeper.evaluate(
                    identity,
                    token,
                    self.rate_limit,
                    self.rate_window_seconds,
                    reservation=reservation,
                ),
                timeout=self.store_timeout,
            )
        except asyncio.TimeoutError as e:
            self.logger.error("Gatekeeper transaction timed out", timeout=self.store_timeout)
            raise StoreUnavailableError(
                "State store timed out",
                details={"operation": "evaluate", "timeout": self.store_timeout},
            ) from e
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "gatekeeper_evaluate_duration_seconds", time.perf_counter() - start
                )

    async def _process(self, identity: str, token: str, reservation: Optional[Reservation]) -> str:
        start = time.perf_counter()
        status = "error"
        try:
            payload = await asyncio.wait_for(
                self.processor.process(identity, token),
                timeout=self.processor_timeout,
            )
            if not isinstance(payload, str) or not payload:
                raise ProcessorFailureError("Transaction processor returned an empty result")
            status = "ok"
            return payload
        except ProcessorFailureError:
            await self._release(token, reservation)
            raise
        except asyncio.TimeoutError as e:
            await self._release(token, reservation)
            raise ProcessorFailureError(
                "Transaction processor timed out",
                details={"timeout": self.processor_timeout},
            ) from e
        except Exception as e:
            self.logger.error("Transaction processor raised", error=str(e), exc_info=True)
            await self._release(token, reservation)
            raise ProcessorFailureError(
                "Transaction processor failed",
                details={"error": str(e)},
            ) from e
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "processor_duration_seconds", time.perf_counter() - start, status=status
                )

    async def _release(self, token: str, reservation: Optional[Reservation]) -> None:
        """Drop our placeholder so the token can be retried."""
        if reservation is None:
            return
        try:
            await asyncio.wait_for(
                self.store.delete_if_equals(idempotency_key(token), reservation.value),
                timeout=self.store_timeout,
            )
        except (GatewayException, asyncio.TimeoutError) as e:
            # The placeholder still expires after reservation_ttl_seconds
            self.logger.error("Failed to release idempotency reservation", error=str(e))

    async def _store_result(self, identity: str, token: str, payload: str) -> None:
        try:
            await asyncio.wait_for(
                self.store.set_with_ttl(idempotency_key(token), payload, self.idempotency_ttl_seconds),
                timeout=self.store_timeout,
            )
        except (StoreUnavailableError, asyncio.TimeoutError) as e:
            # Known limitation: the processor already ran, so a client
            # retry of this token will run it again.
            self.logger.error(
                "Transaction processed but result could not be cached",
                transaction_id=payload,
                user_id=identity,
                error=str(e),
            )
            raise StoreUnavailableError(
                "Transaction result could not be recorded",
                details={"transaction_id": payload},
            ) from e
