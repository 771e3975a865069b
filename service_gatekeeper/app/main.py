"""
Transaction Gatekeeper service.
"""

import math
from typing import Optional

from fastapi import Header, Query
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import GatekeeperSettings, get_settings
from shared.errors import StoreUnavailableError
from shared.logging import set_caller_context
from .adapters.processor_client import (
    HttpTransactionProcessor,
    LocalTransactionProcessor,
    TransactionProcessor,
)
from .domain.transaction_handler import TransactionHandler, TransactionResult
from .gatekeeper.decision import Outcome
from .gatekeeper.transaction import GatekeeperTransaction, InMemoryGatekeeper, RedisScriptGatekeeper
from .store.base import StateStore
from .store.memory_store import InMemoryStateStore
from .store.redis_store import RedisStateStore

IDEMPOTENCY_HEADER = "X-Idempotency-Key"
RATE_LIMIT_HEADERS = ["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"]


def build_store(settings: GatekeeperSettings) -> StateStore:
    """Create the shared state store client named by the settings."""
    if settings.store_backend == "memory":
        return InMemoryStateStore()
    return RedisStateStore.from_settings(settings)


def build_gatekeeper(store: StateStore) -> GatekeeperTransaction:
    """Pick the gatekeeper implementation that matches the store."""
    if isinstance(store, RedisStateStore):
        return RedisScriptGatekeeper(store)
    if isinstance(store, InMemoryStateStore):
        return InMemoryGatekeeper(store)
    raise TypeError(f"No gatekeeper available for store {type(store).__name__}")


def build_processor(settings: GatekeeperSettings) -> TransactionProcessor:
    """Use the HTTP processor when a URL is configured, else the local one."""
    if settings.processor_url:
        return HttpTransactionProcessor(settings.processor_url, timeout=settings.processor_timeout)
    return LocalTransactionProcessor()


class GatekeeperService(BaseService):
    """Gatekeeper service implementation."""

    cors_allow_headers = BaseService.cors_allow_headers + [IDEMPOTENCY_HEADER]
    cors_expose_headers = BaseService.cors_expose_headers + RATE_LIMIT_HEADERS + ["X-Idempotent-Replay"]

    def __init__(
        self,
        settings: Optional[GatekeeperSettings] = None,
        *,
        store: Optional[StateStore] = None,
        gatekeeper: Optional[GatekeeperTransaction] = None,
        processor: Optional[TransactionProcessor] = None,
    ):
        settings = settings or get_settings()
        # Created once here and handed to every collaborator
        self.store = store or build_store(settings)
        self.gatekeeper = gatekeeper or build_gatekeeper(self.store)
        self.processor = processor or build_processor(settings)

        super().__init__(settings.service_name, settings)

        self.handler = TransactionHandler.from_settings(
            self.store,
            self.gatekeeper,
            self.processor,
            settings,
            metrics=self.metrics,
        )

        self._setup_gatekeeper_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gatekeeper_service = self

    async def startup(self) -> None:
        try:
            await self.store.connect()
        except StoreUnavailableError as e:
            # Requests fail with 500 and /health reports 503 until the store is back
            self.logger.error("State store unreachable at startup", error=str(e))

    async def shutdown(self) -> None:
        await self.processor.close()
        await self.store.close()

    async def _check_dependencies(self):
        await self.store.ping()
        return {"store": "ok"}

    def _setup_gatekeeper_routes(self):
        """Set up gatekeeper routes."""

        @self.app.get("/")
        async def root():
            return {"service": self.service_name, "message": "Transaction Gatekeeper"}

        @self.app.post("/v1/transaction")
        async def create_transaction(
            user_id: Optional[str] = Query(default=None),
            idempotency_key: Optional[str] = Header(default=None, alias=IDEMPOTENCY_HEADER),
        ):
            """Execute a transaction at most once per idempotency key."""
            set_caller_context(user_id=user_id, idempotency_key=idempotency_key)
            result = await self.handler.handle(user_id, idempotency_key)
            return self._build_response(result)

    def _build_response(self, result: TransactionResult) -> JSONResponse:
        """Map a handler result onto status code, body and headers."""
        if result.outcome is Outcome.ALLOW:
            response = JSONResponse(status_code=201, content={"message": "OK", "result": result.payload})
            self._set_rate_limit_headers(response, result)
        elif result.outcome is Outcome.DUPLICATE:
            response = JSONResponse(
                status_code=200,
                content={"message": result.payload, "result": result.payload},
            )
            response.headers["X-Idempotent-Replay"] = "true"
        elif result.outcome is Outcome.RATE_LIMITED:
            response = JSONResponse(status_code=429, content={"message": "Rate limit exceeded"})
            self._set_rate_limit_headers(response, result)
            if result.reset_in_ms is not None:
                response.headers["Retry-After"] = str(max(1, math.ceil(result.reset_in_ms / 1000)))
        else:
            response = JSONResponse(
                status_code=409,
                content={"message": "Request with this idempotency key is in progress"},
            )
        return response

    def _set_rate_limit_headers(self, response: JSONResponse, result: TransactionResult) -> None:
        """Propagate rate limiting metadata via standard headers."""
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        if result.remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        if result.reset_in_ms is not None:
            response.headers["X-RateLimit-Reset"] = str(math.ceil(result.reset_in_ms / 1000))


def create_app(settings: Optional[GatekeeperSettings] = None):
    """Create FastAPI application."""
    service = GatekeeperService(settings)
    return service.app


if __name__ == "__main__":
    service = GatekeeperService()
    service.run()
