"""
Downstream transaction processor clients for the Gatekeeper.
"""

import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from shared.logging import get_logger
from shared.errors import ProcessorFailureError


class TransactionProcessor(ABC):
    """Executes the business transaction and returns its opaque result."""

    @abstractmethod
    async def process(self, identity: str, idempotency_key: str) -> str:
        """Run the transaction; return a non-empty result payload."""

    async def close(self) -> None:
        """Release processor resources."""


class LocalTransactionProcessor(TransactionProcessor):
    """Stand-in processor that mints a transaction id and does nothing else."""

    def __init__(self, prefix: str = "TXN_"):
        self.prefix = prefix

    async def process(self, identity: str, idempotency_key: str) -> str:
        return f"{self.prefix}{time.time_ns()}"


class HttpTransactionProcessor(TransactionProcessor):
    """Client for a processor exposed over HTTP.

    POSTs ``{"user_id", "idempotency_key"}`` to ``processor_url`` and
    expects a JSON body carrying ``transaction_id``.
    """

    def __init__(
        self,
        processor_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.processor_url = processor_url
        self.timeout = timeout
        self.logger = get_logger("gatekeeper.processor_client")
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def process(self, identity: str, idempotency_key: str) -> str:
        try:
            response = await self._get_client().post(
                self.processor_url,
                json={"user_id": identity, "idempotency_key": idempotency_key},
                headers={"X-Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            self.logger.error("Processor HTTP error", error=str(e))
            raise ProcessorFailureError(
                "Transaction processor unavailable",
                details={"http_error": str(e)}
            ) from e

        if response.status_code not in (200, 201):
            self.logger.error("Processor rejected transaction", status_code=response.status_code)
            raise ProcessorFailureError(
                f"Transaction processor error: {response.status_code}",
                details={"status_code": response.status_code}
            )

        try:
            transaction_id = response.json().get("transaction_id")
        except (ValueError, AttributeError) as e:
            raise ProcessorFailureError("Transaction processor returned an invalid body") from e

        if not isinstance(transaction_id, str) or not transaction_id:
            raise ProcessorFailureError("Transaction processor returned no transaction id")
        return transaction_id

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
