"""
Unit tests for the transaction handler.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import (
    InvalidRequestError,
    ProcessorFailureError,
    ScriptError,
    StoreUnavailableError,
)
from service_gatekeeper.app.adapters.processor_client import TransactionProcessor
from service_gatekeeper.app.domain.transaction_handler import TransactionHandler
from service_gatekeeper.app.gatekeeper.decision import Outcome, PENDING_PREFIX
from fakes import FailingProcessor, RecordingProcessor


def make_handler(store, gatekeeper, processor, **overrides):
    options = dict(rate_limit=100, rate_window_seconds=60, idempotency_ttl_seconds=86400)
    options.update(overrides)
    return TransactionHandler(store, gatekeeper, processor, **options)


class SlowProcessor(TransactionProcessor):
    async def process(self, identity, idempotency_key):
        await asyncio.sleep(1)
        return "TXN_late"


class TestTransactionHandler:
    """Test cases for TransactionHandler."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identity,token", [
        (None, "abc"),
        ("", "abc"),
        ("u1", None),
        ("u1", ""),
        (None, None),
    ])
    async def test_invalid_request_touches_nothing(self, store, identity, token):
        gatekeeper = AsyncMock()
        processor = RecordingProcessor()
        handler = make_handler(store, gatekeeper, processor)

        with pytest.raises(InvalidRequestError) as exc_info:
            await handler.handle(identity, token)

        assert exc_info.value.status_code == 400
        gatekeeper.evaluate.assert_not_called()
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_allow_runs_processor_and_caches_result(self, store, gatekeeper, processor):
        handler = make_handler(store, gatekeeper, processor)

        result = await handler.handle("u1", "abc")

        assert result.outcome is Outcome.ALLOW
        assert result.payload == "TXN_1"
        assert result.remaining == 99
        assert processor.calls == [("u1", "abc")]
        assert await store.get("idem:abc") == "TXN_1"

    @pytest.mark.asyncio
    async def test_retry_returns_cached_payload(self, store, gatekeeper, processor):
        handler = make_handler(store, gatekeeper, processor)

        first = await handler.handle("u1", "abc")
        second = await handler.handle("someone-else", "abc")

        assert second.outcome is Outcome.DUPLICATE
        assert second.payload == first.payload
        assert len(processor.calls) == 1

    @pytest.mark.asyncio
    async def test_whitespace_values_are_accepted_as_given(self, store, gatekeeper, processor):
        handler = make_handler(store, gatekeeper, processor)

        result = await handler.handle(" ", " ")

        assert result.outcome is Outcome.ALLOW
        assert processor.calls == [(" ", " ")]

    @pytest.mark.asyncio
    async def test_payload_is_replayed_verbatim(self, store, gatekeeper):
        processor = RecordingProcessor(payloads=[f"{PENDING_PREFIX}abc"])
        handler = make_handler(store, gatekeeper, processor)

        first = await handler.handle("u1", "k")
        second = await handler.handle("u1", "k")

        assert first.outcome is Outcome.ALLOW
        assert second.outcome is Outcome.DUPLICATE
        assert second.payload == f"{PENDING_PREFIX}abc"
        assert len(processor.calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_has_no_side_effects(self, store, gatekeeper, processor):
        handler = make_handler(store, gatekeeper, processor, rate_limit=1)

        await handler.handle("u1", "t1")
        result = await handler.handle("u1", "t2")

        assert result.outcome is Outcome.RATE_LIMITED
        assert result.remaining == 0
        assert len(processor.calls) == 1
        assert await store.get("idem:t2") is None

    @pytest.mark.asyncio
    async def test_idempotency_record_expires(self, store, gatekeeper, processor, clock):
        handler = make_handler(store, gatekeeper, processor, idempotency_ttl_seconds=3600)

        await handler.handle("u1", "abc")
        clock.advance(3600)
        result = await handler.handle("u1", "abc")

        assert result.outcome is Outcome.ALLOW
        assert result.payload == "TXN_2"

    @pytest.mark.asyncio
    async def test_processor_failure_leaves_token_reusable(self, store, gatekeeper):
        failing = FailingProcessor()
        handler = make_handler(store, gatekeeper, failing)

        with pytest.raises(ProcessorFailureError):
            await handler.handle("u1", "abc")
        assert await store.get("idem:abc") is None

        handler.processor = RecordingProcessor()
        result = await handler.handle("u1", "abc")
        assert result.outcome is Outcome.ALLOW

    @pytest.mark.asyncio
    async def test_unexpected_processor_exception_is_wrapped(self, store, gatekeeper):
        handler = make_handler(store, gatekeeper, FailingProcessor(RuntimeError("boom")))

        with pytest.raises(ProcessorFailureError) as exc_info:
            await handler.handle("u1", "abc")
        assert exc_info.value.details["error"] == "boom"

    @pytest.mark.asyncio
    async def test_empty_processor_result_is_failure(self, store, gatekeeper):
        handler = make_handler(store, gatekeeper, RecordingProcessor(payloads=[""]))

        with pytest.raises(ProcessorFailureError):
            await handler.handle("u1", "abc")
        assert await store.get("idem:abc") is None

    @pytest.mark.asyncio
    async def test_processor_timeout(self, store, gatekeeper):
        handler = make_handler(store, gatekeeper, SlowProcessor(), processor_timeout=0.01)

        with pytest.raises(ProcessorFailureError) as exc_info:
            await handler.handle("u1", "abc")
        assert exc_info.value.details["timeout"] == 0.01

    @pytest.mark.asyncio
    async def test_store_failure_during_transaction(self, store, processor):
        gatekeeper = AsyncMock()
        gatekeeper.evaluate.side_effect = StoreUnavailableError()
        handler = make_handler(store, gatekeeper, processor)

        with pytest.raises(StoreUnavailableError):
            await handler.handle("u1", "abc")
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_store_timeout_during_transaction(self, store, processor):
        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        gatekeeper = AsyncMock()
        gatekeeper.evaluate.side_effect = hang
        handler = make_handler(store, gatekeeper, processor, store_timeout=0.01)

        with pytest.raises(StoreUnavailableError):
            await handler.handle("u1", "abc")
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_script_error_propagates(self, store, processor):
        gatekeeper = AsyncMock()
        gatekeeper.evaluate.side_effect = ScriptError()
        handler = make_handler(store, gatekeeper, processor)

        with pytest.raises(ScriptError):
            await handler.handle("u1", "abc")

    @pytest.mark.asyncio
    async def test_result_write_failure_after_processing(self, store, gatekeeper, processor):
        handler = make_handler(store, gatekeeper, processor)
        store.set_with_ttl = AsyncMock(side_effect=StoreUnavailableError())

        with pytest.raises(StoreUnavailableError) as exc_info:
            await handler.handle("u1", "abc")

        assert exc_info.value.details["transaction_id"] == "TXN_1"
        assert processor.calls == [("u1", "abc")]


class TestStrictIdempotency:
    """Test cases for the reservation variant."""

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_run_processor_once(self, store, gatekeeper):
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        class GatedProcessor(TransactionProcessor):
            async def process(self, identity, idempotency_key):
                calls.append(idempotency_key)
                started.set()
                await release.wait()
                return "TXN_once"

        handler = make_handler(store, gatekeeper, GatedProcessor(), strict_idempotency=True)

        first = asyncio.create_task(handler.handle("u1", "abc"))
        await started.wait()
        second = await handler.handle("u1", "abc")
        release.set()
        first_result = await first

        assert second.outcome is Outcome.IN_PROGRESS
        assert first_result.outcome is Outcome.ALLOW
        assert calls == ["abc"]

        third = await handler.handle("u1", "abc")
        assert third.outcome is Outcome.DUPLICATE
        assert third.payload == "TXN_once"

    @pytest.mark.asyncio
    async def test_processor_failure_releases_reservation(self, store, gatekeeper):
        handler = make_handler(store, gatekeeper, FailingProcessor(), strict_idempotency=True)

        with pytest.raises(ProcessorFailureError):
            await handler.handle("u1", "abc")
        assert await store.get("idem:abc") is None

        handler.processor = RecordingProcessor()
        result = await handler.handle("u1", "abc")
        assert result.outcome is Outcome.ALLOW

    @pytest.mark.asyncio
    async def test_failed_release_still_reports_processor_failure(self, store, gatekeeper):
        handler = make_handler(store, gatekeeper, FailingProcessor(), strict_idempotency=True)
        store.delete_if_equals = AsyncMock(side_effect=StoreUnavailableError())

        with pytest.raises(ProcessorFailureError):
            await handler.handle("u1", "abc")

    @pytest.mark.asyncio
    async def test_reservation_expires(self, store, gatekeeper, clock):
        handler = make_handler(
            store, gatekeeper, FailingProcessor(), strict_idempotency=True, reservation_ttl_seconds=30
        )
        store.delete_if_equals = AsyncMock(return_value=False)

        with pytest.raises(ProcessorFailureError):
            await handler.handle("u1", "abc")
        assert (await handler.handle("u1", "abc")).outcome is Outcome.IN_PROGRESS

        clock.advance(30)
        handler.processor = RecordingProcessor()
        assert (await handler.handle("u1", "abc")).outcome is Outcome.ALLOW

    def test_reservation_must_outlive_processor_timeout(self, store, gatekeeper, processor):
        with pytest.raises(ValueError):
            make_handler(
                store, gatekeeper, processor,
                strict_idempotency=True, reservation_ttl_seconds=5, processor_timeout=60,
            )

    def test_short_reservation_allowed_outside_strict_mode(self, store, gatekeeper, processor):
        handler = make_handler(store, gatekeeper, processor, reservation_ttl_seconds=5, processor_timeout=60)
        assert handler.strict_idempotency is False
