"""Tests for event processing and the dispatch loop."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from approval_engine.dispatcher import DispatchLoop, DispatchStats, EventProcessor, ProcessOutcome
from approval_engine.errors import DeliveryError
from approval_engine.handlers import HandlerRegistry
from approval_engine.lifecycle import ShutdownSignal

from tests._testkit import FlakyEventLog, eventually


def _submitted(doc: str) -> dict[str, str]:
    return {"event": "DOCUMENT_SUBMITTED", "docId": doc, "userId": "U1", "timestamp": "t"}


async def _deliver_one(log, config, fields):
    await log.create_group(config.stream_key, config.group_name)
    await log.append(config.stream_key, fields)
    [entry] = await log.read_group(config.stream_key, config.group_name, config.consumer_name, block_ms=0)
    return entry


async def _pending_ids(log, config) -> list[str]:
    return [row.event_id for row in await log.list_pending(config.stream_key, config.group_name)]


class TestEventProcessor:
    @pytest.mark.asyncio
    async def test_success_acks_after_handler(self, memory_log, config, recorder, logger):
        entry = await _deliver_one(memory_log, config, _submitted("D1"))
        processor = EventProcessor(memory_log, recorder.registry(), config, logger=logger)

        outcome = await processor.process(entry)

        assert outcome is ProcessOutcome.ACKED
        assert recorder.handled_ids() == [entry.event_id]
        assert await _pending_ids(memory_log, config) == []
        assert processor.stats.acked == 1

    @pytest.mark.asyncio
    async def test_handler_failure_leaves_entry_pending(self, memory_log, config, recorder, logger):
        recorder.fail_docs.add("D1")
        entry = await _deliver_one(memory_log, config, _submitted("D1"))
        processor = EventProcessor(memory_log, recorder.registry(), config, logger=logger)

        outcome = await processor.process(entry)

        assert outcome is ProcessOutcome.HANDLER_FAILED
        assert await _pending_ids(memory_log, config) == [entry.event_id]
        assert processor.stats.handler_failures == 1
        assert processor.stats.acked == 0

    @pytest.mark.asyncio
    async def test_missing_handler_is_a_handler_failure(self, memory_log, config, logger):
        entry = await _deliver_one(memory_log, config, _submitted("D1"))
        processor = EventProcessor(memory_log, HandlerRegistry(), config, logger=logger)

        assert await processor.process(entry) is ProcessOutcome.HANDLER_FAILED
        assert await _pending_ids(memory_log, config) == [entry.event_id]

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_settled_without_handling(self, memory_log, config, recorder, logger):
        entry = await _deliver_one(memory_log, config, {"event": "DOCUMENT_SHREDDED", "docId": "D1"})
        processor = EventProcessor(memory_log, recorder.registry(), config, logger=logger)

        outcome = await processor.process(entry)

        assert outcome is ProcessOutcome.DECODE_FAILED
        assert recorder.calls == []
        assert await _pending_ids(memory_log, config) == []
        assert processor.stats.decode_failures == 1

    @pytest.mark.asyncio
    async def test_ack_failure_keeps_entry_pending(self, memory_log, config, recorder, logger):
        entry = await _deliver_one(memory_log, config, _submitted("D1"))
        flaky = FlakyEventLog(memory_log, {"ack": None})
        processor = EventProcessor(flaky, recorder.registry(), config, logger=logger)

        outcome = await processor.process(entry)

        assert outcome is ProcessOutcome.ACK_FAILED
        assert recorder.handled_ids() == [entry.event_id]
        assert await _pending_ids(memory_log, config) == [entry.event_id]
        assert processor.stats.ack_failures == 1

    @pytest.mark.asyncio
    async def test_reprocessing_an_acked_entry_is_harmless(self, memory_log, config, recorder, logger):
        entry = await _deliver_one(memory_log, config, _submitted("D1"))
        processor = EventProcessor(memory_log, recorder.registry(), config, logger=logger)

        await processor.process(entry)
        outcome = await processor.process(entry)

        # Duplicate handling is allowed; the second ack is a no-op.
        assert outcome is ProcessOutcome.ACKED
        assert len(recorder.calls) == 2
        assert await _pending_ids(memory_log, config) == []


class TestDispatchLoop:
    def _loop(self, log, config, recorder, logger, *, processor_log=None):
        processor = EventProcessor(processor_log or log, recorder.registry(), config, logger=logger)
        return DispatchLoop(log, processor, config, logger=logger)

    @pytest.mark.asyncio
    async def test_ensure_group_is_idempotent(self, memory_log, config, recorder, logger):
        loop = self._loop(memory_log, config, recorder, logger)

        assert await loop.ensure_group() is True
        assert await loop.ensure_group() is False

    @pytest.mark.asyncio
    async def test_poll_once_processes_batch(self, memory_log, config, recorder, logger):
        loop = self._loop(memory_log, config, recorder, logger)
        await loop.ensure_group()
        ids = [await memory_log.append(config.stream_key, _submitted(f"D{i}")) for i in range(3)]

        assert await loop.poll_once() == 3
        assert recorder.handled_ids() == ids
        assert loop.stats.delivered == 3
        assert loop.stats.acked == 3

    @pytest.mark.asyncio
    async def test_batch_records_share_a_trace_id(self, memory_log, config, recorder, logger, caplog):
        processor = EventProcessor(memory_log, recorder.registry(), config, logger=logger)
        loop = DispatchLoop(memory_log, processor, config, logger=logger.bind(operation="dispatch"))
        await loop.ensure_group()
        for doc in ("D1", "D2"):
            await memory_log.append(config.stream_key, _submitted(doc))

        with caplog.at_level(logging.INFO, logger=logger.name):
            assert await loop.poll_once() == 2

        payloads = [json.loads(r.getMessage()) for r in caplog.records if r.name == logger.name]
        acked = [p for p in payloads if p.get("event_type") == "event_acked"]
        assert len(acked) == 2
        assert {p["operation"] for p in acked} == {"dispatch"}
        [trace_id] = {p["trace_id"] for p in acked}
        assert trace_id.startswith("trace_")
        assert logger.context.trace_id is None

    @pytest.mark.asyncio
    async def test_poll_once_wraps_read_failure(self, memory_log, config, recorder, logger):
        flaky = FlakyEventLog(memory_log, {"read_group": 1})
        loop = self._loop(flaky, config, recorder, logger, processor_log=memory_log)
        await loop.ensure_group()

        with pytest.raises(DeliveryError) as exc_info:
            await loop.poll_once()

        assert isinstance(exc_info.value.cause, ConnectionError)
        assert exc_info.value.context.operation == "read_group"

    @pytest.mark.asyncio
    async def test_run_handles_events_until_shutdown(self, memory_log, config, recorder, logger):
        loop = self._loop(memory_log, config, recorder, logger)
        await loop.ensure_group()
        shutdown = ShutdownSignal()
        task = asyncio.create_task(loop.run(shutdown))

        ids = [await memory_log.append(config.stream_key, _submitted(f"D{i}")) for i in range(5)]

        async def all_settled() -> bool:
            return len(recorder.calls) == 5 and await _pending_ids(memory_log, config) == []

        assert await eventually(all_settled)
        assert recorder.handled_ids() == ids

        shutdown.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_run_survives_delivery_errors(self, memory_log, config, recorder, logger):
        flaky = FlakyEventLog(memory_log, {"read_group": 2})
        loop = self._loop(flaky, config, recorder, logger, processor_log=memory_log)
        await loop.ensure_group()
        await memory_log.append(config.stream_key, _submitted("D1"))
        shutdown = ShutdownSignal()
        task = asyncio.create_task(loop.run(shutdown))

        async def handled() -> bool:
            return len(recorder.calls) == 1

        assert await eventually(handled)
        assert loop.stats.delivery_errors == 2

        shutdown.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_run_recreates_missing_group(self, memory_log, config, recorder, logger):
        loop = self._loop(memory_log, config, recorder, logger)
        await memory_log.append(config.stream_key, _submitted("D1"))
        shutdown = ShutdownSignal()
        task = asyncio.create_task(loop.run(shutdown))

        async def handled() -> bool:
            return len(recorder.calls) == 1

        assert await eventually(handled)
        assert loop.stats.delivery_errors >= 1
        assert await memory_log.group_info(config.stream_key, config.group_name) is not None

        shutdown.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_run_exits_promptly_when_idle(self, memory_log, config, recorder, logger):
        loop = self._loop(memory_log, config, recorder, logger)
        await loop.ensure_group()
        shutdown = ShutdownSignal()
        task = asyncio.create_task(loop.run(shutdown))
        await asyncio.sleep(0.05)

        shutdown.set()
        # Bounded by one block interval.
        await asyncio.wait_for(task, timeout=config.block_ms / 1000.0 + 0.5)
        assert task.done()


def test_stats_to_dict():
    stats = DispatchStats(delivered=2, acked=1)
    d = stats.to_dict()
    assert d["delivered"] == 2
    assert d["acked"] == 1
    assert d["recovery_errors"] == 0
