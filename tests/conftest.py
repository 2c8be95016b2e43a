"""
Shared test fixtures for approval-engine tests.
"""

from __future__ import annotations

import pytest

from approval_engine.config import EngineConfig
from approval_engine.logging import StructuredLogger
from approval_engine.streams import InMemoryEventLog

from tests._testkit import FakeClock, RecordingHandlers


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_log(clock: FakeClock) -> InMemoryEventLog:
    return InMemoryEventLog(clock=clock)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(
        stream_key="test:document_stream",
        group_name="test_group",
        consumer_name="worker_test",
        block_ms=20,
        error_backoff_s=0.01,
        sweep_interval_s=0.05,
        min_idle_ms=60000,
        claim_count=50,
    )


@pytest.fixture
def recorder() -> RecordingHandlers:
    return RecordingHandlers()


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger("approval_engine.tests", level="DEBUG", json_output=True)
