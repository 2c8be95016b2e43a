from __future__ import annotations

import json

import pytest

fastapi = pytest.importorskip("fastapi")
pydantic = pytest.importorskip("pydantic")
RequestValidationError = pytest.importorskip("fastapi.exceptions").RequestValidationError
app_module = pytest.importorskip("approval_api.app")

from approval_engine import AppendFailure, ConfigError, InMemoryEventLog, ValidationFailure, WorkflowEngine
from approval_engine.redis_streams import RedisEventLog
from approval_api.settings import Settings


class _StubRequest:
    def __init__(self, disconnect_after: int = 1) -> None:
        self._remaining = disconnect_after

    async def is_disconnected(self) -> bool:
        self._remaining -= 1
        return self._remaining < 0


def _body(response) -> dict:
    return json.loads(response.body)


@pytest.fixture
def engine(memory_log, config, recorder, logger) -> WorkflowEngine:
    # Not started: endpoint tests drive the producer and board directly.
    return WorkflowEngine(memory_log, config, recorder.registry(), logger=logger)


@pytest.fixture
def wired(monkeypatch, engine) -> WorkflowEngine:
    monkeypatch.setattr(app_module.app.state, "engine", engine, raising=False)
    monkeypatch.setattr(app_module.app.state, "settings", Settings(push_interval_s=0.01), raising=False)
    return engine


@pytest.mark.asyncio
async def test_submit_returns_message_id_and_pending_status(wired, memory_log, config) -> None:
    response = await app_module.submit(app_module.SubmitRequest(docId="D1", userId="U1"))

    assert response.success is True
    assert response.status == "PENDING"
    [entry] = await memory_log.recent_events(config.stream_key, 10)
    assert entry.event_id == response.messageId
    assert entry.fields["userId"] == "U1"


@pytest.mark.asyncio
async def test_approve_returns_approved_status(wired, memory_log, config) -> None:
    response = await app_module.approve(app_module.ApproveRequest(docId="D1", approverId="A1"))

    assert response.status == "APPROVED"
    [entry] = await memory_log.recent_events(config.stream_key, 10)
    assert entry.fields["event"] == "DOCUMENT_APPROVED"


def test_request_models_reject_missing_or_empty_fields() -> None:
    with pytest.raises(pydantic.ValidationError):
        app_module.SubmitRequest(docId="", userId="U1")
    with pytest.raises(pydantic.ValidationError):
        app_module.ApproveRequest(docId="D1")


@pytest.mark.asyncio
async def test_board_snapshot_lists_lanes(wired) -> None:
    result = await wired.producer.submit_document("D1", "U1")

    board = await app_module.board_snapshot()

    assert [card["id"] for card in board["waiting"]] == [result.event_id]
    assert board["processing"] == []
    assert board["completed"] == []


@pytest.mark.asyncio
async def test_stats_endpoint(wired, config) -> None:
    stats = await app_module.stats()

    assert stats["consumer"] == config.consumer_name
    assert stats["running"] is False


@pytest.mark.asyncio
async def test_healthz() -> None:
    assert await app_module.healthz() == {"ok": "true"}


@pytest.mark.asyncio
async def test_status_stream_pushes_board_frames(wired) -> None:
    await wired.producer.submit_document("D1", "U1")

    response = await app_module.status_stream(_StubRequest(disconnect_after=1))

    assert response.media_type == "text/event-stream"
    assert response.headers["cache-control"] == "no-cache"
    frames = [frame async for frame in response.body_iterator]
    assert len(frames) == 1
    assert frames[0].startswith("data: ")
    payload = json.loads(frames[0][len("data: "):].strip())
    assert payload["waiting"][0]["docId"] == "D1"


@pytest.mark.asyncio
async def test_request_validation_maps_to_400() -> None:
    exc = RequestValidationError([{"loc": ("body", "docId"), "msg": "Field required", "type": "missing"}])

    response = await app_module.request_validation_handler(None, exc)

    assert response.status_code == 400
    assert _body(response) == {"success": False, "message": "docId: Field required"}


@pytest.mark.asyncio
async def test_validation_failure_maps_to_400() -> None:
    response = await app_module.validation_failure_handler(
        None, ValidationFailure("docId is required", field_name="docId")
    )

    assert response.status_code == 400
    assert _body(response)["message"] == "docId is required"


@pytest.mark.asyncio
async def test_append_failure_maps_to_503() -> None:
    response = await app_module.append_failure_handler(None, AppendFailure("Failed to add message to stream"))

    assert response.status_code == 503
    assert _body(response) == {"success": False, "message": "Failed to add message to stream"}


def test_app_debug_follows_settings() -> None:
    assert app_module.app.debug is app_module._settings.debug


def test_build_event_log_backends() -> None:
    assert isinstance(app_module.build_event_log(Settings(log_backend="memory")), InMemoryEventLog)
    assert isinstance(
        app_module.build_event_log(Settings(log_backend="redis", redis_url="redis://localhost:6379/0")),
        RedisEventLog,
    )
    with pytest.raises(ConfigError):
        app_module.build_event_log(Settings(log_backend="kafka"))


@pytest.mark.asyncio
async def test_lifespan_starts_and_stops_engine(monkeypatch) -> None:
    monkeypatch.setenv("WF_LOG_BACKEND", "memory")
    monkeypatch.setenv("WF_BLOCK_MS", "20")
    monkeypatch.setenv("WF_CONSUMER_NAME", "worker_lifespan")

    async with app_module.lifespan(app_module.app):
        engine = app_module.app.state.engine
        assert engine.is_running
        assert engine.config.consumer_name == "worker_lifespan"

    assert not engine.is_running
    assert engine.log.closed
