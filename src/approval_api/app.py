from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_503_SERVICE_UNAVAILABLE

from approval_engine import (
    AppendFailure,
    ConfigError,
    EventLog,
    InMemoryEventLog,
    ValidationFailure,
    WorkflowEngine,
    sse_stream,
)
from approval_engine.logging import configure_logging
from approval_engine.redis_streams import connect

from .settings import Settings, get_settings


load_dotenv(find_dotenv(usecwd=True))


def build_event_log(settings: Settings) -> EventLog:
    if settings.log_backend == "memory":
        return InMemoryEventLog()
    if settings.log_backend == "redis":
        return connect(settings.redis_url)
    raise ConfigError(f"Unknown log backend: {settings.log_backend!r}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging_config = settings.logging_config()
    logger = configure_logging(level=logging_config.level, json_output=logging_config.format == "json")

    engine = WorkflowEngine(build_event_log(settings), settings.engine_config(), logger=logger)
    await engine.start()

    app.state.settings = settings
    app.state.engine = engine
    try:
        yield
    finally:
        await engine.stop()


_settings = get_settings()

app = FastAPI(
    title="Document Approval Workflow",
    version="0.1.0",
    lifespan=lifespan,
    debug=_settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_settings.cors_origins),
    allow_methods=list(_settings.cors_methods),
    allow_headers=["*"],
)


class SubmitRequest(BaseModel):
    docId: str = Field(..., min_length=1)
    userId: str = Field(..., min_length=1)


class ApproveRequest(BaseModel):
    docId: str = Field(..., min_length=1)
    approverId: str = Field(..., min_length=1)


class ActionResponse(BaseModel):
    success: bool = True
    messageId: str
    status: str


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _describe_validation_errors(errors: list[dict[str, Any]]) -> str:
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        where = ".".join(loc) or "body"
        parts.append(f"{where}: {err.get('msg', 'invalid')}")
    return "; ".join(parts) or "invalid request"


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _failure(HTTP_400_BAD_REQUEST, _describe_validation_errors(list(exc.errors())))


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
    return _failure(HTTP_400_BAD_REQUEST, exc.message)


@app.exception_handler(AppendFailure)
async def append_failure_handler(request: Request, exc: AppendFailure) -> JSONResponse:
    return _failure(HTTP_503_SERVICE_UNAVAILABLE, exc.message)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"ok": "true"}


@app.post("/workflow/submit", response_model=ActionResponse)
async def submit(req: SubmitRequest) -> ActionResponse:
    engine: WorkflowEngine = app.state.engine
    result = await engine.producer.submit_document(req.docId, req.userId)
    return ActionResponse(messageId=result.event_id, status=result.status.value)


@app.post("/workflow/approve", response_model=ActionResponse)
async def approve(req: ApproveRequest) -> ActionResponse:
    engine: WorkflowEngine = app.state.engine
    result = await engine.producer.approve_document(req.docId, req.approverId)
    return ActionResponse(messageId=result.event_id, status=result.status.value)


@app.get("/workflow/status-stream")
async def status_stream(request: Request) -> StreamingResponse:
    engine: WorkflowEngine = app.state.engine
    settings: Settings = app.state.settings
    return StreamingResponse(
        sse_stream(
            engine.board,
            interval=settings.push_interval_s,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/workflow/board")
async def board_snapshot() -> dict[str, Any]:
    engine: WorkflowEngine = app.state.engine
    board = await engine.build_board()
    return board.to_dict()


@app.get("/workflow/stats")
async def stats() -> dict[str, Any]:
    engine: WorkflowEngine = app.state.engine
    return engine.stats()
