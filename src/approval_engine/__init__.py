"""
Approval Engine - event-stream workflow engine for document approvals.

This package provides:
- A producer appending DOCUMENT_SUBMITTED / DOCUMENT_APPROVED events
- A consumer-group dispatch loop with at-least-once processing
- A recovery sweep reclaiming entries stuck with crashed consumers
- A board reconstructor projecting recent events into waiting /
  processing / completed lanes, and a push channel sampling it

Example:
    ```python
    from approval_engine import EngineConfig, WorkflowEngine
    from approval_engine.redis_streams import connect

    engine = WorkflowEngine(connect("redis://localhost:6379/0"), EngineConfig())
    await engine.start()

    result = await engine.producer.submit_document("D1", "U1")
    board = await engine.build_board()

    await engine.stop()
    ```
"""

from .board import BoardReconstructor, KanbanBoard, KanbanCard, classify
from .config import EngineConfig, LoggingConfig
from .dispatcher import DispatchLoop, DispatchStats, EventProcessor, ProcessOutcome
from .engine import WorkflowEngine
from .errors import (
    AppendFailure,
    ConfigError,
    DecodeError,
    DeliveryError,
    ErrorCode,
    ErrorContext,
    HandlerFailure,
    ReconstructionDegradation,
    RecoveryError,
    ValidationFailure,
    WorkflowError,
)
from .events import (
    CallerStatus,
    DocumentApproved,
    DocumentSubmitted,
    EventKind,
    StreamEntry,
    WorkflowEvent,
    compare_ids,
    decode_event,
    encode_fields,
)
from .handlers import HandlerRegistry, default_handlers
from .lifecycle import ShutdownSignal
from .producer import Producer, SubmitResult
from .push import board_updates, format_sse, sse_stream
from .recovery import RecoverySweep
from .streams import ClaimResult, EventLog, GroupInfo, InMemoryEventLog, PendingEntry

__all__ = [
    # Engine
    "WorkflowEngine",
    "EngineConfig",
    "LoggingConfig",
    "ShutdownSignal",
    # Events
    "EventKind",
    "CallerStatus",
    "DocumentSubmitted",
    "DocumentApproved",
    "WorkflowEvent",
    "StreamEntry",
    "encode_fields",
    "decode_event",
    "compare_ids",
    # Log
    "EventLog",
    "InMemoryEventLog",
    "PendingEntry",
    "GroupInfo",
    "ClaimResult",
    # Components
    "Producer",
    "SubmitResult",
    "HandlerRegistry",
    "default_handlers",
    "EventProcessor",
    "ProcessOutcome",
    "DispatchLoop",
    "DispatchStats",
    "RecoverySweep",
    "BoardReconstructor",
    "KanbanBoard",
    "KanbanCard",
    "classify",
    "board_updates",
    "format_sse",
    "sse_stream",
    # Errors
    "ErrorCode",
    "ErrorContext",
    "WorkflowError",
    "ValidationFailure",
    "AppendFailure",
    "DeliveryError",
    "DecodeError",
    "HandlerFailure",
    "RecoveryError",
    "ReconstructionDegradation",
    "ConfigError",
]
