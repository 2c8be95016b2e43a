"""
Producer: appends workflow events to the stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import EngineConfig
from .errors import AppendFailure, ErrorContext, ValidationFailure
from .events import CallerStatus, EventKind, caller_status, encode_fields
from .logging import StructuredLogger, get_logger
from .streams import EventLog

# Wire field carrying the actor of each variant.
_ACTOR_FIELD = {
    EventKind.DOCUMENT_SUBMITTED: "userId",
    EventKind.DOCUMENT_APPROVED: "approverId",
}


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of a successful append."""

    event_id: str
    status: CallerStatus

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "messageId": self.event_id, "status": self.status.value}


def _require(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"{name} is required and must be a non-empty string", field_name=name)
    return value


class Producer:
    """Appends typed workflow events under the approximate retention cap.

    No retry is attempted: on AppendFailure the caller decides whether to
    resubmit.
    """

    def __init__(
        self,
        log: EventLog,
        config: EngineConfig,
        *,
        logger: StructuredLogger | None = None,
    ):
        self._log = log
        self._config = config
        self._logger = logger or get_logger()

    async def submit(self, kind: EventKind, fields: dict[str, str]) -> SubmitResult:
        """Append one event of ``kind`` with wire ``fields`` (docId plus the actor field).

        Raises:
            ValidationFailure: a required field is missing or blank.
            AppendFailure: the log is unreachable or rejected the write.
        """
        kind = EventKind(kind)
        doc_id = _require("docId", fields.get("docId"))
        actor_field = _ACTOR_FIELD[kind]
        actor = _require(actor_field, fields.get(actor_field))

        message = encode_fields(kind, docId=doc_id, **{actor_field: actor})
        ctx = ErrorContext(stream=self._config.stream_key, operation="append")
        try:
            event_id = await self._log.append(
                self._config.stream_key,
                message,
                max_len=self._config.max_len,
                approximate=self._config.approximate_trim,
            )
        except Exception as e:
            raise AppendFailure(f"Failed to add message to stream: {e}", context=ctx, cause=e) from e

        if not event_id:
            raise AppendFailure("Failed to add message to stream", context=ctx)

        self._logger.log_appended(event_id, kind.value, doc_id)
        return SubmitResult(event_id=event_id, status=caller_status(kind))

    async def submit_document(self, doc_id: str, user_id: str) -> SubmitResult:
        return await self.submit(EventKind.DOCUMENT_SUBMITTED, {"docId": doc_id, "userId": user_id})

    async def approve_document(self, doc_id: str, approver_id: str) -> SubmitResult:
        return await self.submit(EventKind.DOCUMENT_APPROVED, {"docId": doc_id, "approverId": approver_id})


__all__ = ["Producer", "SubmitResult"]
