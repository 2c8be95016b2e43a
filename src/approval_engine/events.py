"""
Workflow event types.

This module defines the event model written to and read from the stream:
- EventKind: the two workflow occurrences (submission, approval)
- DocumentSubmitted / DocumentApproved: the decoded tagged variants
- StreamEntry: a raw entry as delivered by the log
- Stream id parsing and ordering helpers

Wire format (flat string fields, one stream entry per event):
    event=DOCUMENT_SUBMITTED docId=... userId=...     timestamp=<ISO-8601>
    event=DOCUMENT_APPROVED  docId=... approverId=... timestamp=<ISO-8601>
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union

from .errors import DecodeError, ErrorContext


class EventKind(str, Enum):
    """Workflow event variants."""

    DOCUMENT_SUBMITTED = "DOCUMENT_SUBMITTED"
    DOCUMENT_APPROVED = "DOCUMENT_APPROVED"


class CallerStatus(str, Enum):
    """Status reported to the caller after an append."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"


_CALLER_STATUS = {
    EventKind.DOCUMENT_SUBMITTED: CallerStatus.PENDING,
    EventKind.DOCUMENT_APPROVED: CallerStatus.APPROVED,
}

# Required wire fields per variant (besides "event").
_REQUIRED_FIELDS: dict[EventKind, tuple[str, ...]] = {
    EventKind.DOCUMENT_SUBMITTED: ("docId", "userId", "timestamp"),
    EventKind.DOCUMENT_APPROVED: ("docId", "approverId", "timestamp"),
}


def caller_status(kind: EventKind) -> CallerStatus:
    return _CALLER_STATUS[kind]


@dataclass(frozen=True)
class DocumentSubmitted:
    """A document was submitted for approval."""

    doc_id: str
    user_id: str
    timestamp: str
    kind: EventKind = field(default=EventKind.DOCUMENT_SUBMITTED, init=False)


@dataclass(frozen=True)
class DocumentApproved:
    """A document was approved."""

    doc_id: str
    approver_id: str
    timestamp: str
    kind: EventKind = field(default=EventKind.DOCUMENT_APPROVED, init=False)


WorkflowEvent = Union[DocumentSubmitted, DocumentApproved]


@dataclass(frozen=True)
class StreamEntry:
    """One entry as read from the stream: its id and raw field map."""

    event_id: str
    fields: dict[str, str]


def utc_timestamp() -> str:
    """Capture time in ISO-8601 with millisecond precision, UTC."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_fields(kind: EventKind, **fields: str) -> dict[str, str]:
    """Build the wire field map for an event of ``kind``.

    ``fields`` uses the wire names (``docId``, ``userId``, ``approverId``).
    A capture timestamp is added unless one is supplied.
    """
    message = {"event": kind.value, **fields}
    message.setdefault("timestamp", utc_timestamp())
    return message


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def normalize_fields(raw: Mapping[Any, Any] | list[Any] | tuple[Any, ...]) -> dict[str, str]:
    """Turn a field map (or a flat ``[k1, v1, k2, v2, ...]`` list) into ``str -> str``."""
    if isinstance(raw, Mapping):
        return {_text(k): _text(v) for k, v in raw.items()}
    items = list(raw)
    return {_text(items[i]): _text(items[i + 1]) for i in range(0, len(items) - 1, 2)}


def decode_event(fields: Mapping[Any, Any], *, event_id: str | None = None) -> WorkflowEvent:
    """Decode raw stream fields into a typed event.

    Raises:
        DecodeError: when the variant tag is missing/unknown or a required
            field of that variant is absent or empty.
    """
    data = normalize_fields(fields)
    ctx = ErrorContext(event_id=event_id, operation="decode")

    tag = data.get("event")
    if not tag:
        raise DecodeError("missing event tag", context=ctx)
    try:
        kind = EventKind(tag)
    except ValueError as e:
        raise DecodeError(f"unknown event tag: {tag!r}", context=ctx, cause=e) from e

    missing = [name for name in _REQUIRED_FIELDS[kind] if not data.get(name)]
    if missing:
        raise DecodeError(
            f"{kind.value} is missing required fields: {', '.join(missing)}",
            context=ctx,
        )

    if kind is EventKind.DOCUMENT_SUBMITTED:
        return DocumentSubmitted(
            doc_id=data["docId"],
            user_id=data["userId"],
            timestamp=data["timestamp"],
        )
    return DocumentApproved(
        doc_id=data["docId"],
        approver_id=data["approverId"],
        timestamp=data["timestamp"],
    )


# =============================================================================
# Stream ids
# =============================================================================


def parse_stream_id(value: str) -> tuple[int, int] | None:
    """Parse a ``<ms>-<seq>`` id (a bare ``<ms>`` means seq 0).

    Returns None when ``value`` is not in that form.
    """
    head, sep, tail = value.partition("-")
    if not head.isdigit() or (sep and not tail.isdigit()):
        return None
    return int(head), int(tail) if sep else 0


def compare_ids(a: str, b: str) -> int:
    """Order two stream ids the way the log issues them.

    Ids in ``<ms>-<seq>`` form compare numerically, so ``"10-0"`` sorts after
    ``"9-0"``. Anything else falls back to plain string order.
    """
    pa, pb = parse_stream_id(a), parse_stream_id(b)
    if pa is not None and pb is not None:
        return (pa > pb) - (pa < pb)
    return (a > b) - (a < b)


def id_after(event_id: str, cursor: str) -> bool:
    return compare_ids(event_id, cursor) > 0


__all__ = [
    "EventKind",
    "CallerStatus",
    "DocumentSubmitted",
    "DocumentApproved",
    "WorkflowEvent",
    "StreamEntry",
    "caller_status",
    "utc_timestamp",
    "encode_fields",
    "normalize_fields",
    "decode_event",
    "parse_stream_id",
    "compare_ids",
    "id_after",
]
