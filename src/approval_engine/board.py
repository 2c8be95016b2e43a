"""
Kanban board reconstruction.

The board is a read-only projection of the most recent stream entries into
three lanes, derived from the group's delivery cursor and pending table:

    pending in the group            -> processing
    id after the delivery cursor    -> waiting
    otherwise (delivered, settled)  -> completed

It is rebuilt on every call and never stored. Sub-query failures degrade to
conservative defaults (cursor "0-0", empty pending set) instead of failing
the request, trading accuracy for availability.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .config import EngineConfig
from .errors import ErrorContext, ReconstructionDegradation
from .events import StreamEntry, id_after, normalize_fields
from .logging import StructuredLogger, get_logger
from .streams import EventLog

DEFAULT_CURSOR = "0-0"
UNKNOWN = "Unknown"


@dataclass(frozen=True)
class KanbanCard:
    id: str
    doc_id: str
    event_kind: str
    timestamp: str

    @classmethod
    def from_entry(cls, entry: StreamEntry) -> KanbanCard:
        data = normalize_fields(entry.fields)
        return cls(
            id=entry.event_id,
            doc_id=data.get("docId") or UNKNOWN,
            event_kind=data.get("event") or UNKNOWN,
            timestamp=data.get("timestamp") or UNKNOWN,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "docId": self.doc_id,
            "eventKind": self.event_kind,
            "timestamp": self.timestamp,
        }


@dataclass
class KanbanBoard:
    waiting: list[KanbanCard] = field(default_factory=list)
    processing: list[KanbanCard] = field(default_factory=list)
    completed: list[KanbanCard] = field(default_factory=list)

    def lane_of(self, event_id: str) -> str | None:
        for lane in ("waiting", "processing", "completed"):
            if any(card.id == event_id for card in getattr(self, lane)):
                return lane
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "waiting": [c.to_dict() for c in self.waiting],
            "processing": [c.to_dict() for c in self.processing],
            "completed": [c.to_dict() for c in self.completed],
        }


def classify(
    entries: Iterable[StreamEntry],
    last_delivered_id: str,
    pending_ids: set[str],
) -> KanbanBoard:
    """Place each entry in its lane, preserving input order."""
    board = KanbanBoard()
    for entry in entries:
        card = KanbanCard.from_entry(entry)
        if entry.event_id in pending_ids:
            board.processing.append(card)
        elif id_after(entry.event_id, last_delivered_id):
            board.waiting.append(card)
        else:
            board.completed.append(card)
    return board


class BoardReconstructor:
    """Builds a KanbanBoard from the live log state on demand."""

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

    def _degraded(self, what: str, error: Exception) -> None:
        self._logger.log_error(
            ReconstructionDegradation(
                f"{what} unavailable, using default: {error}",
                context=ErrorContext(
                    stream=self._config.stream_key,
                    group=self._config.group_name,
                    operation="build_board",
                ),
                cause=error,
            ),
            level=logging.WARNING,
        )

    async def last_delivered_id(self) -> str | None:
        """The group cursor; None when the group does not exist yet."""
        try:
            info = await self._log.group_info(self._config.stream_key, self._config.group_name)
        except Exception as e:
            self._degraded("group info", e)
            return DEFAULT_CURSOR
        return info.last_delivered_id if info else None

    async def pending_ids(self, entries: list[StreamEntry]) -> set[str]:
        """Pending ids within the id range spanned by ``entries`` (newest first)."""
        if not entries:
            return set()
        try:
            rows = await self._log.list_pending(
                self._config.stream_key,
                self._config.group_name,
                start=entries[-1].event_id,
                end=entries[0].event_id,
                count=self._config.pending_scan,
            )
        except Exception as e:
            self._degraded("pending entries", e)
            return set()
        return {row.event_id for row in rows}

    async def build(self) -> KanbanBoard:
        try:
            entries = await self._log.recent_events(self._config.stream_key, self._config.board_size)
        except Exception as e:
            self._logger.log_error(e, "Error fetching Kanban status")
            return KanbanBoard()

        if not entries:
            return KanbanBoard()

        cursor = await self.last_delivered_id()
        if cursor is None:
            # Nothing has ever been delivered.
            return classify(entries, DEFAULT_CURSOR, set())
        pending = await self.pending_ids(entries)
        return classify(entries, cursor, pending)


__all__ = ["KanbanCard", "KanbanBoard", "classify", "BoardReconstructor", "DEFAULT_CURSOR"]
