"""
Event log interface and in-memory implementation.

This module provides the EventLog interface - the primitives the engine
needs from a durable, append-only stream with consumer groups - and an
in-memory implementation suitable for testing and single-process
deployments. The Redis Streams implementation lives in ``redis_streams``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Mapping

from .events import StreamEntry, compare_ids, normalize_fields, parse_stream_id


@dataclass(frozen=True)
class PendingEntry:
    """A delivered-but-unacknowledged entry in a group's pending table."""

    event_id: str
    consumer: str
    idle_ms: int
    delivery_count: int


@dataclass(frozen=True)
class GroupInfo:
    """Delivery state of one consumer group."""

    name: str
    last_delivered_id: str
    pending: int = 0
    consumers: int = 0


@dataclass
class ClaimResult:
    """Entries whose ownership moved to the claiming consumer.

    ``deleted_ids`` lists pending ids whose payload has already been trimmed
    out of the stream; they can only be acknowledged, never processed.
    """

    entries: list[StreamEntry] = field(default_factory=list)
    deleted_ids: list[str] = field(default_factory=list)
    next_start_id: str = "0-0"


class EventLog(ABC):
    """Abstract interface for the durable event log."""

    @abstractmethod
    async def append(
        self,
        stream: str,
        fields: Mapping[str, str],
        *,
        max_len: int | None = None,
        approximate: bool = True,
    ) -> str:
        """Append an entry and return its log-assigned id."""
        ...

    @abstractmethod
    async def create_group(self, stream: str, group: str, start_id: str = "0") -> bool:
        """Create ``group`` on ``stream`` (creating the stream if needed).

        Returns False when the group already exists; that is not an error.
        """
        ...

    @abstractmethod
    async def read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        *,
        block_ms: int,
        count: int | None = None,
    ) -> list[StreamEntry]:
        """Read entries never delivered to any consumer of ``group``.

        Blocks up to ``block_ms``; an empty list means nothing arrived.
        """
        ...

    @abstractmethod
    async def ack(self, stream: str, group: str, *event_ids: str) -> int:
        """Acknowledge entries. Re-acknowledging is a no-op (returns 0)."""
        ...

    @abstractmethod
    async def claim_stale(
        self,
        stream: str,
        group: str,
        consumer: str,
        *,
        min_idle_ms: int,
        count: int,
        start_id: str = "0-0",
    ) -> ClaimResult:
        """Transfer pending entries idle for at least ``min_idle_ms`` to ``consumer``."""
        ...

    @abstractmethod
    async def list_pending(
        self,
        stream: str,
        group: str,
        *,
        start: str = "-",
        end: str = "+",
        count: int = 100,
    ) -> list[PendingEntry]:
        """List pending entries of ``group`` in id order."""
        ...

    @abstractmethod
    async def group_info(self, stream: str, group: str) -> GroupInfo | None:
        """Return the group's delivery state, or None if it does not exist."""
        ...

    @abstractmethod
    async def recent_events(self, stream: str, count: int) -> list[StreamEntry]:
        """Return up to ``count`` most recent entries, newest first."""
        ...

    async def close(self) -> None:
        """Release the underlying connection."""
        return None


class LogError(Exception):
    """Raised by the in-memory log for conditions the server would reject."""


@dataclass
class _Pending:
    consumer: str
    delivered_at: float
    delivery_count: int = 1


@dataclass
class _Group:
    last_delivered_id: str
    pending: dict[str, _Pending] = field(default_factory=dict)
    consumers: set[str] = field(default_factory=set)


@dataclass
class _Stream:
    entries: list[StreamEntry] = field(default_factory=list)
    groups: dict[str, _Group] = field(default_factory=dict)
    last_id: tuple[int, int] = (0, 0)


class InMemoryEventLog(EventLog):
    """In-memory event log with consumer-group semantics.

    Suitable for testing and single-process deployments. Ids follow the
    ``<ms>-<seq>`` scheme; idle times are measured with ``clock`` (seconds),
    which tests may replace to simulate elapsed time.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None):
        self._streams: dict[str, _Stream] = {}
        self._clock = clock or time.monotonic
        self._appended = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _stream(self, stream: str, *, create: bool = False) -> _Stream | None:
        s = self._streams.get(stream)
        if s is None and create:
            s = self._streams[stream] = _Stream()
        return s

    def _group(self, stream: str, group: str) -> _Group:
        s = self._stream(stream)
        if s is None or group not in s.groups:
            raise LogError(f"NOGROUP No such key '{stream}' or consumer group '{group}'")
        return s.groups[group]

    def _next_id(self, s: _Stream) -> str:
        ms = int(time.time() * 1000)
        last_ms, last_seq = s.last_id
        s.last_id = (last_ms, last_seq + 1) if ms <= last_ms else (ms, 0)
        return f"{s.last_id[0]}-{s.last_id[1]}"

    async def append(
        self,
        stream: str,
        fields: Mapping[str, str],
        *,
        max_len: int | None = None,
        approximate: bool = True,
    ) -> str:
        if self._closed:
            raise LogError("connection closed")
        s = self._stream(stream, create=True)
        event_id = self._next_id(s)
        s.entries.append(StreamEntry(event_id=event_id, fields=normalize_fields(fields)))
        if max_len is not None and len(s.entries) > max_len:
            del s.entries[: len(s.entries) - max_len]

        # Wake blocked readers.
        self._appended.set()
        self._appended = asyncio.Event()
        return event_id

    async def create_group(self, stream: str, group: str, start_id: str = "0") -> bool:
        s = self._stream(stream, create=True)
        if group in s.groups:
            return False
        if start_id == "$":
            cursor = f"{s.last_id[0]}-{s.last_id[1]}"
        elif start_id == "0":
            cursor = "0-0"
        else:
            cursor = start_id
        s.groups[group] = _Group(last_delivered_id=cursor)
        return True

    def _deliver(self, stream: str, group: str, consumer: str, count: int | None) -> list[StreamEntry]:
        g = self._group(stream, group)
        g.consumers.add(consumer)
        s = self._streams[stream]
        fresh = [e for e in s.entries if compare_ids(e.event_id, g.last_delivered_id) > 0]
        if count is not None:
            fresh = fresh[:count]
        now = self._clock()
        for entry in fresh:
            g.pending[entry.event_id] = _Pending(consumer=consumer, delivered_at=now)
            g.last_delivered_id = entry.event_id
        return [StreamEntry(e.event_id, dict(e.fields)) for e in fresh]

    async def read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        *,
        block_ms: int,
        count: int | None = None,
    ) -> list[StreamEntry]:
        if self._closed:
            raise LogError("connection closed")
        batch = self._deliver(stream, group, consumer, count)
        if batch or block_ms <= 0:
            return batch
        appended = self._appended
        try:
            await asyncio.wait_for(appended.wait(), timeout=block_ms / 1000.0)
        except asyncio.TimeoutError:
            return []
        return self._deliver(stream, group, consumer, count)

    async def ack(self, stream: str, group: str, *event_ids: str) -> int:
        g = self._group(stream, group)
        removed = 0
        for event_id in event_ids:
            if g.pending.pop(event_id, None) is not None:
                removed += 1
        return removed

    async def claim_stale(
        self,
        stream: str,
        group: str,
        consumer: str,
        *,
        min_idle_ms: int,
        count: int,
        start_id: str = "0-0",
    ) -> ClaimResult:
        g = self._group(stream, group)
        g.consumers.add(consumer)
        s = self._streams[stream]
        by_id = {e.event_id: e for e in s.entries}
        now = self._clock()
        result = ClaimResult()

        candidates = sorted(
            (eid for eid in g.pending if compare_ids(eid, start_id) >= 0),
            key=lambda eid: parse_stream_id(eid) or (0, 0),
        )
        for event_id in candidates:
            if len(result.entries) + len(result.deleted_ids) >= count:
                result.next_start_id = event_id
                break
            p = g.pending[event_id]
            if (now - p.delivered_at) * 1000 < min_idle_ms:
                continue
            entry = by_id.get(event_id)
            if entry is None:
                del g.pending[event_id]
                result.deleted_ids.append(event_id)
                continue
            p.consumer = consumer
            p.delivered_at = now
            p.delivery_count += 1
            result.entries.append(StreamEntry(entry.event_id, dict(entry.fields)))
        return result

    async def list_pending(
        self,
        stream: str,
        group: str,
        *,
        start: str = "-",
        end: str = "+",
        count: int = 100,
    ) -> list[PendingEntry]:
        g = self._group(stream, group)
        now = self._clock()
        rows = []
        for event_id in sorted(g.pending, key=lambda eid: parse_stream_id(eid) or (0, 0)):
            if start != "-" and compare_ids(event_id, start) < 0:
                continue
            if end != "+" and compare_ids(event_id, end) > 0:
                continue
            p = g.pending[event_id]
            rows.append(
                PendingEntry(
                    event_id=event_id,
                    consumer=p.consumer,
                    idle_ms=int((now - p.delivered_at) * 1000),
                    delivery_count=p.delivery_count,
                )
            )
            if len(rows) >= count:
                break
        return rows

    async def group_info(self, stream: str, group: str) -> GroupInfo | None:
        s = self._stream(stream)
        if s is None or group not in s.groups:
            return None
        g = s.groups[group]
        return GroupInfo(
            name=group,
            last_delivered_id=g.last_delivered_id,
            pending=len(g.pending),
            consumers=len(g.consumers),
        )

    async def recent_events(self, stream: str, count: int) -> list[StreamEntry]:
        s = self._stream(stream)
        if s is None:
            return []
        return [StreamEntry(e.event_id, dict(e.fields)) for e in reversed(s.entries[-count:])]

    async def close(self) -> None:
        self._closed = True


__all__ = [
    "PendingEntry",
    "GroupInfo",
    "ClaimResult",
    "EventLog",
    "LogError",
    "InMemoryEventLog",
]
