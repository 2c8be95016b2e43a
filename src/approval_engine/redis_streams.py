"""
Redis Streams event log.

Implements the EventLog primitives on a Redis Stream with a consumer group:
- XADD with approximate MAXLEN trimming
- XGROUP CREATE ... MKSTREAM (BUSYGROUP tolerated)
- XREADGROUP ">" with a bounded BLOCK
- XACK, XAUTOCLAIM, XPENDING (extended form), XINFO GROUPS, XREVRANGE

Requires redis (async): pip install redis
"""

from __future__ import annotations

from typing import Any, Mapping

import redis.asyncio as redis
from redis.exceptions import ResponseError

from .events import StreamEntry, normalize_fields
from .streams import ClaimResult, EventLog, GroupInfo, PendingEntry


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _entries(messages: Any) -> list[StreamEntry]:
    """Normalize a list of ``(id, fields)`` pairs; entries without payload are skipped."""
    out: list[StreamEntry] = []
    for message_id, data in messages or []:
        if not data:
            continue
        out.append(StreamEntry(event_id=_text(message_id), fields=normalize_fields(data)))
    return out


class RedisEventLog(EventLog):
    """EventLog backed by Redis Streams.

    Example:
        ```python
        client = redis.from_url("redis://localhost:6379/0", decode_responses=True)
        log = RedisEventLog(client)

        await log.create_group("workflow:document_stream", "approval_workers_group")
        event_id = await log.append("workflow:document_stream", {"event": "DOCUMENT_SUBMITTED", ...})
        ```
    """

    def __init__(self, client: Any):  # redis.Redis
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    async def append(
        self,
        stream: str,
        fields: Mapping[str, str],
        *,
        max_len: int | None = None,
        approximate: bool = True,
    ) -> str:
        kwargs: dict[str, Any] = {}
        if max_len:
            kwargs["maxlen"] = max_len
            kwargs["approximate"] = approximate
        message_id = await self._client.xadd(stream, dict(fields), **kwargs)
        return _text(message_id) if message_id else ""

    async def create_group(self, stream: str, group: str, start_id: str = "0") -> bool:
        try:
            await self._client.xgroup_create(stream, group, id=start_id, mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            return False
        return True

    async def read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        *,
        block_ms: int,
        count: int | None = None,
    ) -> list[StreamEntry]:
        response = await self._client.xreadgroup(
            group,
            consumer,
            {stream: ">"},
            count=count,
            block=block_ms,
        )
        if not response:
            return []

        # RESP2 returns [[stream, messages]], RESP3 returns {stream: [messages]}.
        if isinstance(response, dict):
            batches = [msgs[0] if msgs and isinstance(msgs[0], list) else msgs for msgs in response.values()]
        else:
            batches = [msgs for _name, msgs in response]

        out: list[StreamEntry] = []
        for messages in batches:
            out.extend(_entries(messages))
        return out

    async def ack(self, stream: str, group: str, *event_ids: str) -> int:
        if not event_ids:
            return 0
        return int(await self._client.xack(stream, group, *event_ids))

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
        response = await self._client.xautoclaim(
            stream,
            group,
            consumer,
            min_idle_ms,
            start_id=start_id,
            count=count,
        )
        # [next_start_id, [(id, fields), ...], deleted_ids] (deleted_ids since Redis 7)
        next_start = _text(response[0]) if response else "0-0"
        messages = response[1] if len(response) > 1 else []
        deleted = [_text(i) for i in response[2]] if len(response) > 2 and response[2] else []

        # Redis 6.2 reports trimmed entries inline with a nil payload.
        deleted.extend(_text(mid) for mid, data in messages or [] if not data)

        return ClaimResult(
            entries=_entries(messages),
            deleted_ids=deleted,
            next_start_id=next_start,
        )

    async def list_pending(
        self,
        stream: str,
        group: str,
        *,
        start: str = "-",
        end: str = "+",
        count: int = 100,
    ) -> list[PendingEntry]:
        rows = await self._client.xpending_range(stream, group, min=start, max=end, count=count)
        return [
            PendingEntry(
                event_id=_text(row["message_id"]),
                consumer=_text(row["consumer"]),
                idle_ms=int(row["time_since_delivered"]),
                delivery_count=int(row["times_delivered"]),
            )
            for row in rows or []
        ]

    async def group_info(self, stream: str, group: str) -> GroupInfo | None:
        try:
            groups = await self._client.xinfo_groups(stream)
        except ResponseError as e:
            # Stream does not exist yet.
            if "no such key" in str(e).lower():
                return None
            raise

        for info in groups or []:
            decoded = {_text(k): v for k, v in dict(info).items()}
            if _text(decoded.get("name", "")) != group:
                continue
            return GroupInfo(
                name=group,
                last_delivered_id=_text(decoded.get("last-delivered-id", "0-0")),
                pending=int(decoded.get("pending", 0) or 0),
                consumers=int(decoded.get("consumers", 0) or 0),
            )
        return None

    async def recent_events(self, stream: str, count: int) -> list[StreamEntry]:
        messages = await self._client.xrevrange(stream, max="+", min="-", count=count)
        return _entries(messages)

    async def close(self) -> None:
        await self._client.aclose()


def connect(url: str, **kwargs: Any) -> RedisEventLog:
    """Create a RedisEventLog from a ``redis://`` URL."""
    client = redis.from_url(url, decode_responses=True, **kwargs)
    return RedisEventLog(client)


__all__ = ["RedisEventLog", "connect"]
