"""
Side-effect handlers keyed on event kind.

Handlers run under at-least-once delivery: an event may be handled again
after a crash or a failed attempt, so handlers must tolerate duplicates.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from .errors import ErrorContext, HandlerFailure
from .events import DocumentApproved, DocumentSubmitted, EventKind, WorkflowEvent
from .logging import StructuredLogger, get_logger

Handler = Callable[[str, WorkflowEvent], Awaitable[None]]


class HandlerRegistry:
    """Maps each EventKind to the coroutine performing its side effect."""

    def __init__(self):
        self._handlers: dict[EventKind, Handler] = {}

    def register(self, kind: EventKind, handler: Handler) -> HandlerRegistry:
        """Register (or replace) the handler for ``kind``.

        Returns:
            Self for chaining
        """
        self._handlers[EventKind(kind)] = handler
        return self

    def get(self, kind: EventKind) -> Handler | None:
        return self._handlers.get(kind)

    def __contains__(self, kind: object) -> bool:
        return kind in self._handlers

    async def dispatch(self, event_id: str, event: WorkflowEvent) -> None:
        """Run the handler for ``event.kind``.

        Raises:
            HandlerFailure: no handler is registered, or the handler raised.
        """
        ctx = ErrorContext(event_id=event_id, operation=f"handle:{event.kind.value}")
        handler = self._handlers.get(event.kind)
        if handler is None:
            raise HandlerFailure(f"No handler registered for {event.kind.value}", context=ctx)
        try:
            await handler(event_id, event)
        except HandlerFailure:
            raise
        except Exception as e:
            raise HandlerFailure(f"Handler for {event.kind.value} failed: {e}", context=ctx, cause=e) from e


def _require(event_id: str, event: WorkflowEvent, expected: type) -> None:
    if not isinstance(event, expected):
        raise HandlerFailure(
            f"Expected {expected.__name__}, got {type(event).__name__}",
            context=ErrorContext(event_id=event_id, operation=f"handle:{event.kind.value}"),
        )


def default_handlers(
    *,
    delay_s: float = 0.0,
    logger: StructuredLogger | None = None,
) -> HandlerRegistry:
    """Build the stock handlers: notify on submission, generate on approval.

    ``delay_s`` simulates the time the real side effect takes.
    """
    log = logger or get_logger()

    async def notify_manager(event_id: str, event: WorkflowEvent) -> None:
        _require(event_id, event, DocumentSubmitted)
        if delay_s:
            await asyncio.sleep(delay_s)
        log.info(
            f"Notify manager: document {event.doc_id} submitted by {event.user_id}",
            event_id=event_id,
            doc_id=event.doc_id,
        )

    async def generate_document(event_id: str, event: WorkflowEvent) -> None:
        _require(event_id, event, DocumentApproved)
        if delay_s:
            await asyncio.sleep(delay_s)
        log.info(
            f"Generate document: {event.doc_id} approved by {event.approver_id}",
            event_id=event_id,
            doc_id=event.doc_id,
        )

    return (
        HandlerRegistry()
        .register(EventKind.DOCUMENT_SUBMITTED, notify_manager)
        .register(EventKind.DOCUMENT_APPROVED, generate_document)
    )


__all__ = ["Handler", "HandlerRegistry", "default_handlers"]
