"""
Push channel: samples the board reconstructor on a fixed cadence.

One channel per subscriber. Each tick awaits a single reconstruction and
hands the result on before the next tick is scheduled; ticks that would have
fired while a reconstruction was still running are skipped, never
overlapped. Nothing is buffered beyond the board being sent.
"""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable

from .board import BoardReconstructor, KanbanBoard

Disconnected = Callable[[], Awaitable[bool]]


async def board_updates(
    reconstructor: BoardReconstructor,
    *,
    interval: float = 1.0,
    is_disconnected: Disconnected | None = None,
) -> AsyncIterator[KanbanBoard]:
    """Yield a fresh board once per ``interval`` until the subscriber leaves."""
    loop = asyncio.get_running_loop()
    next_tick = loop.time()

    while True:
        if is_disconnected is not None and await is_disconnected():
            return

        yield await reconstructor.build()

        now = loop.time()
        next_tick += interval
        if next_tick <= now:
            # Reconstruction overran: drop the missed ticks.
            missed = int((now - next_tick) // interval) + 1
            next_tick += missed * interval
        await asyncio.sleep(next_tick - now)


def format_sse(board: KanbanBoard) -> str:
    """Frame one board as a server-sent event."""
    return f"data: {json.dumps(board.to_dict())}\n\n"


async def sse_stream(
    reconstructor: BoardReconstructor,
    *,
    interval: float = 1.0,
    is_disconnected: Disconnected | None = None,
) -> AsyncIterator[str]:
    async for board in board_updates(
        reconstructor,
        interval=interval,
        is_disconnected=is_disconnected,
    ):
        yield format_sse(board)


__all__ = ["board_updates", "format_sse", "sse_stream"]
