"""Shutdown signalling for the engine's background activities.

The dispatch loop and the recovery sweep check one shared ShutdownSignal at
natural breakpoints: between blocking reads, and while sleeping through a
backoff or a sweep period.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


@dataclass
class ShutdownSignal:
    """One-shot flag observed by long-running loops.

    Usage:
        shutdown = ShutdownSignal()

        while not shutdown.is_set:
            ...
            await shutdown.sleep(2.0)  # returns early once set

        # elsewhere:
        shutdown.set()
    """

    _event: asyncio.Event = field(default_factory=asyncio.Event, init=False)

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self) -> None:
        """Request shutdown (idempotent)."""
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on shutdown.

        Returns:
            True if shutdown was requested.
        """
        if seconds <= 0:
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return self._event.is_set()


__all__ = ["ShutdownSignal"]
