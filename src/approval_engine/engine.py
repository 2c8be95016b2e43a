"""
Workflow engine lifecycle.

A WorkflowEngine owns one connection to the event log and runs, for one
consumer identity:
- the dispatch loop (long-lived task)
- the recovery sweep (periodic task)

The producer and the board reconstructor share the same connection and are
used on demand by the HTTP layer. Mutual exclusion between instances comes
from the log's consumer-group mechanics; the engine itself holds no locks.
"""

from __future__ import annotations

import asyncio
from typing import Any

from .board import BoardReconstructor, KanbanBoard
from .config import EngineConfig
from .dispatcher import DispatchLoop, DispatchStats, EventProcessor
from .errors import WorkflowError
from .handlers import HandlerRegistry, default_handlers
from .lifecycle import ShutdownSignal
from .logging import StructuredLogger, get_logger
from .producer import Producer
from .recovery import RecoverySweep
from .streams import EventLog


class WorkflowEngine:
    """
    Example:
        ```python
        engine = WorkflowEngine(connect("redis://localhost:6379/0"))
        await engine.start()

        result = await engine.producer.submit_document("D1", "U1")
        board = await engine.build_board()

        await engine.stop()
        ```
    """

    def __init__(
        self,
        log: EventLog,
        config: EngineConfig | None = None,
        handlers: HandlerRegistry | None = None,
        *,
        logger: StructuredLogger | None = None,
    ):
        self._log = log
        self._config = config or EngineConfig()
        # Bound copy; the caller's logger context stays unchanged.
        self._logger = (logger or get_logger()).bind(
            stream=self._config.stream_key,
            group=self._config.group_name,
            consumer=self._config.consumer_name,
        )

        handlers = handlers or default_handlers(
            delay_s=self._config.handler_delay_s,
            logger=self._logger,
        )
        self._stats = DispatchStats()

        self.producer = Producer(log, self._config, logger=self._logger)
        self.processor = EventProcessor(log, handlers, self._config, stats=self._stats, logger=self._logger)
        self.dispatch_loop = DispatchLoop(
            log, self.processor, self._config, logger=self._logger.bind(operation="dispatch")
        )
        self.recovery = RecoverySweep(
            log, self.processor, self._config, logger=self._logger.bind(operation="recovery")
        )
        self.board = BoardReconstructor(log, self._config, logger=self._logger)

        self._shutdown = ShutdownSignal()
        self._dispatch_task: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._started = False
        self._stopped = False

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def log(self) -> EventLog:
        return self._log

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    async def start(self) -> None:
        """Ensure the consumer group exists and launch the background tasks."""
        if self._stopped:
            raise WorkflowError("engine has been stopped and cannot be restarted")
        if self._started:
            return

        await self.dispatch_loop.ensure_group()
        self._dispatch_task = asyncio.create_task(
            self.dispatch_loop.run(self._shutdown),
            name=f"dispatch:{self._config.consumer_name}",
        )
        self._sweep_task = asyncio.create_task(
            self.recovery.run(self._shutdown),
            name=f"recovery:{self._config.consumer_name}",
        )
        self._started = True
        self._logger.info(f"Engine started as {self._config.consumer_name}")

    async def stop(self) -> None:
        """Stop the background tasks, then close the log connection.

        Safe to call more than once. The dispatch loop is allowed to finish
        its current iteration; the recovery sweep is cancelled.
        """
        if self._stopped:
            return
        self._stopped = True
        self._shutdown.set()

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if self._dispatch_task is not None:
            try:
                await self._dispatch_task
            except Exception as e:
                self._logger.log_error(e, "Dispatch loop exited with an error")
            self._dispatch_task = None

        await self._log.close()
        self._logger.info("Engine stopped")

    async def build_board(self) -> KanbanBoard:
        return await self.board.build()

    def stats(self) -> dict[str, Any]:
        return {
            "consumer": self._config.consumer_name,
            "running": self.is_running,
            **self._stats.to_dict(),
        }


__all__ = ["WorkflowEngine"]
