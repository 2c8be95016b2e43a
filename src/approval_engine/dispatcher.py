"""
Dispatch loop: consumer-group delivery with at-least-once processing.

Each engine instance runs one DispatchLoop under a unique consumer name.
Entries are decoded, handed to the side-effect handler for their kind, and
acknowledged only after the handler returns. A failing handler leaves the
entry pending; the recovery sweep reclaims it later.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from .config import EngineConfig
from .errors import DecodeError, DeliveryError, ErrorContext, HandlerFailure
from .events import StreamEntry, decode_event
from .handlers import HandlerRegistry
from .lifecycle import ShutdownSignal
from .logging import StructuredLogger, get_logger
from .streams import EventLog


class ProcessOutcome(str, Enum):
    ACKED = "acked"
    HANDLER_FAILED = "handler_failed"
    DECODE_FAILED = "decode_failed"
    ACK_FAILED = "ack_failed"


@dataclass
class DispatchStats:
    """Counters shared by the dispatch loop and the recovery sweep."""

    delivered: int = 0
    acked: int = 0
    handler_failures: int = 0
    decode_failures: int = 0
    ack_failures: int = 0
    delivery_errors: int = 0
    sweeps: int = 0
    reclaimed: int = 0
    recovery_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EventProcessor:
    """Runs decode -> handle -> ack for one entry.

    Used by both the dispatch loop and the recovery sweep, so reclaimed
    entries follow exactly the same path as fresh deliveries.
    """

    def __init__(
        self,
        log: EventLog,
        handlers: HandlerRegistry,
        config: EngineConfig,
        *,
        stats: DispatchStats | None = None,
        logger: StructuredLogger | None = None,
    ):
        self._log = log
        self._handlers = handlers
        self._config = config
        self.stats = stats or DispatchStats()
        self._logger = logger or get_logger()

    async def process(self, entry: StreamEntry, *, logger: StructuredLogger | None = None) -> ProcessOutcome:
        """Decode, handle and acknowledge ``entry``.

        ``logger`` overrides the processor's own logger so the caller's
        context (operation, trace id) follows the entry.
        """
        logger = logger or self._logger
        try:
            event = decode_event(entry.fields, event_id=entry.event_id)
        except DecodeError as e:
            # Redelivery cannot fix a malformed entry: settle it so it does
            # not cycle through recovery forever.
            self.stats.decode_failures += 1
            logger.log_error(e, f"Dropping undecodable entry {entry.event_id}")
            await self._ack(entry.event_id, logger)
            return ProcessOutcome.DECODE_FAILED

        try:
            await self._handlers.dispatch(entry.event_id, event)
        except HandlerFailure as e:
            self.stats.handler_failures += 1
            logger.log_error(e, f"Failed to process: {entry.event_id}")
            return ProcessOutcome.HANDLER_FAILED

        if not await self._ack(entry.event_id, logger):
            return ProcessOutcome.ACK_FAILED

        self.stats.acked += 1
        logger.log_acked(entry.event_id, event.kind.value)
        return ProcessOutcome.ACKED

    async def _ack(self, event_id: str, logger: StructuredLogger) -> bool:
        try:
            await self._log.ack(self._config.stream_key, self._config.group_name, event_id)
        except Exception as e:
            # Unacknowledged entries stay pending and are reclaimed later.
            self.stats.ack_failures += 1
            logger.log_error(e, f"Failed to acknowledge: {event_id}", event_id=event_id)
            return False
        return True


class DispatchLoop:
    """Long-lived consumer of new entries for one consumer identity."""

    def __init__(
        self,
        log: EventLog,
        processor: EventProcessor,
        config: EngineConfig,
        *,
        logger: StructuredLogger | None = None,
    ):
        self._log = log
        self._processor = processor
        self._config = config
        self._logger = logger or get_logger()

    @property
    def stats(self) -> DispatchStats:
        return self._processor.stats

    async def ensure_group(self) -> bool:
        """Create the consumer group at cursor 0 unless it already exists."""
        created = await self._log.create_group(
            self._config.stream_key,
            self._config.group_name,
            start_id="0",
        )
        if created:
            self._logger.info(f"Created consumer group {self._config.group_name}")
        return created

    async def poll_once(self) -> int:
        """Issue one blocking read and process the delivered batch.

        Returns:
            Number of entries delivered.

        Raises:
            DeliveryError: the read itself failed.
        """
        try:
            batch = await self._log.read_group(
                self._config.stream_key,
                self._config.group_name,
                self._config.consumer_name,
                block_ms=self._config.block_ms,
                count=self._config.read_count,
            )
        except Exception as e:
            raise DeliveryError(
                f"Stream processing error: {e}",
                context=ErrorContext(
                    stream=self._config.stream_key,
                    group=self._config.group_name,
                    consumer=self._config.consumer_name,
                    operation="read_group",
                ),
                cause=e,
            ) from e

        self.stats.delivered += len(batch)
        if batch:
            with self._logger.trace_context():
                for entry in batch:
                    await self._processor.process(entry, logger=self._logger)
        return len(batch)

    async def run(self, shutdown: ShutdownSignal) -> None:
        """Consume until ``shutdown`` is set.

        The shutdown flag is checked between reads; the bounded block time
        guarantees it is observed at least once per block interval. A batch
        already delivered is processed to completion before exiting.
        """
        while not shutdown.is_set:
            try:
                await self.poll_once()
            except DeliveryError as e:
                if shutdown.is_set:
                    break
                self.stats.delivery_errors += 1
                self._logger.log_error(e)
                if e.cause is not None and "NOGROUP" in str(e.cause):
                    await self._recreate_group()
                await shutdown.sleep(self._config.error_backoff_s)

        self._logger.info("Dispatch loop stopped")

    async def _recreate_group(self) -> None:
        try:
            await self.ensure_group()
        except Exception as e:
            self._logger.log_error(e, "Failed to recreate consumer group")


__all__ = ["ProcessOutcome", "DispatchStats", "EventProcessor", "DispatchLoop"]
