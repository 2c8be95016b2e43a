"""
Recovery sweep: reclaims entries stuck with a crashed or hung consumer.

Periodically claims pending entries idle longer than the threshold,
transferring ownership to this instance's consumer, and reprocesses them
through the same EventProcessor as the dispatch loop. Sweep failures are
logged and left for the next period.
"""

from __future__ import annotations

from .config import EngineConfig
from .dispatcher import EventProcessor, ProcessOutcome
from .errors import ErrorContext, RecoveryError
from .lifecycle import ShutdownSignal
from .logging import StructuredLogger, get_logger
from .streams import EventLog


class RecoverySweep:
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
        # XAUTOCLAIM scan position carried across sweeps; "0-0" restarts the scan.
        self._cursor = "0-0"

    async def sweep_once(self) -> int:
        """Claim and reprocess one batch of stale entries.

        Records logged during one sweep share a trace id.

        Returns:
            Number of entries reclaimed (0 when the sweep failed).
        """
        with self._logger.trace_context():
            return await self._sweep()

    async def _sweep(self) -> int:
        stats = self._processor.stats
        stats.sweeps += 1
        try:
            result = await self._log.claim_stale(
                self._config.stream_key,
                self._config.group_name,
                self._config.consumer_name,
                min_idle_ms=self._config.min_idle_ms,
                count=self._config.claim_count,
                start_id=self._cursor,
            )
            self._cursor = result.next_start_id or "0-0"

            if result.deleted_ids:
                # Payload already trimmed from the stream; nothing to reprocess.
                await self._log.ack(self._config.stream_key, self._config.group_name, *result.deleted_ids)
                self._logger.warning(
                    f"Settled {len(result.deleted_ids)} pending entries no longer in the stream",
                    event_ids=result.deleted_ids,
                )
        except Exception as e:
            stats.recovery_errors += 1
            self._logger.log_error(
                RecoveryError(
                    f"Error during message recovery: {e}",
                    context=ErrorContext(
                        stream=self._config.stream_key,
                        group=self._config.group_name,
                        consumer=self._config.consumer_name,
                        operation="claim_stale",
                    ),
                    cause=e,
                )
            )
            return 0

        if not result.entries:
            return 0

        stats.reclaimed += len(result.entries)
        self._logger.log_recovered(len(result.entries))
        for entry in result.entries:
            outcome = await self._processor.process(entry, logger=self._logger)
            if outcome is not ProcessOutcome.ACKED:
                self._logger.warning(
                    f"Reclaimed entry {entry.event_id} not settled ({outcome.value})",
                    event_id=entry.event_id,
                )
        return len(result.entries)

    async def run(self, shutdown: ShutdownSignal) -> None:
        """Sweep once per period until ``shutdown`` is set."""
        while not await shutdown.sleep(self._config.sweep_interval_s):
            await self.sweep_once()
        self._logger.info("Recovery sweep stopped")


__all__ = ["RecoverySweep"]
