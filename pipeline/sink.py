"""Terminal stage that batches items and writes them out"""

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional

from core.enums import StageOutcome, Status
from core.exceptions import ExportError
from core.interfaces import BatchWriterFn
from core.logging_config import get_logger
from core.models import WorkItem

from .stage import DEFAULT_CAPACITY, DEFAULT_GRACE_PERIOD, Stage

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL = 30.0


async def _identity(item: WorkItem) -> WorkItem:
    return item


@dataclass
class _InterruptedWrite:
    """Writer task still running after its flush was cancelled"""
    write: asyncio.Future
    pending: List[WorkItem]
    batch: List[WorkItem]
    trigger: str


class BufferedSink(Stage):
    """Buffers arriving items and hands them to a batch writer.

    A flush runs when the buffer reaches ``batch_size`` items, when the
    periodic timer fires with a non-empty buffer, and once more when the
    sink drains. Only one flush runs at a time; a trigger that fires while
    a flush is in progress is dropped and its items wait for the next one.
    Items are marked EXPORTED (FAILED items stay FAILED) as they are handed
    to the writer.
    """

    def __init__(
        self,
        name: str,
        writer: BatchWriterFn,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: Optional[float] = DEFAULT_FLUSH_INTERVAL,
        capacity: int = DEFAULT_CAPACITY,
        concurrency: int = 1,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ):
        if batch_size < 1:
            raise ValueError(f"Sink batch_size must be >= 1, got {batch_size}")
        if flush_interval is not None and flush_interval <= 0:
            raise ValueError(f"Sink flush_interval must be > 0, got {flush_interval}")

        super().__init__(
            name,
            _identity,
            capacity=capacity,
            concurrency=concurrency,
            grace_period=grace_period,
        )
        self.batch_size = batch_size
        self.flush_interval = flush_interval

        self._writer = writer
        self._buffer: List[WorkItem] = []
        self._flush_lock = asyncio.Lock()
        self._timer_task: Optional[asyncio.Task] = None
        self._interrupted: Optional[_InterruptedWrite] = None

        self.flush_count = 0
        self.flush_failures = 0
        self.exported_count = 0
        self.failed_count = 0
        self.salvaged = 0
        self.locations: List[Any] = []

    @property
    def buffered(self) -> int:
        """Items waiting for the next flush"""
        return len(self._buffer)

    def link_to(self, downstream: Stage) -> Stage:
        raise ValueError(f"'{self.name}' is a terminal stage and cannot be linked onward")

    def start(self) -> None:
        super().start()
        if self.flush_interval is not None:
            self._timer_task = asyncio.create_task(self._run_timer(), name=f"{self.name}-timer")

    async def cancel(self, grace_period: Optional[float] = None) -> StageOutcome:
        outcome = await super().cancel(grace_period)
        await self._stop_timer()
        return outcome

    async def aclose(self) -> None:
        """Stop the sink and write out anything still buffered"""
        await super().aclose()
        await self._stop_timer()
        await self.final_flush()

    async def final_flush(self) -> int:
        """Write out whatever is buffered.

        Safe to call more than once: with an empty buffer it writes nothing.

        Raises:
            ExportError: If the writer fails; the items stay buffered
        """
        return await self._flush(trigger="final", wait=True)

    # ─────────────────────────────────────────────────────────
    # Buffering
    # ─────────────────────────────────────────────────────────

    async def _emit(self, item: WorkItem) -> None:
        self._buffer.append(item)
        self.stats.forwarded += 1
        logger.debug("item_buffered", stage=self.name, item_id=item.id, buffered=len(self._buffer))

        if len(self._buffer) >= self.batch_size:
            try:
                await self._flush(trigger="size")
            except ExportError:
                # Already logged; the batch stays buffered for the next trigger
                pass

    def _discard(self, item: WorkItem) -> None:
        # Items reaching a cancelled sink are kept for the final flush
        self._buffer.append(item)
        self.salvaged += 1
        logger.debug("item_salvaged", stage=self.name, item_id=item.id)

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            if not self._buffer:
                continue
            try:
                await self._flush(trigger="timer")
            except ExportError:
                continue

    async def _stop_timer(self) -> None:
        if self._timer_task is None:
            return
        self._timer_task.cancel()
        await asyncio.gather(self._timer_task, return_exceptions=True)
        self._timer_task = None

    async def _flush(self, trigger: str, wait: bool = False) -> int:
        if self._flush_lock.locked() and not wait:
            logger.debug("flush_coalesced", stage=self.name, trigger=trigger, buffered=len(self._buffer))
            return 0

        async with self._flush_lock:
            settled = await self._settle_interrupted_write()
            if not self._buffer:
                return settled

            pending, self._buffer = self._buffer, []
            batch = [
                item if item.status.is_terminal else item.advance(Status.EXPORTED)
                for item in pending
            ]

            # The writer may finish a file in a worker thread even after the
            # flushing task is cancelled, so the write runs as its own task
            write = asyncio.ensure_future(self._writer(batch))
            try:
                location = await asyncio.shield(write)
            except asyncio.CancelledError:
                self._interrupted = _InterruptedWrite(write, pending, batch, trigger)
                logger.warning("batch_write_interrupted", stage=self.name, trigger=trigger, count=len(batch))
                raise
            except Exception as e:
                self._buffer[:0] = pending
                self.flush_failures += 1
                logger.error(
                    "batch_write_failed",
                    stage=self.name,
                    trigger=trigger,
                    count=len(batch),
                    error=str(e),
                )
                if isinstance(e, ExportError):
                    raise
                raise ExportError(f"Failed to write batch of {len(batch)} items: {e}") from e

            self._record_flush(batch, location, trigger)
            return settled + len(batch)

    async def _settle_interrupted_write(self) -> int:
        """Account for a write whose flush was cancelled; caller holds the lock.

        A write that completed counts as flushed. A write that failed puts
        its items back at the front of the buffer.
        """
        interrupted = self._interrupted
        if interrupted is None:
            return 0

        # asyncio.wait leaves the write running if this task is cancelled
        await asyncio.wait({interrupted.write})
        self._interrupted = None

        write = interrupted.write
        error = None if write.cancelled() else write.exception()
        if write.cancelled() or error is not None:
            self._buffer[:0] = interrupted.pending
            self.flush_failures += 1
            logger.error(
                "batch_write_failed",
                stage=self.name,
                trigger=interrupted.trigger,
                count=len(interrupted.batch),
                error=str(error) if error is not None else "cancelled",
            )
            return 0

        self._record_flush(interrupted.batch, write.result(), interrupted.trigger)
        return len(interrupted.batch)

    def _record_flush(self, batch: List[WorkItem], location: Any, trigger: str) -> None:
        failed = sum(1 for item in batch if item.status == Status.FAILED)
        self.flush_count += 1
        self.failed_count += failed
        self.exported_count += len(batch) - failed
        self.locations.append(location)
        logger.info(
            "batch_flushed",
            stage=self.name,
            trigger=trigger,
            count=len(batch),
            failed=failed,
            location=str(location),
        )

    async def _on_drained(self) -> None:
        await self._stop_timer()
        await self.final_flush()
