"""Bounded, worker-pool-backed pipeline stage

A Stage owns one bounded queue and a fixed pool of worker tasks. Each
worker takes an item, applies the stage transform and hands the result to
the downstream stage, so at most ``capacity + concurrency`` items are ever
queued or in flight inside one stage.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from core.enums import StageOutcome, Status
from core.exceptions import FatalItemError, StageClosedError, TransientItemError
from core.interfaces import FallbackFn, Transform
from core.logging_config import get_logger
from core.models import Diagnostic, Fatal, Ok, Skip, StageResult, StageStats, WorkItem

logger = get_logger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_CONCURRENCY = 4
DEFAULT_GRACE_PERIOD = 5.0

TransformFn = Callable[[WorkItem], Awaitable[Optional[WorkItem]]]
ValidateFn = Callable[[WorkItem], bool]


class Stage:
    """Applies one async transform to every submitted item.

    Items are admitted in FIFO order, but with ``concurrency > 1`` they may
    leave the stage in a different order. Item-level failures never escape:
    they become ``StageResult`` outcomes and are counted in ``stats``.
    """

    def __init__(
        self,
        name: str,
        transform: TransformFn,
        *,
        fallback: Optional[FallbackFn] = None,
        validate: Optional[ValidateFn] = None,
        capacity: int = DEFAULT_CAPACITY,
        concurrency: int = DEFAULT_CONCURRENCY,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ):
        if capacity < 1:
            raise ValueError(f"Stage capacity must be >= 1, got {capacity}")
        if concurrency < 1:
            raise ValueError(f"Stage concurrency must be >= 1, got {concurrency}")

        self.name = name
        self.capacity = capacity
        self.concurrency = concurrency
        self.grace_period = grace_period
        self.stats = StageStats()
        self.diagnostics: List[Diagnostic] = []

        self._transform = transform
        self._fallback = fallback
        self._validate = validate
        self._downstream: Optional["Stage"] = None
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._drain_task: Optional[asyncio.Task] = None
        self._completion: Optional[asyncio.Future] = None
        self._accepting = False
        self._cancelling = False
        self._in_flight = 0

    @classmethod
    def from_transform(cls, transform: Transform[WorkItem, WorkItem], **options) -> "Stage":
        """Build a stage around a Transform implementation"""
        fallback = transform.fallback if transform.supports_fallback else None
        return cls(
            transform.name,
            transform.execute,
            fallback=fallback,
            validate=transform.validate_input,
            **options,
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, capacity={self.capacity}, "
            f"concurrency={self.concurrency})"
        )

    # ─────────────────────────────────────────────────────────
    # Wiring and lifecycle
    # ─────────────────────────────────────────────────────────

    def link_to(self, downstream: "Stage") -> "Stage":
        """Send this stage's output to ``downstream``"""
        if self._completion is not None:
            raise RuntimeError(f"Stage '{self.name}' is already running")
        self._downstream = downstream
        return downstream

    @property
    def downstream(self) -> Optional["Stage"]:
        return self._downstream

    @property
    def accepting(self) -> bool:
        return self._accepting

    @property
    def load(self) -> int:
        """Items currently queued or being transformed"""
        queued = self._queue.qsize() if self._queue is not None else 0
        return queued + self._in_flight

    @property
    def completion(self) -> asyncio.Future:
        """Resolves to a StageOutcome once the stage has finished"""
        if self._completion is None:
            raise RuntimeError(f"Stage '{self.name}' has not been started")
        return self._completion

    def start(self) -> None:
        """Create the queue and worker pool; must run inside an event loop"""
        if self._completion is not None:
            raise RuntimeError(f"Stage '{self.name}' was already started")

        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.capacity)
        self._completion = loop.create_future()
        self._accepting = True
        self._workers = [
            asyncio.create_task(self._work(), name=f"{self.name}-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(
            "stage_started",
            stage=self.name,
            capacity=self.capacity,
            concurrency=self.concurrency,
        )

    async def submit(self, item: WorkItem) -> None:
        """Queue an item, waiting while the queue is full"""
        if not self._accepting:
            raise StageClosedError(self.name)

        await self._queue.put(item)
        self.stats.received += 1
        self.stats.peak_load = max(self.stats.peak_load, self.load)
        logger.debug("item_queued", stage=self.name, item_id=item.id, status=item.status.value)

    def complete(self) -> None:
        """Signal that no more items will be submitted.

        The stage drains queued and in-flight items, then completes its
        downstream stage and resolves ``completion``.
        """
        if not self._accepting:
            return
        self._accepting = False
        logger.debug("stage_completing", stage=self.name, queued=self._queue.qsize())
        self._drain_task = asyncio.create_task(self._drain(), name=f"{self.name}-drain")

    async def cancel(self, grace_period: Optional[float] = None) -> StageOutcome:
        """Stop admitting work and wind the stage down.

        Queued items are discarded; items already being transformed get
        ``grace_period`` seconds to finish before the workers are cancelled.
        """
        if self._completion is None or self._completion.done():
            self._accepting = False
            return StageOutcome.CANCELLED

        grace = self.grace_period if grace_period is None else grace_period
        self._accepting = False
        self._cancelling = True

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            await asyncio.gather(self._drain_task, return_exceptions=True)

        self._discard_queued()
        try:
            await asyncio.wait_for(self._queue.join(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(
                "stage_grace_period_expired",
                stage=self.name,
                in_flight=self._in_flight,
                grace_period=grace,
            )
        await self._stop_workers()

        self._resolve(StageOutcome.CANCELLED)
        logger.info("stage_cancelled", stage=self.name, **self.stats.as_dict())
        return StageOutcome.CANCELLED

    async def aclose(self) -> None:
        """Release the worker pool if the stage is still running"""
        if self._completion is not None and not self._completion.done():
            await self.cancel(grace_period=0)

    # ─────────────────────────────────────────────────────────
    # Workers
    # ─────────────────────────────────────────────────────────

    async def _work(self) -> None:
        while True:
            item = await self._queue.get()
            self._in_flight += 1
            try:
                if self._cancelling:
                    self._discard(item)
                else:
                    await self._process(item)
            except asyncio.CancelledError:
                self.stats.cancelled += 1
                raise
            except Exception as e:
                # A bug in a hook must not take the worker down with it
                logger.error("stage_worker_error", stage=self.name, item_id=item.id, exc_info=e)
                self._drop(item, e)
            finally:
                self._in_flight -= 1
                self._queue.task_done()

    async def _process(self, item: WorkItem) -> None:
        if item.status == Status.FAILED:
            self.stats.passed_through += 1
            await self._emit(item)
            return

        result = await self._apply(item)

        if isinstance(result, Fatal):
            self._drop(item, result.error)
            return
        if isinstance(result, Skip):
            self.stats.skipped += 1
            logger.debug("item_skipped", stage=self.name, item_id=item.id, reason=result.reason)
            return

        output = result.item
        if output.status != item.status and not item.status.can_advance_to(output.status):
            output = item.fail(f"{self.name}: status regressed to '{output.status.value}'")

        if result.via_fallback:
            self.stats.fallback += 1
        if output.status == Status.FAILED:
            self.stats.failed += 1
        await self._emit(output)

    async def _apply(self, item: WorkItem) -> StageResult:
        """Run validation, transform and fallback for one item"""
        if self._validate is not None and not self._validate(item):
            return Fatal(FatalItemError(f"{self.name} rejected malformed input", item_id=item.id))

        try:
            output = await self._transform(item)
        except FatalItemError as e:
            return Fatal(e)
        except Exception as e:
            return await self._recover(item, e)

        if output is None:
            return Skip(reason=f"filtered by {self.name}")
        return Ok(output)

    async def _recover(self, item: WorkItem, error: Exception) -> StageResult:
        if isinstance(error, TransientItemError):
            logger.warning("item_transform_failed", stage=self.name, item_id=item.id, error=str(error))
        else:
            logger.warning(
                "item_transform_failed",
                stage=self.name,
                item_id=item.id,
                error=str(error),
                exc_info=error,
            )

        if self._fallback is None:
            return Ok(item.fail(f"{self.name}: {error}"))

        try:
            substitute = await self._fallback(item, error)
        except FatalItemError as e:
            return Fatal(e)
        except Exception as fallback_error:
            logger.warning(
                "item_fallback_failed",
                stage=self.name,
                item_id=item.id,
                error=str(fallback_error),
            )
            return Ok(item.fail(f"{self.name}: {fallback_error}"))

        logger.info("item_fallback_applied", stage=self.name, item_id=item.id)
        return Ok(substitute, via_fallback=True)

    async def _emit(self, item: WorkItem) -> None:
        """Hand a finished item to the downstream stage"""
        if self._downstream is None:
            self.stats.forwarded += 1
            logger.debug("item_completed", stage=self.name, item_id=item.id, status=item.status.value)
            return

        try:
            await self._downstream.submit(item)
        except StageClosedError:
            self.stats.cancelled += 1
            logger.warning(
                "item_not_delivered",
                stage=self.name,
                item_id=item.id,
                downstream=self._downstream.name,
            )
            return

        self.stats.forwarded += 1
        logger.debug(
            "item_forwarded",
            stage=self.name,
            item_id=item.id,
            status=item.status.value,
            downstream=self._downstream.name,
        )

    def _drop(self, item: WorkItem, error: Exception) -> None:
        self.stats.dropped += 1
        self.diagnostics.append(Diagnostic(stage=self.name, item_id=item.id, message=str(error)))
        logger.error("item_dropped", stage=self.name, item_id=item.id, error=str(error))

    def _discard(self, item: WorkItem) -> None:
        """Handle an item that arrives after cancellation"""
        self.stats.cancelled += 1
        logger.debug("item_cancelled", stage=self.name, item_id=item.id)

    def _discard_queued(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._discard(item)
            self._queue.task_done()

    # ─────────────────────────────────────────────────────────
    # Shutdown
    # ─────────────────────────────────────────────────────────

    async def _drain(self) -> None:
        try:
            await self._queue.join()
            await self._stop_workers()
            await self._on_drained()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("stage_drain_failed", stage=self.name, error=str(e))
            self._complete_downstream()
            if not self._completion.done():
                self._completion.set_exception(e)
            return

        self._complete_downstream()
        self._resolve(StageOutcome.COMPLETED)
        logger.info("stage_completed", stage=self.name, **self.stats.as_dict())

    async def _on_drained(self) -> None:
        """Hook run after the last item has been processed"""

    def _complete_downstream(self) -> None:
        if self._downstream is not None:
            self._downstream.complete()

    async def _stop_workers(self) -> None:
        for worker in self._workers:
            if not worker.done():
                worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

    def _resolve(self, outcome: StageOutcome) -> None:
        if not self._completion.done():
            self._completion.set_result(outcome)
