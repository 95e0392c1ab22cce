"""Pipeline orchestrator"""

import asyncio
import datetime as dt
from typing import AsyncIterable, Iterable, List, Optional, Sequence, Union

from core.enums import StageOutcome
from core.exceptions import (
    ExportError,
    LedgerflowError,
    PipelineError,
    PipelineTimeoutError,
    SourceError,
)
from core.logging_config import get_logger
from core.models import PipelineResult, WorkItem
from pipeline.sink import BufferedSink
from pipeline.stage import DEFAULT_GRACE_PERIOD, Stage
from ui.progress import ProgressTracker

logger = get_logger(__name__)

DEFAULT_FINAL_FLUSH_TIMEOUT = 10.0

Source = Union[Iterable[WorkItem], AsyncIterable[WorkItem]]


async def _iterate(source: Source):
    if hasattr(source, "__aiter__"):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item


class PipelineOrchestrator:
    """Pipeline coordinator

    Links an ordered chain of stages ending in a BufferedSink, feeds a
    source into the first stage and waits for the sink to drain. An
    orchestrator runs once: its stages cannot be restarted.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        progress: Optional[ProgressTracker] = None,
        *,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        final_flush_timeout: float = DEFAULT_FINAL_FLUSH_TIMEOUT,
    ):
        if not stages:
            raise ValueError("A pipeline needs at least one stage")
        if not isinstance(stages[-1], BufferedSink):
            raise ValueError("The last pipeline stage must be a BufferedSink")

        self.stages: List[Stage] = list(stages)
        self.sink: BufferedSink = stages[-1]
        self.progress = progress
        self.grace_period = grace_period
        self.final_flush_timeout = final_flush_timeout

        for upstream, downstream in zip(self.stages, self.stages[1:]):
            upstream.link_to(downstream)

    async def run(
        self,
        source: Source,
        deadline: Optional[float] = None,
        source_name: Optional[str] = None,
    ) -> PipelineResult:
        """Push every source item through the pipeline.

        Args:
            source: Sync or async iterable of WorkItems
            deadline: Seconds to wait for the sink to drain (None waits forever)
            source_name: Label recorded in the result

        Returns:
            Run summary

        Raises:
            PipelineTimeoutError: The deadline passed; buffered output was flushed
            SourceError: The source failed mid-stream
            ExportError: The final flush failed
        """
        result = PipelineResult(started_at=dt.datetime.now(dt.timezone.utc), source=source_name)
        logger.info("pipeline_started", source=source_name, stages=[s.name for s in self.stages], deadline=deadline)

        await self._start_stages()
        feeder = asyncio.create_task(self._feed(source, result), name="pipeline-feeder")
        drive = asyncio.create_task(self._drive(feeder), name="pipeline-drive")

        try:
            done, _ = await asyncio.wait({drive}, timeout=deadline)
        except asyncio.CancelledError:
            await self._abort(feeder, drive, "cancelled")
            self._finish(result, success=False, error="Pipeline was cancelled")
            raise

        if drive not in done:
            await self._abort(feeder, drive, "timeout")
            error = PipelineTimeoutError(deadline, result=result)
            self._finish(result, success=False, error=str(error), timed_out=True)
            await self._notify(self.progress and self.progress.fail, None, str(error))
            logger.error("pipeline_timed_out", deadline=deadline, **self._counts(result))
            raise error

        try:
            drive.result()
        except Exception as e:
            await self._abort(feeder, drive, "error")
            self._finish(result, success=False, error=str(e))
            if isinstance(e, PipelineError):
                e.result = result
            await self._notify(self.progress and self.progress.fail, None, str(e))
            logger.error("pipeline_failed", error=str(e), **self._counts(result))
            raise

        self._finish(result, success=True)
        await self._notify(self.progress and self.progress.complete, result)
        logger.info(
            "pipeline_completed",
            duration=result.duration.total_seconds(),
            degraded=result.degraded,
            **self._counts(result),
        )
        return result

    # ─────────────────────────────────────────────────────────
    # Running
    # ─────────────────────────────────────────────────────────

    async def _start_stages(self) -> None:
        for index, stage in enumerate(self.stages):
            stage.start()
            stage.completion.add_done_callback(
                lambda future, index=index, stage=stage: self._stage_finished(index, stage, future)
            )
            await self._notify(self.progress and self.progress.start_stage, index, stage.name)

    async def _feed(self, source: Source, result: PipelineResult) -> None:
        first = self.stages[0]
        try:
            async for item in _iterate(source):
                await first.submit(item)
                result.submitted += 1
        except LedgerflowError:
            raise
        except Exception as e:
            raise SourceError(f"Source failed after {result.submitted} items: {e}") from e
        logger.info("source_exhausted", submitted=result.submitted)
        first.complete()

    async def _drive(self, feeder: asyncio.Task) -> None:
        await feeder
        outcome = await asyncio.shield(self.sink.completion)
        if outcome != StageOutcome.COMPLETED:
            raise ExportError(f"Sink '{self.sink.name}' finished as {outcome.value}")

    async def _abort(self, feeder: asyncio.Task, drive: asyncio.Task, reason: str) -> None:
        """Cancel everything upstream-first, then flush what reached the sink"""
        logger.warning("pipeline_shutting_down", reason=reason)
        for task in (drive, feeder):
            task.cancel()
        await asyncio.gather(drive, feeder, return_exceptions=True)

        for stage in self.stages:
            await stage.cancel(self.grace_period)

        try:
            await asyncio.wait_for(self.sink.final_flush(), timeout=self.final_flush_timeout)
        except asyncio.TimeoutError:
            logger.error("final_flush_timed_out", timeout=self.final_flush_timeout, buffered=self.sink.buffered)
        except ExportError as e:
            logger.error("final_flush_failed", error=str(e), buffered=self.sink.buffered)

    def _stage_finished(self, index: int, stage: Stage, future: asyncio.Future) -> None:
        if self.progress is None:
            return
        if future.cancelled():
            outcome = "cancelled"
        elif future.exception() is not None:
            outcome = str(future.exception())
        elif future.result() == StageOutcome.CANCELLED:
            outcome = "cancelled"
        else:
            self._schedule(self.progress.complete_stage(index))
            return
        self._schedule(self.progress.fail(index, f"{stage.name} {outcome}"))

    @staticmethod
    def _schedule(hook_result) -> None:
        # Done callbacks cannot await; async trackers run as tasks
        if hasattr(hook_result, "__await__"):
            asyncio.ensure_future(hook_result)

    @staticmethod
    async def _notify(hook, *args) -> None:
        # Handle both sync and async progress trackers
        if not hook:
            return
        hook_result = hook(*args)
        if hasattr(hook_result, "__await__"):
            await hook_result

    # ─────────────────────────────────────────────────────────
    # Result
    # ─────────────────────────────────────────────────────────

    def _finish(
        self,
        result: PipelineResult,
        success: bool,
        error: Optional[str] = None,
        timed_out: bool = False,
    ) -> None:
        upstream = self.stages[:-1]
        result.finished_at = dt.datetime.now(dt.timezone.utc)
        result.success = success
        result.timed_out = timed_out
        result.error_message = error
        result.exported = self.sink.exported_count
        result.failed = self.sink.failed_count
        result.batches_written = self.sink.flush_count
        result.forwarded = sum(stage.stats.forwarded for stage in upstream)
        result.fallback = sum(stage.stats.fallback for stage in self.stages)
        result.dropped = sum(stage.stats.dropped for stage in self.stages)
        result.skipped = sum(stage.stats.skipped for stage in self.stages)
        result.cancelled = sum(stage.stats.cancelled for stage in self.stages)
        result.stage_stats = {stage.name: stage.stats.as_dict() for stage in self.stages}

    @staticmethod
    def _counts(result: PipelineResult) -> dict:
        return {
            "submitted": result.submitted,
            "exported": result.exported,
            "failed": result.failed,
            "fallback": result.fallback,
            "dropped": result.dropped,
            "batches": result.batches_written,
        }
