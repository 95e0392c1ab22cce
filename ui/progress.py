"""Progress tracking"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from core.models import PipelineResult


class ProgressTracker(ABC):
    """Abstract progress tracker

    Implementations may be sync or async; the orchestrator awaits any
    awaitable a hook returns.
    """

    @abstractmethod
    def start_stage(self, stage_num: int, stage_name: str):
        """Start a stage"""
        pass

    @abstractmethod
    def complete_stage(self, stage_num: int):
        """Complete a stage"""
        pass

    @abstractmethod
    def fail(self, stage_num: Optional[int], message: str):
        """Mark stage (or the whole run when stage_num is None) as failed"""
        pass

    @abstractmethod
    def complete(self, result: PipelineResult):
        """Mark pipeline as complete"""
        pass


class ConsoleProgress(ProgressTracker):
    """Console-based progress tracker"""

    def __init__(self):
        self.stages: Dict[int, str] = {}
        self.completed = set()
        self.failed = set()

    def start_stage(self, stage_num: int, stage_name: str):
        """Start a stage"""
        self.stages[stage_num] = stage_name
        print(f"[◉] Stage {stage_num}: {stage_name}...")

    def complete_stage(self, stage_num: int):
        """Complete a stage"""
        self.completed.add(stage_num)
        print(f"[✓] Stage {stage_num}: {self.stages.get(stage_num, 'Unknown')} complete")

    def fail(self, stage_num: Optional[int], message: str):
        """Mark stage as failed"""
        if stage_num is None:
            print(f"[✗] Pipeline failed - {message}")
            return
        self.failed.add(stage_num)
        print(f"[✗] Stage {stage_num}: {self.stages.get(stage_num, 'Unknown')} failed - {message}")

    def complete(self, result: PipelineResult):
        """Mark pipeline as complete"""
        print(
            f"\n[✓] Pipeline complete! {result.exported} exported, "
            f"{result.failed} failed, {result.dropped} dropped "
            f"in {result.batches_written} batch(es)"
        )
        if result.fallback:
            print(f"    {result.fallback} item(s) were categorized by local rules")
