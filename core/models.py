"""Core data models for the Ledgerflow pipeline"""

import datetime as dt
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .enums import CategorySource, Status
from .exceptions import InvalidTransitionError


# ─────────────────────────────────────────────────────────────
# Work items
# ─────────────────────────────────────────────────────────────

class WorkItem(BaseModel):
    """One transaction moving through the pipeline.

    Frozen: every change goes through ``advance``, ``fail`` or ``evolve``
    and yields a new instance, so two workers never share a mutable item.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    date: dt.date
    amount: Decimal
    description: str
    counterparty: Optional[str] = None
    clean_description: Optional[str] = None
    email_subject: Optional[str] = None
    email_snippet: Optional[str] = None
    category: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    categorized_by: Optional[CategorySource] = None
    status: Status = Status.FETCHED
    error: Optional[str] = None

    @property
    def display_description(self) -> str:
        """Cleaned description when available, raw otherwise"""
        return self.clean_description or self.description

    def evolve(self, **changes: Any) -> "WorkItem":
        """Copy with overrides; status changes must use advance/fail"""
        if "status" in changes and changes["status"] != self.status:
            raise InvalidTransitionError(self.status.value, str(changes["status"]))
        return self._copy_with(changes)

    def advance(self, status: Status, **changes: Any) -> "WorkItem":
        """Copy moved forward to ``status`` with optional field overrides"""
        if not self.status.can_advance_to(status):
            raise InvalidTransitionError(self.status.value, status.value)
        return self._copy_with({**changes, "status": status})

    def fail(self, reason: str, **changes: Any) -> "WorkItem":
        """Copy diverted to the terminal FAILED status"""
        return self.advance(Status.FAILED, error=reason, **changes)

    def _copy_with(self, changes: dict[str, Any]) -> "WorkItem":
        # Validate again so overrides obey field constraints
        return type(self).model_validate({**self.model_dump(), **changes})


class CategoryAssignment(BaseModel):
    """Categorization collaborator response"""
    model_config = ConfigDict(frozen=True)

    category: str
    confidence: float = Field(ge=0, le=1)


class EmailContext(BaseModel):
    """Email context found for a transaction"""
    model_config = ConfigDict(frozen=True)

    subject: str
    snippet: str = ""
    received_at: Optional[dt.datetime] = None


# ─────────────────────────────────────────────────────────────
# Stage results (created per transform call, never persisted)
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Ok:
    """Transform (or its fallback) produced an item to forward"""
    item: WorkItem
    via_fallback: bool = False


@dataclass(frozen=True)
class Skip:
    """Transform declined the item; nothing is forwarded"""
    reason: str = ""


@dataclass(frozen=True)
class Fatal:
    """Item is malformed; it is dropped with a diagnostic"""
    error: Exception


StageResult = Union[Ok, Skip, Fatal]


@dataclass(frozen=True)
class Diagnostic:
    """Record of a dropped item"""
    stage: str
    item_id: str
    message: str
    at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


@dataclass
class StageStats:
    """Per-stage counters"""
    received: int = 0
    forwarded: int = 0
    fallback: int = 0
    failed: int = 0
    passed_through: int = 0
    skipped: int = 0
    dropped: int = 0
    cancelled: int = 0
    peak_load: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "received": self.received,
            "forwarded": self.forwarded,
            "fallback": self.fallback,
            "failed": self.failed,
            "passed_through": self.passed_through,
            "skipped": self.skipped,
            "dropped": self.dropped,
            "cancelled": self.cancelled,
            "peak_load": self.peak_load,
        }


# ─────────────────────────────────────────────────────────────
# Run summary
# ─────────────────────────────────────────────────────────────

class PipelineResult(BaseModel):
    """Summary of one pipeline run"""
    started_at: dt.datetime
    finished_at: Optional[dt.datetime] = None
    source: Optional[str] = None
    submitted: int = 0
    exported: int = 0
    failed: int = 0
    forwarded: int = 0
    fallback: int = 0
    dropped: int = 0
    skipped: int = 0
    cancelled: int = 0
    batches_written: int = 0
    stage_stats: dict[str, dict[str, int]] = {}
    success: bool = False
    timed_out: bool = False
    error_message: Optional[str] = None

    @property
    def duration(self) -> Optional[dt.timedelta]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def degraded(self) -> bool:
        """Run finished but some items fell back, failed or were dropped"""
        return self.success and (self.fallback > 0 or self.failed > 0 or self.dropped > 0)
