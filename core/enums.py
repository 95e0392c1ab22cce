"""Core enumerations for Ledgerflow"""

from enum import Enum


class Status(str, Enum):
    """Processing status of a work item.

    The non-terminal statuses are ordered; FAILED is a parallel terminal
    state reachable from any non-terminal one.
    """
    FETCHED = "fetched"
    CLEANED = "cleaned"
    ENRICHED = "enriched"
    CATEGORIZED = "categorized"
    EXPORTED = "exported"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the forward ordering (FAILED ranks last)"""
        return _STATUS_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (Status.EXPORTED, Status.FAILED)

    def can_advance_to(self, target: "Status") -> bool:
        """Whether moving from this status to target keeps status monotonic"""
        if self.is_terminal:
            return False
        if target == Status.FAILED:
            return True
        return target.rank > self.rank


_STATUS_ORDER = (
    Status.FETCHED,
    Status.CLEANED,
    Status.ENRICHED,
    Status.CATEGORIZED,
    Status.EXPORTED,
    Status.FAILED,
)


class StageOutcome(str, Enum):
    """How a stage finished"""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CategorySource(str, Enum):
    """Where a category assignment came from"""
    LLM = "llm"
    RULES = "rules"


class LLMProvider(str, Enum):
    """Supported LLM providers"""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"


class Category(str, Enum):
    """Closed set of spending categories"""
    FOOD_AND_DINING = "Food & Dining"
    TRANSPORTATION = "Transportation"
    SHOPPING = "Shopping"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    HEALTHCARE = "Healthcare"
    EDUCATION = "Education"
    TRAVEL = "Travel"
    FINANCIAL_SERVICES = "Financial Services"
    BUSINESS_SERVICES = "Business Services"
    OTHER = "Other"
