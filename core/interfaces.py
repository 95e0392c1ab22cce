"""Abstract base classes and collaborator contracts for Ledgerflow components"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from .models import CategoryAssignment, EmailContext, WorkItem

InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")


class Transform(ABC, Generic[InputT, OutputT]):
    """A single async step wrapped by a pipeline Stage"""

    # Set to True by transforms that override ``fallback``
    supports_fallback: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable step name"""
        pass

    @property
    @abstractmethod
    def stage_number(self) -> int:
        """Position of the step in the pipeline"""
        pass

    @abstractmethod
    async def execute(self, input_data: InputT) -> Optional[OutputT]:
        """Transform one item; return None to skip it"""
        pass

    @abstractmethod
    def validate_input(self, input_data: InputT) -> bool:
        """Validate input before processing"""
        pass

    async def fallback(self, input_data: InputT, error: Exception) -> OutputT:
        """Local substitute applied when ``execute`` fails transiently"""
        raise error


class LLMTask(ABC):
    """Abstract base class for LLM-powered tasks"""

    @property
    @abstractmethod
    def prompt_template(self) -> str:
        """Prompt template for this task"""
        pass

    @abstractmethod
    def build_prompt(self, context: dict) -> str:
        """Build prompt from context"""
        pass

    @abstractmethod
    def parse_response(self, response: str) -> dict:
        """Parse LLM response into structured data"""
        pass


# Narrow contracts for remote collaborators. The pipeline depends only on
# these call shapes, never on a concrete client.

# (description, context) -> category assignment; raises TransientItemError
CategorizeFn = Callable[[str, dict], Awaitable[CategoryAssignment]]

# transaction -> optional email context; raises TransientItemError
ContextLookupFn = Callable[[WorkItem], Awaitable[Optional[EmailContext]]]

# batch of items -> location written; raises ExportError
BatchWriterFn = Callable[[Sequence[WorkItem]], Awaitable[Any]]

# (item, error) -> substitute item
FallbackFn = Callable[[WorkItem, Exception], Awaitable[WorkItem]]
