"""Core abstractions for the Ledgerflow pipeline"""

from .models import *
from .enums import *
from .exceptions import *
from .interfaces import *

__all__ = [
    # Models
    "WorkItem",
    "CategoryAssignment",
    "EmailContext",
    "Ok",
    "Skip",
    "Fatal",
    "StageResult",
    "Diagnostic",
    "StageStats",
    "PipelineResult",
    # Enums
    "Status",
    "StageOutcome",
    "CategorySource",
    "LLMProvider",
    "Category",
    # Exceptions
    "LedgerflowError",
    "ConfigurationError",
    "ItemError",
    "TransientItemError",
    "FatalItemError",
    "InvalidTransitionError",
    "LLMError",
    "PipelineError",
    "PipelineTimeoutError",
    "SourceError",
    "ExportError",
    "StageClosedError",
    # Interfaces
    "Transform",
    "LLMTask",
    "CategorizeFn",
    "ContextLookupFn",
    "BatchWriterFn",
    "FallbackFn",
]
