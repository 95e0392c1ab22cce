"""Custom exceptions for Ledgerflow"""


class LedgerflowError(Exception):
    """Base exception for all Ledgerflow errors"""
    pass


class ConfigurationError(LedgerflowError):
    """Invalid configuration, raised before any stage starts"""
    def __init__(self, message: str, failures: list[str] = None):
        super().__init__(message)
        self.failures = failures or []


# ─────────────────────────────────────────────────────────────
# Item-level errors (never escape the owning stage)
# ─────────────────────────────────────────────────────────────

class ItemError(LedgerflowError):
    """Error processing a single work item"""
    def __init__(self, message: str, item_id: str = None):
        super().__init__(message)
        self.item_id = item_id


class TransientItemError(ItemError):
    """Recoverable item failure, usually a remote call"""
    pass


class FatalItemError(ItemError):
    """Malformed or unprocessable item; the item is dropped"""
    pass


class InvalidTransitionError(LedgerflowError):
    """Attempt to move a work item backwards or out of a terminal status"""
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move item from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class LLMError(TransientItemError):
    """Error in LLM communication"""
    def __init__(self, message: str, provider: str = None, retries: int = 0):
        super().__init__(message)
        self.provider = provider
        self.retries = retries


# ─────────────────────────────────────────────────────────────
# Pipeline-wide errors (propagate out of PipelineOrchestrator.run)
# ─────────────────────────────────────────────────────────────

class PipelineError(LedgerflowError):
    """Error in pipeline execution"""
    def __init__(self, message: str, stage: str = None, result=None):
        super().__init__(message)
        self.stage = stage
        self.result = result


class PipelineTimeoutError(PipelineError):
    """The pipeline did not drain before its deadline"""
    def __init__(self, deadline: float, result=None):
        super().__init__(
            f"Pipeline did not complete within {deadline:g}s",
            result=result
        )
        self.deadline = deadline


class SourceError(PipelineError):
    """The transaction source could not be read"""
    def __init__(self, message: str, source: str = None):
        super().__init__(message)
        self.source = source


class ExportError(PipelineError):
    """A batch could not be written to the output artifact"""
    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class StageClosedError(LedgerflowError):
    """Item submitted to a stage that no longer admits work"""
    def __init__(self, stage: str):
        super().__init__(f"Stage '{stage}' is not accepting items")
        self.stage = stage
