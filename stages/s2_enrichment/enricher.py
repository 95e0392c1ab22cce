"""Stage 2: Enrichment - Attach matching email context"""

from typing import Optional

from core.enums import Status
from core.interfaces import ContextLookupFn, Transform
from core.logging_config import get_logger
from core.models import EmailContext, WorkItem

logger = get_logger(__name__)


async def no_email_lookup(item: WorkItem) -> Optional[EmailContext]:
    """Lookup used when no mailbox is configured"""
    return None


class EmailEnricher(Transform[WorkItem, WorkItem]):
    """Stage 2: Enrich transactions with related email context

    A failed lookup degrades to an item with no email context.
    """

    supports_fallback = True

    @property
    def name(self) -> str:
        return "Email Enrichment"

    @property
    def stage_number(self) -> int:
        return 2

    def __init__(self, lookup: ContextLookupFn = no_email_lookup):
        self.lookup = lookup

    def validate_input(self, input_data: WorkItem) -> bool:
        """Validate item can still be enriched"""
        return isinstance(input_data, WorkItem) and input_data.status.can_advance_to(Status.ENRICHED)

    async def execute(self, input_data: WorkItem) -> WorkItem:
        """Execute enrichment stage"""
        context = await self.lookup(input_data)
        if context is None:
            return input_data.advance(Status.ENRICHED)

        logger.debug("email_context_attached", item_id=input_data.id, subject=context.subject)
        return input_data.advance(
            Status.ENRICHED,
            email_subject=context.subject,
            email_snippet=context.snippet,
        )

    async def fallback(self, input_data: WorkItem, error: Exception) -> WorkItem:
        """Continue without email context"""
        return input_data.advance(Status.ENRICHED)
