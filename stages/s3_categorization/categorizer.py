"""Stage 3: Categorization - Assign a spending category"""

from typing import Any, Dict

from core.enums import CategorySource, Status
from core.exceptions import TransientItemError
from core.interfaces import CategorizeFn, Transform
from core.logging_config import get_logger
from core.models import CategoryAssignment, WorkItem
from llm.client import LLMClient
from llm.prompts import CategorizationPrompt

from .rules import categorize_by_rules, normalize_category

logger = get_logger(__name__)


class LLMCategorizer:
    """Categorization collaborator backed by the LLM client

    Any provider, transport or parse failure surfaces as a
    TransientItemError so the stage can fall back to keyword rules.
    """

    def __init__(self, client: LLMClient):
        self.client = client
        self.prompt_builder = CategorizationPrompt()

    async def __call__(self, description: str, context: Dict[str, Any]) -> CategoryAssignment:
        prompt = self.prompt_builder.build_prompt({**context, "description": description})
        response = await self.client.complete(prompt, system=self.prompt_builder.system_prompt)

        try:
            result = self.prompt_builder.parse_response(response)
        except ValueError as e:
            raise TransientItemError(f"Unusable categorization response: {e}") from e

        return CategoryAssignment(
            category=normalize_category(result["category"]),
            confidence=result["confidence"],
        )


async def unavailable_categorizer(description: str, context: Dict[str, Any]) -> CategoryAssignment:
    """Categorizer used when no LLM provider is configured"""
    raise TransientItemError("No LLM provider configured")


class Categorizer(Transform[WorkItem, WorkItem]):
    """Stage 3: Categorize transactions, falling back to keyword rules"""

    supports_fallback = True

    @property
    def name(self) -> str:
        return "Categorization"

    @property
    def stage_number(self) -> int:
        return 3

    def __init__(self, categorize: CategorizeFn = unavailable_categorizer):
        self.categorize = categorize

    def validate_input(self, input_data: WorkItem) -> bool:
        """Validate item can still be categorized"""
        return isinstance(input_data, WorkItem) and input_data.status.can_advance_to(Status.CATEGORIZED)

    async def execute(self, input_data: WorkItem) -> WorkItem:
        """Execute categorization stage"""
        context = {
            "amount": input_data.amount,
            "date": input_data.date,
            "email_subject": input_data.email_subject,
            "email_snippet": input_data.email_snippet,
        }
        assignment = await self.categorize(input_data.display_description, context)

        return input_data.advance(
            Status.CATEGORIZED,
            category=normalize_category(assignment.category),
            confidence=assignment.confidence,
            categorized_by=CategorySource.LLM,
        )

    async def fallback(self, input_data: WorkItem, error: Exception) -> WorkItem:
        """Categorize with local keyword rules"""
        category, confidence = categorize_by_rules(input_data.display_description)
        logger.debug("rules_category_assigned", item_id=input_data.id, category=category)
        return input_data.advance(
            Status.CATEGORIZED,
            category=category,
            confidence=confidence,
            categorized_by=CategorySource.RULES,
        )
