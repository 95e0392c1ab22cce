"""Stage 3: Categorization"""

from .categorizer import Categorizer, LLMCategorizer, unavailable_categorizer
from .rules import CATEGORY_LABELS, categorize_by_rules, normalize_category

__all__ = [
    "Categorizer",
    "LLMCategorizer",
    "unavailable_categorizer",
    "CATEGORY_LABELS",
    "categorize_by_rules",
    "normalize_category",
]
