"""Deterministic keyword rules and category label normalization"""

import re
from typing import List, Optional, Pattern, Tuple

from core.enums import Category
from utils.fuzzy import fuzzy_match_string

CATEGORY_LABELS: List[str] = [category.value for category in Category]

# Checked in order; the first category with a keyword appearing as a whole
# word (plurals included) in the lower-cased description wins
KEYWORD_RULES: List[Tuple[Category, List[str]]] = [
    (Category.FOOD_AND_DINING, [
        "restaurant", "food", "cafe", "pizza", "burger", "starbucks", "mcdonald", "dining",
    ]),
    (Category.TRANSPORTATION, [
        "gas", "fuel", "uber", "lyft", "taxi", "bus", "train", "parking", "shell", "chevron",
    ]),
    (Category.SHOPPING, [
        "amazon", "walmart", "target", "store", "market", "shop", "retail", "purchase",
    ]),
    (Category.UTILITIES, [
        "electric", "gas", "water", "internet", "phone", "utility", "power", "cable",
    ]),
    (Category.ENTERTAINMENT, [
        "netflix", "spotify", "movie", "theater", "game", "entertainment", "music",
    ]),
    (Category.HEALTHCARE, [
        "pharmacy", "hospital", "doctor", "medical", "health", "clinic", "cvs", "walgreens",
    ]),
    (Category.FINANCIAL_SERVICES, [
        "bank", "atm", "fee", "interest", "transfer", "payment", "credit", "loan",
    ]),
    (Category.TRAVEL, [
        "hotel", "airline", "flight", "booking", "travel", "vacation", "trip",
    ]),
    (Category.BUSINESS_SERVICES, [
        "office", "supplies", "service", "professional", "consulting", "software",
    ]),
]

RULE_MATCH_CONFIDENCE = 0.5
NO_MATCH_CONFIDENCE = 0.0
FUZZY_THRESHOLD = 80


def _keyword_pattern(keywords: List[str]) -> Pattern[str]:
    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"\b(?:{alternatives})(?:e?s)?\b")


RULE_PATTERNS: List[Tuple[Category, Pattern[str]]] = [
    (category, _keyword_pattern(keywords)) for category, keywords in KEYWORD_RULES
]


def categorize_by_rules(description: str) -> Tuple[str, float]:
    """
    Categorize a description with keyword rules

    Args:
        description: Clean (or raw) transaction description

    Returns:
        (category label, confidence); ("Other", 0.0) when no rule matches
    """
    text = (description or "").lower()
    for category, pattern in RULE_PATTERNS:
        if pattern.search(text):
            return category.value, RULE_MATCH_CONFIDENCE
    return Category.OTHER.value, NO_MATCH_CONFIDENCE


def normalize_category(label: Optional[str]) -> str:
    """
    Map a free-form label onto the closed category set

    Tries an exact (case-insensitive) match, then containment in either
    direction, then fuzzy matching; anything else becomes "Other".
    """
    if not label or not label.strip():
        return Category.OTHER.value

    text = label.strip().lower()
    for candidate in CATEGORY_LABELS:
        if candidate.lower() == text:
            return candidate

    if len(text) >= 3:
        for candidate in CATEGORY_LABELS:
            lowered = candidate.lower()
            if lowered in text or text in lowered:
                return candidate

    return fuzzy_match_string(label.strip(), CATEGORY_LABELS, threshold=FUZZY_THRESHOLD) or Category.OTHER.value
