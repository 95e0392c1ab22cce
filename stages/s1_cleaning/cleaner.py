"""Stage 1: Cleaning - Normalize descriptions and amounts"""

import re
from decimal import ROUND_HALF_UP, Decimal

from core.enums import Status
from core.exceptions import FatalItemError
from core.interfaces import Transform
from core.models import WorkItem

WHITESPACE_RE = re.compile(r"\s+")
SPECIAL_CHARS_RE = re.compile(r"[^\w\s\-\.\,\$\&\@\#\%\(\)]")

ABBREVIATIONS = {"ATM", "POS", "ACH", "USD", "API", "LLC", "INC", "CO", "LTD"}

# Banking boilerplate dropped from descriptions longer than two words
REDUNDANT_TERMS = {
    "PURCHASE", "PAYMENT", "DEBIT", "CREDIT", "TRANSACTION",
    "AUTHORIZATION", "PENDING", "PROCESSING", "TEMP", "HOLD",
}

CENTS = Decimal("0.01")


def _title_word(word: str) -> str:
    if word.upper() in ABBREVIATIONS:
        return word.upper()
    # Mixed case such as "McDonald" is kept as written
    if len(word) > 1 and any(c.isupper() for c in word) and any(c.islower() for c in word):
        return word
    return "-".join(part.capitalize() for part in word.lower().split("-"))


def clean_description(description: str) -> str:
    """
    Clean a raw bank description

    Args:
        description: Raw description text

    Returns:
        Cleaned description, empty if nothing meaningful remains
    """
    if not description or not description.strip():
        return ""

    cleaned = WHITESPACE_RE.sub(" ", description.strip())
    cleaned = SPECIAL_CHARS_RE.sub("", cleaned)

    words = [_title_word(word) for word in cleaned.split(" ") if word]
    if len(words) > 2:
        words = [word for word in words if word.upper() not in REDUNDANT_TERMS]
    return " ".join(words)


def normalize_amount(amount: Decimal) -> Decimal:
    """Absolute amount rounded half-up to cents"""
    return abs(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


class DescriptionCleaner(Transform[WorkItem, WorkItem]):
    """Stage 1: Clean transaction descriptions"""

    @property
    def name(self) -> str:
        return "Cleaning"

    @property
    def stage_number(self) -> int:
        return 1

    def validate_input(self, input_data: WorkItem) -> bool:
        """Validate fetched item"""
        return isinstance(input_data, WorkItem) and input_data.status == Status.FETCHED

    async def execute(self, input_data: WorkItem) -> WorkItem:
        """Execute cleaning stage"""
        cleaned = clean_description(input_data.description)
        if not cleaned:
            raise FatalItemError(
                f"Description {input_data.description!r} is empty after cleaning",
                item_id=input_data.id
            )

        return input_data.advance(
            Status.CLEANED,
            clean_description=cleaned,
            amount=normalize_amount(input_data.amount),
        )
