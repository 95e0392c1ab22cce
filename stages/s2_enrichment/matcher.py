"""Score candidate emails against a transaction"""

import datetime as dt
import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from core.models import EmailContext, WorkItem
from utils.fuzzy import keyword_overlap

AMOUNT_RE = re.compile(r"\$?(\d+(?:\.\d{2})?)")

STOP_WORDS = {
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "her",
    "was", "one", "our", "had", "have", "has", "this", "that", "with", "from",
}

FINANCIAL_KEYWORDS = [
    "payment", "charge", "receipt", "invoice", "transaction",
    "purchase", "bill", "card", "account", "bank",
]

EXACT_AMOUNT_SCORE = 50
CLOSE_AMOUNT_SCORE = 25
KEYWORD_SCORE = 5
MAX_PROXIMITY_SCORE = 10
FINANCIAL_SCORE = 10


def extract_amounts(text: str) -> List[Decimal]:
    """Positive amounts mentioned in the text"""
    amounts = []
    for match in AMOUNT_RE.finditer(text):
        try:
            amount = Decimal(match.group(1))
        except InvalidOperation:
            continue
        if amount > 0:
            amounts.append(amount)
    return amounts


def extract_keywords(text: str) -> List[str]:
    """Lower-cased words longer than three characters, minus stop words"""
    if not text or not text.strip():
        return []
    words = (word.strip(".,!?;:") for word in text.lower().split() if len(word) > 3)
    return [word for word in words if word and word not in STOP_WORDS]


def is_financial_email(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in FINANCIAL_KEYWORDS)


def _days_apart(received_at: dt.datetime, date: dt.date) -> float:
    if received_at.tzinfo is not None:
        received_at = received_at.astimezone(dt.timezone.utc).replace(tzinfo=None)
    midnight = dt.datetime.combine(date, dt.time())
    return abs((received_at - midnight).total_seconds()) / 86400


def score_email(item: WorkItem, email: EmailContext) -> float:
    """
    Relevance of an email to a transaction

    Amount mentions, shared keywords, date proximity and financial
    wording all add to the score; zero means unrelated.
    """
    score = 0.0
    email_text = f"{email.subject} {email.snippet}".lower()

    differences = [abs(amount - abs(item.amount)) for amount in extract_amounts(email_text)]
    if any(diff < Decimal("0.01") for diff in differences):
        score += EXACT_AMOUNT_SCORE
    elif any(diff < Decimal("1.0") for diff in differences):
        score += CLOSE_AMOUNT_SCORE

    shared = keyword_overlap(extract_keywords(item.display_description), extract_keywords(email_text))
    score += len(shared) * KEYWORD_SCORE

    if email.received_at is not None:
        score += max(0.0, MAX_PROXIMITY_SCORE - _days_apart(email.received_at, item.date))

    if is_financial_email(email_text):
        score += FINANCIAL_SCORE

    return score


def best_email_match(item: WorkItem, emails: Iterable[EmailContext]) -> Optional[EmailContext]:
    """Highest-scoring email, or None when nothing scores above zero"""
    best, best_score = None, 0.0
    for email in emails:
        score = score_email(item, email)
        if score > best_score:
            best, best_score = email, score
    return best
