import datetime as dt
from decimal import Decimal

import pytest

from llm.prompts import CategorizationPrompt


@pytest.fixture
def prompt():
    return CategorizationPrompt()


def test_build_prompt_lists_categories_and_transaction(prompt):
    text = prompt.build_prompt({
        "amount": Decimal("-23.99"),
        "date": dt.date(2024, 1, 15),
        "description": "Amazon",
    })

    assert "Amount: $23.99" in text
    assert "Description: Amazon" in text
    assert "Date: 2024-01-15" in text
    assert "Food & Dining" in text and "Other" in text
    assert "Email Subject" not in text


def test_build_prompt_includes_email_context(prompt):
    text = prompt.build_prompt({
        "amount": Decimal("5"),
        "date": "2024-01-15",
        "description": "Uber",
        "email_subject": "Your trip",
        "email_snippet": "Thanks for riding",
    })

    assert "Email Subject: Your trip" in text
    assert "Email Snippet: Thanks for riding" in text


@pytest.mark.parametrize("response", [
    '{"category": "Shopping", "confidence": 0.9}',
    '```json\n{"category": "Shopping", "confidence": 0.9}\n```',
    'Sure! {"category": "Shopping", "confidence": 0.9,} Hope that helps.',
])
def test_parse_response_recovers_json(prompt, response):
    assert prompt.parse_response(response) == {"category": "Shopping", "confidence": 0.9}


def test_parse_response_clamps_confidence(prompt):
    assert prompt.parse_response('{"category": "Travel", "confidence": 7}')["confidence"] == 1.0
    assert prompt.parse_response('{"category": "Travel", "confidence": "high"}')["confidence"] == 0.5


@pytest.mark.parametrize("response", ["no json here", '{"confidence": 0.4}', '{"category": "  "}'])
def test_parse_response_requires_category(prompt, response):
    with pytest.raises(ValueError):
        prompt.parse_response(response)
