from decimal import Decimal

import pytest

from core.enums import Status
from core.exceptions import FatalItemError
from stages.s1_cleaning import DescriptionCleaner, clean_description, normalize_amount


@pytest.mark.parametrize("raw, expected", [
    ("  STARBUCKS   STORE #1234  ", "Starbucks Store #1234"),
    ("POS PURCHASE MCDONALDS", "POS Mcdonalds"),
    ("ATM WITHDRAWAL", "ATM Withdrawal"),
    ("PAYMENT PENDING", "Payment Pending"),
    ("McDonald's", "McDonalds"),
    ("7-ELEVEN", "7-Eleven"),
    ("***", ""),
    ("   ", ""),
])
def test_clean_description(raw, expected):
    assert clean_description(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("-12.345", "12.35"),
    ("2.675", "2.68"),
    ("100", "100.00"),
    ("0.004", "0.00"),
])
def test_normalize_amount(raw, expected):
    assert normalize_amount(Decimal(raw)) == Decimal(expected)


@pytest.mark.asyncio
async def test_cleaner_advances_item(make_item):
    item = make_item("  POS PURCHASE SHELL OIL  ", amount="-45.001")

    cleaned = await DescriptionCleaner().execute(item)

    assert cleaned.status == Status.CLEANED
    assert cleaned.clean_description == "POS Shell Oil"
    assert cleaned.amount == Decimal("45.00")
    assert cleaned.description == item.description


@pytest.mark.asyncio
async def test_cleaner_rejects_empty_description(make_item):
    with pytest.raises(FatalItemError) as exc_info:
        await DescriptionCleaner().execute(make_item("!!!"))

    assert exc_info.value.item_id is not None


def test_cleaner_only_accepts_fetched_items(make_item):
    cleaner = DescriptionCleaner()

    assert cleaner.validate_input(make_item())
    assert not cleaner.validate_input(make_item().advance(Status.CLEANED))
