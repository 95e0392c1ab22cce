import datetime as dt
from decimal import Decimal

import pytest
from pydantic import ValidationError

from core.enums import Status
from core.exceptions import InvalidTransitionError
from core.models import PipelineResult, WorkItem


def test_new_item_is_fetched_with_unique_id(make_item):
    first = make_item()
    second = make_item()

    assert first.status == Status.FETCHED
    assert first.id != second.id


def test_advance_returns_new_item(make_item):
    item = make_item()

    cleaned = item.advance(Status.CLEANED, clean_description="Coffee Shop")

    assert cleaned is not item
    assert cleaned.id == item.id
    assert cleaned.status == Status.CLEANED
    assert cleaned.clean_description == "Coffee Shop"
    assert item.status == Status.FETCHED
    assert item.clean_description is None


def test_advance_may_skip_statuses(make_item):
    item = make_item().advance(Status.CATEGORIZED, category="Other")

    assert item.status == Status.CATEGORIZED


def test_status_never_regresses(make_item):
    item = make_item().advance(Status.ENRICHED)

    with pytest.raises(InvalidTransitionError):
        item.advance(Status.CLEANED)
    with pytest.raises(InvalidTransitionError):
        item.advance(Status.ENRICHED)


def test_terminal_items_cannot_move(make_item):
    failed = make_item().fail("boom")
    exported = make_item().advance(Status.EXPORTED)

    assert failed.status == Status.FAILED
    assert failed.error == "boom"
    with pytest.raises(InvalidTransitionError):
        failed.advance(Status.EXPORTED)
    with pytest.raises(InvalidTransitionError):
        exported.fail("late")


def test_evolve_rejects_status_change(make_item):
    item = make_item()

    assert item.evolve(counterparty="Cafe").counterparty == "Cafe"
    with pytest.raises(InvalidTransitionError):
        item.evolve(status=Status.CLEANED)


def test_items_are_frozen(make_item):
    item = make_item()

    with pytest.raises(ValidationError):
        item.description = "changed"


def test_confidence_is_bounded(make_item):
    with pytest.raises(ValidationError):
        make_item().advance(Status.CATEGORIZED, confidence=1.5)


def test_display_description_prefers_clean(make_item):
    item = make_item(description="RAW")

    assert item.display_description == "RAW"
    assert item.evolve(clean_description="Clean").display_description == "Clean"


def test_status_ordering():
    assert Status.FETCHED.can_advance_to(Status.CLEANED)
    assert Status.CLEANED.can_advance_to(Status.FAILED)
    assert not Status.CATEGORIZED.can_advance_to(Status.CLEANED)
    assert not Status.FAILED.can_advance_to(Status.FAILED)
    assert Status.EXPORTED.is_terminal and Status.FAILED.is_terminal
    assert not Status.ENRICHED.is_terminal


def test_pipeline_result_duration_and_degraded():
    started = dt.datetime(2024, 1, 15, 12, 0, tzinfo=dt.timezone.utc)
    result = PipelineResult(started_at=started, success=True, exported=3)

    assert result.duration is None
    assert not result.degraded

    result.finished_at = started + dt.timedelta(seconds=2)
    result.fallback = 1

    assert result.duration == dt.timedelta(seconds=2)
    assert result.degraded


def test_amount_keeps_decimal_precision():
    item = WorkItem(date=dt.date(2024, 1, 1), amount=Decimal("0.10"), description="x")

    assert item.amount + Decimal("0.20") == Decimal("0.30")
