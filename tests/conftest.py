import asyncio
import datetime as dt
from decimal import Decimal

import pytest

from core.logging_config import configure_logging
from core.models import WorkItem

LLM_AND_GRAPH_ENV = [
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
    "GRAPH_TENANT_ID",
    "GRAPH_CLIENT_ID",
    "GRAPH_CLIENT_SECRET",
    "GRAPH_MAILBOX",
]


class RecordingWriter:
    """Batch writer that keeps every batch in memory"""

    def __init__(self, fail_times: int = 0, delay: float = 0.0):
        self.batches = []
        self.calls = 0
        self.fail_times = fail_times
        self.delay = delay

    async def __call__(self, batch):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times:
            self.fail_times -= 1
            raise OSError("disk full")
        self.batches.append(list(batch))
        return f"batch-{len(self.batches)}"

    @property
    def items(self):
        return [item for batch in self.batches for item in batch]


@pytest.fixture(autouse=True)
def quiet_logging():
    configure_logging("WARNING")


@pytest.fixture
def offline_env(monkeypatch):
    for name in LLM_AND_GRAPH_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_item():
    def _make(description="COFFEE SHOP", amount="4.50", date=dt.date(2024, 1, 15), **fields):
        return WorkItem(date=date, amount=Decimal(amount), description=description, **fields)
    return _make


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def writer_factory():
    return RecordingWriter
