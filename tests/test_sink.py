import asyncio

import pytest

from core.enums import StageOutcome, Status
from core.exceptions import ExportError
from pipeline.sink import BufferedSink
from pipeline.stage import Stage


class GatedWriter:
    def __init__(self):
        self.gate = asyncio.Event()
        self.batches = []

    async def __call__(self, batch):
        await self.gate.wait()
        self.batches.append(list(batch))
        return len(self.batches)


async def drain(sink, items):
    for item in items:
        await sink.submit(item)
    sink.complete()
    return await sink.completion


@pytest.mark.asyncio
async def test_flushes_full_batches_then_remainder(make_item, writer):
    sink = BufferedSink("export", writer, batch_size=3, flush_interval=None)
    sink.start()

    outcome = await drain(sink, [make_item(f"ITEM {i}") for i in range(7)])

    assert outcome == StageOutcome.COMPLETED
    assert [len(batch) for batch in writer.batches] == [3, 3, 1]
    assert all(item.status == Status.EXPORTED for item in writer.items)
    assert sink.flush_count == 3
    assert sink.exported_count == 7
    assert sink.buffered == 0


@pytest.mark.asyncio
async def test_final_flush_is_idempotent(make_item, writer):
    sink = BufferedSink("export", writer, batch_size=3, flush_interval=None)
    sink.start()
    await drain(sink, [make_item() for _ in range(4)])

    assert await sink.final_flush() == 0
    await sink.aclose()

    assert [len(batch) for batch in writer.batches] == [3, 1]
    assert writer.calls == 2


@pytest.mark.asyncio
async def test_failed_items_are_written_but_stay_failed(make_item, writer):
    sink = BufferedSink("export", writer, batch_size=10, flush_interval=None)
    sink.start()

    await drain(sink, [make_item(), make_item().fail("categorizer crashed")])

    statuses = sorted(item.status.value for item in writer.items)
    assert statuses == ["exported", "failed"]
    assert sink.exported_count == 1
    assert sink.failed_count == 1


@pytest.mark.asyncio
async def test_timer_flushes_partial_buffer(make_item, writer):
    sink = BufferedSink("export", writer, batch_size=100, flush_interval=0.05)
    sink.start()
    await sink.submit(make_item())
    await sink.submit(make_item())

    await asyncio.sleep(0.2)

    assert [len(batch) for batch in writer.batches] == [2]

    sink.complete()
    await sink.completion

    assert writer.calls == 1


@pytest.mark.asyncio
async def test_trigger_during_flush_is_coalesced(make_item, writer_factory):
    writer = writer_factory(delay=0.05)
    sink = BufferedSink("export", writer, batch_size=1, flush_interval=None, concurrency=2)
    sink.start()

    await drain(sink, [make_item(f"ITEM {i}") for i in range(4)])

    assert [len(batch) for batch in writer.batches] == [1, 3]
    assert len({item.id for item in writer.items}) == 4


@pytest.mark.asyncio
async def test_failed_size_flush_keeps_batch_for_next_trigger(make_item, writer_factory):
    writer = writer_factory(fail_times=1)
    sink = BufferedSink("export", writer, batch_size=2, flush_interval=None)
    sink.start()
    items = [make_item(f"ITEM {i}") for i in range(3)]

    await drain(sink, items)

    assert sink.flush_failures == 1
    assert [len(batch) for batch in writer.batches] == [3]
    assert [item.id for item in writer.items] == [item.id for item in items]


@pytest.mark.asyncio
async def test_failed_final_flush_raises(make_item, writer_factory):
    writer = writer_factory(fail_times=5)
    sink = BufferedSink("export", writer, batch_size=10, flush_interval=None)
    sink.start()

    with pytest.raises(ExportError):
        await drain(sink, [make_item(), make_item()])

    assert sink.buffered == 2
    assert sink.flush_count == 0
    assert writer.batches == []


@pytest.mark.asyncio
async def test_cancel_keeps_queued_items_for_final_flush(make_item):
    writer = GatedWriter()
    sink = BufferedSink("export", writer, batch_size=1, flush_interval=None, concurrency=1)
    sink.start()
    items = [make_item(f"ITEM {i}") for i in range(3)]
    for item in items:
        await sink.submit(item)
    await asyncio.sleep(0.01)

    await sink.cancel(grace_period=0.01)

    assert sink.salvaged == 2
    assert sink.buffered == 2

    writer.gate.set()
    assert await sink.final_flush() == 3
    written = [item.id for batch in writer.batches for item in batch]
    assert written == [item.id for item in items]
    assert sink.flush_count == 2
    assert sink.exported_count == 3


@pytest.mark.asyncio
async def test_write_interrupted_by_cancel_is_not_repeated(make_item):
    writer = GatedWriter()
    sink = BufferedSink("export", writer, batch_size=10, flush_interval=None)
    sink.start()
    items = [make_item(f"ITEM {i}") for i in range(3)]
    for item in items:
        await sink.submit(item)
    sink.complete()
    await asyncio.sleep(0.01)

    await sink.cancel(grace_period=0)
    writer.gate.set()

    assert await sink.final_flush() == 3
    assert await sink.final_flush() == 0
    assert len(writer.batches) == 1
    assert [item.id for item in writer.batches[0]] == [item.id for item in items]


@pytest.mark.asyncio
async def test_failed_interrupted_write_is_retried(make_item, writer_factory):
    writer = writer_factory(fail_times=1, delay=0.05)
    sink = BufferedSink("export", writer, batch_size=10, flush_interval=None)
    sink.start()
    await sink.submit(make_item())
    await sink.submit(make_item())
    sink.complete()
    await asyncio.sleep(0.01)

    await sink.cancel(grace_period=0)

    assert await sink.final_flush() == 2
    assert sink.flush_failures == 1
    assert [len(batch) for batch in writer.batches] == [2]


@pytest.mark.asyncio
async def test_sink_after_stage_receives_completion(make_item, writer):
    async def identity(item):
        return item

    stage = Stage("pass", identity)
    sink = BufferedSink("export", writer, batch_size=2, flush_interval=None)
    stage.link_to(sink)
    stage.start()
    sink.start()

    for _ in range(5):
        await stage.submit(make_item())
    stage.complete()

    assert await sink.completion == StageOutcome.COMPLETED
    assert len(writer.items) == 5


def test_sink_is_terminal(writer):
    sink = BufferedSink("export", writer)

    with pytest.raises(ValueError):
        sink.link_to(BufferedSink("other", writer))


def test_invalid_batch_settings(writer):
    with pytest.raises(ValueError):
        BufferedSink("export", writer, batch_size=0)
    with pytest.raises(ValueError):
        BufferedSink("export", writer, flush_interval=0)
