import asyncio

import httpx
import pytest

from app.core.exceptions import EnhancementBatchFailure
from app.core.exceptions import EnhancementServiceError
from app.models.report_models import EnhancementTask
from app.services.enhancement_worker import EnhancementWorker


def _tasks(n: int) -> list[EnhancementTask]:
    return [
        EnhancementTask(field_name=f"field_{i}", field_type=f"type{i}", raw_text=f"- note {i}", label=f"Field {i}")
        for i in range(1, n + 1)
    ]


class RecordingEnhancer:
    """Enhancer double: upper-cases the text and fails for the configured fields."""

    def __init__(self, fail_on=(), hang_on=()):
        self.fail_on = set(fail_on)
        self.hang_on = set(hang_on)
        self.calls: list[tuple[str, str, str]] = []

    async def __call__(self, raw_text: str, field_type: str, context: str) -> str:
        self.calls.append((raw_text, field_type, context))
        if field_type in self.hang_on:
            await asyncio.sleep(10)
        if field_type in self.fail_on:
            raise EnhancementServiceError("provider unavailable")
        return f"ENHANCED {raw_text.upper()}"


@pytest.mark.asyncio
async def test_run_batch_second_task_fails_keeps_raw_text():
    enhancer = RecordingEnhancer(fail_on={"type2"})
    worker = EnhancementWorker(enhancer=enhancer, timeout=5, default_context="ctx")
    events = []

    results = await worker.run_batch(_tasks(3), on_progress=events.append)

    assert [round(e.percent_complete) for e in events] == [0, 33, 67, 100, 100]
    assert [e.terminal for e in events] == [False, False, False, False, True]
    assert [r.succeeded for r in results] == [True, False, True]
    assert results[0].final_text == "ENHANCED - NOTE 1"
    assert results[1].final_text == "- note 2"
    assert results[2].final_text == "ENHANCED - NOTE 3"

    final = events[-1]
    assert final.error is None
    assert final.current_task_label == "AI enhancement completed: 2/3 fields enhanced"
    assert "⚠ Failed to enhance Field 2, kept original text" in final.detail_log
    assert "✓ Enhanced Field 1 (17 characters)" in final.detail_log


@pytest.mark.asyncio
async def test_run_batch_processes_in_order_with_context():
    enhancer = RecordingEnhancer()
    worker = EnhancementWorker(enhancer=enhancer, timeout=5, default_context="default ctx")
    tasks = _tasks(2) + [EnhancementTask(field_name="x", field_type="typeX", raw_text="- x", context="own ctx")]

    results = await worker.run_batch(tasks)

    assert [r.field_name for r in results] == ["field_1", "field_2", "x"]
    assert [c[2] for c in enhancer.calls] == ["default ctx", "default ctx", "own ctx"]


@pytest.mark.asyncio
async def test_run_batch_percent_is_monotonic_and_ends_at_100():
    worker = EnhancementWorker(enhancer=RecordingEnhancer(), timeout=5)
    events = []

    await worker.run_batch(_tasks(7), on_progress=events.append)

    percents = [e.percent_complete for e in events]
    assert percents == sorted(percents)
    assert percents[0] == 0
    assert percents[-1] == 100
    assert sum(1 for e in events if e.terminal) == 1
    assert events[0].current_task_label == "Starting AI enhancement for 7 fields..."


@pytest.mark.asyncio
async def test_run_batch_timeout_falls_back():
    worker = EnhancementWorker(enhancer=RecordingEnhancer(hang_on={"type1"}), timeout=0.05)

    results = await worker.run_batch(_tasks(2))

    assert results[0].succeeded is False
    assert results[0].final_text == "- note 1"
    assert results[1].succeeded is True


@pytest.mark.asyncio
async def test_run_batch_empty_output_counts_as_failure():
    async def blank(raw_text, field_type, context):
        return "   "

    worker = EnhancementWorker(enhancer=blank, timeout=5)
    results = await worker.run_batch(_tasks(1))

    assert results[0].succeeded is False
    assert results[0].final_text == "- note 1"


@pytest.mark.asyncio
async def test_run_batch_duplicate_field_names_abort_with_terminal_error():
    worker = EnhancementWorker(enhancer=RecordingEnhancer(), timeout=5)
    tasks = _tasks(2) + [_tasks(1)[0]]
    events = []

    with pytest.raises(EnhancementBatchFailure):
        await worker.run_batch(tasks, on_progress=events.append)

    assert len(events) == 1
    assert events[0].terminal is True
    assert "Duplicate" in events[0].error


@pytest.mark.asyncio
async def test_run_batch_enhancer_connection_error_is_a_task_failure():
    async def flaky(raw_text, field_type, context):
        if field_type == "type2":
            raise httpx.ConnectError("connection refused")
        return f"Polished {raw_text}"

    worker = EnhancementWorker(enhancer=flaky, timeout=5)
    events = []

    results = await worker.run_batch(_tasks(3), on_progress=events.append)

    assert [r.succeeded for r in results] == [True, False, True]
    assert results[1].final_text == "- note 2"
    assert events[-1].terminal is True
    assert events[-1].error is None


@pytest.mark.asyncio
async def test_run_batch_failing_progress_callback_becomes_batch_failure():
    events = []

    def on_progress(event):
        events.append(event)
        if len(events) == 2:
            raise RuntimeError("subscriber bug")

    worker = EnhancementWorker(enhancer=RecordingEnhancer(), timeout=5)

    with pytest.raises(EnhancementBatchFailure) as exc:
        await worker.run_batch(_tasks(2), on_progress=on_progress)

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert events[-1].terminal is True
    assert events[-1].error is not None


@pytest.mark.asyncio
async def test_run_batch_terminal_report_survives_callback_that_always_fails():
    def on_progress(event):
        raise RuntimeError("subscriber bug")

    worker = EnhancementWorker(enhancer=RecordingEnhancer(), timeout=5)

    with pytest.raises(EnhancementBatchFailure):
        await worker.run_batch(_tasks(1), on_progress=on_progress)


@pytest.mark.asyncio
async def test_run_batch_accepts_async_progress_callback():
    seen = []

    async def on_progress(event):
        await asyncio.sleep(0)
        seen.append(event.percent_complete)

    worker = EnhancementWorker(enhancer=RecordingEnhancer(), timeout=5)
    await worker.run_batch(_tasks(2), on_progress=on_progress)

    assert seen == [0, 50, 100, 100]


@pytest.mark.asyncio
async def test_run_batch_empty_queue_completes():
    worker = EnhancementWorker(enhancer=RecordingEnhancer(), timeout=5)
    events = []

    results = await worker.run_batch([], on_progress=events.append)

    assert results == []
    assert events[-1].terminal is True
    assert events[-1].percent_complete == 100
