import asyncio

import pytest

from ticketsale_api.workers import WebhookTaskQueue


@pytest.mark.asyncio
async def test_queue_runs_tasks_in_fifo_order() -> None:
    queue = WebhookTaskQueue(concurrency=1)
    seen: list[int] = []

    def _task(number: int):
        async def run() -> None:
            seen.append(number)

        return run

    queue.start()
    for number in range(5):
        queue.enqueue("record", _task(number), number=number)
    await queue.join()
    await queue.stop()

    assert seen == [0, 1, 2, 3, 4]
    assert queue.stats.succeeded == 5
    assert not queue.is_running


@pytest.mark.asyncio
async def test_queue_never_exceeds_concurrency() -> None:
    queue = WebhookTaskQueue(concurrency=2)
    in_flight = 0
    peak = 0

    async def run() -> None:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    queue.start()
    for _ in range(6):
        queue.enqueue("slow", run)
    await queue.join()
    await queue.stop()

    assert peak == 2
    assert queue.stats.enqueued == 6


@pytest.mark.asyncio
async def test_failed_task_is_counted_and_queue_keeps_draining() -> None:
    queue = WebhookTaskQueue(concurrency=1)
    completed: list[str] = []

    async def boom() -> None:
        raise RuntimeError("processing failed")

    async def fine() -> None:
        completed.append("fine")

    queue.start()
    queue.enqueue("boom", boom, webhook_event_id="evt-1")
    queue.enqueue("fine", fine)
    await queue.join()
    await queue.stop()

    assert completed == ["fine"]
    assert queue.stats.failed == 1
    assert queue.stats.succeeded == 1


@pytest.mark.asyncio
async def test_tasks_enqueued_before_start_run_once_started() -> None:
    queue = WebhookTaskQueue(concurrency=1)
    ran = asyncio.Event()

    async def run() -> None:
        ran.set()

    queue.enqueue("early", run)
    assert queue.pending == 1

    queue.start()
    await asyncio.wait_for(ran.wait(), timeout=1)
    await queue.stop()

    assert queue.pending == 0


def test_queue_rejects_invalid_concurrency() -> None:
    with pytest.raises(ValueError):
        WebhookTaskQueue(concurrency=-1)
