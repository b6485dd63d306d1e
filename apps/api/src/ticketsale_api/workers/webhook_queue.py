"""Bounded in-process queue for webhook processing tasks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from ticketsale_api.core.settings import settings

WebhookTask = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class _QueuedTask:
    name: str
    run: WebhookTask
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WebhookQueueStats:
    enqueued: int = 0
    succeeded: int = 0
    failed: int = 0


class WebhookTaskQueue:
    """Runs queued webhook tasks FIFO with at most ``concurrency`` in flight.

    Failed tasks are logged and counted, never retried; providers redeliver.
    """

    def __init__(self, *, concurrency: int | None = None) -> None:
        self.concurrency = concurrency or settings.webhook_queue_concurrency
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue: asyncio.Queue[_QueuedTask | None] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self.stats = WebhookQueueStats()
        self.is_running: bool = False

    def start(self) -> None:
        if self.is_running:
            return
        self._workers = [
            asyncio.create_task(self._run_worker(index), name=f"webhook-queue-{index}")
            for index in range(self.concurrency)
        ]
        self.is_running = True
        logger.info("Webhook queue started", concurrency=self.concurrency)

    async def stop(self) -> None:
        """Finish queued tasks, then stop the workers."""

        if not self.is_running:
            return
        for _ in self._workers:
            self._queue.put_nowait(None)
        await asyncio.gather(*self._workers)
        self._workers = []
        self.is_running = False
        logger.info("Webhook queue stopped", **self._stats_dict())

    def enqueue(self, name: str, task: WebhookTask, **context: Any) -> None:
        self._queue.put_nowait(_QueuedTask(name=name, run=task, context=context))
        self.stats.enqueued += 1
        logger.debug("Webhook task enqueued", task=name, pending=self._queue.qsize(), **context)

    async def join(self) -> None:
        """Wait until every task enqueued so far has finished."""

        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _run_worker(self, index: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                await self._run_task(item)
            finally:
                self._queue.task_done()

    async def _run_task(self, item: _QueuedTask) -> None:
        try:
            await item.run()
        except Exception as exc:
            self.stats.failed += 1
            logger.exception("Webhook task failed", task=item.name, error=str(exc), **item.context)
            return
        self.stats.succeeded += 1

    def _stats_dict(self) -> dict[str, int]:
        return {"enqueued": self.stats.enqueued, "succeeded": self.stats.succeeded, "failed": self.stats.failed}


__all__ = ["WebhookTaskQueue", "WebhookQueueStats"]
