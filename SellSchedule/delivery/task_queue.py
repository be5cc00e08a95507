"""
Single-consumer serial task queue.

Every outbound write cycle (publishing a destination, mirroring an entry to the
calendar) is pushed here as a coroutine factory. Exactly one worker drains the
queue, so cycles never overlap and run in enqueue order. A failing task is
logged and counted; the worker moves on to the next one.

Bursts are not deduplicated here: the publisher's fingerprint check turns
redundant cycles into cheap no-ops.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from SellSchedule.logging_setup import bind_log_context, log_event
from SellSchedule.observability_metrics import set_queue_depth, task_queue_tasks_total
from shared.observability import swallow_exception


logger = logging.getLogger("task_queue")

TaskFactory = Callable[[], Awaitable[Any]]
DrainedListener = Callable[[], None]


@dataclass(frozen=True)
class QueuedTask:
    name: str
    run: TaskFactory
    destination: Optional[str] = None


class TaskQueue:
    def __init__(self, name: str, *, maxsize: int = 0) -> None:
        self.name = name
        self._queue: asyncio.Queue[QueuedTask] = asyncio.Queue(maxsize=max(0, int(maxsize)))
        self._worker: Optional[asyncio.Task] = None
        self._listeners: List[Tuple[DrainedListener, bool]] = []
        self._completed = 0
        self._failed = 0

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def failed(self) -> int:
        return self._failed

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._worker_loop(), name=f"task-queue-{self.name}")
        log_event(logger, logging.INFO, "task_queue_started", queue=self.name, maxsize=self._queue.maxsize)

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        log_event(logger, logging.INFO, "task_queue_stopped", queue=self.name, pending=self.depth)

    async def push(self, name: str, fn: TaskFactory, *, destination: Optional[str] = None) -> None:
        """Enqueue `fn`; waits while the queue is full."""
        await self._queue.put(QueuedTask(name=name, run=fn, destination=destination))
        set_queue_depth(self.name, self.depth)
        logger.debug("task_queued queue=%s task=%s depth=%s", self.name, name, self.depth)

    async def join(self) -> None:
        """Wait until every task pushed so far has run."""
        await self._queue.join()

    def on_drained(self, callback: DrainedListener, *, once: bool = False) -> None:
        """Call `callback` every time the queue becomes empty after running a task."""
        self._listeners.append((callback, once))

    async def _worker_loop(self) -> None:
        while True:
            task = await self._queue.get()
            set_queue_depth(self.name, self.depth)
            try:
                await self._run(task)
            finally:
                self._queue.task_done()
            if self._queue.empty():
                self._notify_drained()

    async def _run(self, task: QueuedTask) -> None:
        with bind_log_context(step=task.name, destination=task.destination):
            try:
                await task.run()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._failed += 1
                logger.exception("task_failed queue=%s task=%s", self.name, task.name)
                _count(self.name, "failed")
                return
        self._completed += 1
        _count(self.name, "ok")

    def _notify_drained(self) -> None:
        listeners, self._listeners = self._listeners, []
        for callback, once in listeners:
            if not once:
                self._listeners.append((callback, once))
            try:
                callback()
            except Exception as e:
                swallow_exception(e, context="task_queue_drained_listener", extra={"queue": self.name})


def _count(queue: str, outcome: str) -> None:
    try:
        task_queue_tasks_total.labels(queue=queue, outcome=outcome).inc()
    except Exception:
        pass  # Metrics must never break runtime
