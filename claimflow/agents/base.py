"""Base class shared by the pipeline agents."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Set

from pydantic import ValidationError

from claimflow.blackboard import BaseTask, PipelinePolicy, Subscription, TaskEvent, TaskEventType, TaskQueue


async def maybe_await(value: Any) -> Any:
    """Resolve ``value`` if a collaborator returned an awaitable."""

    if inspect.isawaitable(value):
        return await value
    return value


class PollingAgent(ABC):
    """Drains matching tasks from a :class:`TaskQueue` until stopped.

    Each worker runs ``take -> handle -> complete`` and does not take another
    task until the current one is finished, so a single-worker agent processes
    tasks strictly in enqueue order. ``handle`` returning normally completes
    the task; raising fails it. Either way the task never stays taken.
    """

    name: str = "agent"

    def __init__(self, *, policy: PipelinePolicy | None = None, concurrency: int = 1) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.policy = policy or PipelinePolicy()
        self.logger = logging.getLogger(f"claimflow.agents.{self.name}")
        self._concurrency = concurrency
        self._queue: Optional[TaskQueue] = None
        self._subscription: Optional[Subscription] = None
        self._running = False
        self._epoch = 0
        self._workers: List[asyncio.Task[None]] = []
        self._busy: Set[asyncio.Task[Any]] = set()
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def queue(self) -> Optional[TaskQueue]:
        return self._queue

    @abstractmethod
    def accepts(self, task: BaseTask) -> bool:
        """Predicate selecting the task types this agent owns."""

    @abstractmethod
    async def handle(self, task: BaseTask, queue: TaskQueue) -> None:
        """Process one taken task; follow-up work goes to ``queue``."""

    def start(self, queue: TaskQueue) -> None:
        """Begin polling ``queue``. Must be called with an event loop running."""

        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._queue = queue
        self._running = True
        self._epoch += 1
        self._wake = asyncio.Event()
        self._subscription = queue.subscribe(self._on_event)
        # Workers still finishing a task from before the last stop are kept so
        # wait_stopped can await them.
        self._workers = [worker for worker in self._workers if not worker.done()] + [
            loop.create_task(self._run_wrapper(index, queue, self._epoch), name=f"{self.name}-worker-{index}")
            for index in range(self._concurrency)
        ]
        self.logger.info("[agent.start] agent=%s workers=%s", self.name, self._concurrency)

    def stop(self) -> None:
        """Stop taking new tasks.

        Idle workers are cancelled immediately; a worker in the middle of a
        task finishes it and then exits.
        """

        if not self._running:
            return
        self._running = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for worker in self._workers:
            if worker not in self._busy:
                worker.cancel()
        self._wake.set()
        self.logger.info("[agent.stop] agent=%s busy=%s", self.name, len(self._busy))

    async def wait_stopped(self) -> None:
        """Wait for every worker of a stopped agent to exit."""

        workers, self._workers = self._workers, []
        for worker in workers:
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    def _on_event(self, event: TaskEvent) -> None:
        if event.type is TaskEventType.ENQUEUED and self.accepts(event.task):
            self._wake.set()

    async def _run_wrapper(self, index: int, queue: TaskQueue, epoch: int) -> None:
        try:
            await self._run(queue, epoch)
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # pragma: no cover - log unexpected failures
            self.logger.exception("[agent.crash] agent=%s worker=%s error=%s", self.name, index, exc)

    async def _run(self, queue: TaskQueue, epoch: int) -> None:
        interval = self.policy.poll_interval.total_seconds()
        current = asyncio.current_task()
        # A worker left over from before a stop/start cycle exits instead of
        # polling the new queue.
        while self._running and self._epoch == epoch:
            task = queue.take(self.accepts)
            if task is None:
                self._wake.clear()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=interval)
                continue
            if current is not None:
                self._busy.add(current)
            try:
                await self._process(queue, task)
            finally:
                if current is not None:
                    self._busy.discard(current)

    async def _process(self, queue: TaskQueue, task: BaseTask) -> None:
        try:
            await self.handle(task, queue)
        except asyncio.CancelledError:
            queue.fail(task, "cancelled")
            raise
        except (ValidationError, ValueError) as exc:
            self.logger.warning(
                "[agent.data_error] agent=%s task=%s type=%s error=%s",
                self.name,
                task.id,
                task.type.value,
                exc,
            )
            queue.fail(task, f"invalid payload: {exc}")
        except Exception as exc:
            self.logger.exception(
                "[agent.task_error] agent=%s task=%s type=%s", self.name, task.id, task.type.value
            )
            queue.fail(task, str(exc) or exc.__class__.__name__)
        else:
            queue.complete(task)
