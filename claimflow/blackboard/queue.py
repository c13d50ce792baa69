"""In-memory task queue shared by the pipeline agents."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, TypeVar

from .tasks import BaseTask, TaskEvent, TaskEventType, TaskListener, TaskPredicate

logger = logging.getLogger("claimflow.queue")

T = TypeVar("T", bound=BaseTask)

_DRAIN_POLL_SECONDS = 0.1


@dataclass(slots=True)
class Subscription:
    """Handle returned to listeners so they can stop receiving events."""

    close: Callable[[], None]


class TaskQueue:
    """FIFO store of typed work items with claim/complete semantics.

    A task moves ``pending -> taken -> done``. ``take`` and the status
    transitions run under a lock, so two callers can never claim the same
    task. Listeners run synchronously after each transition, outside the lock,
    which lets a listener enqueue follow-up work.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._pending: List[BaseTask] = []
        self._in_flight: Dict[str, BaseTask] = {}
        self._known: Set[str] = set()
        self._done: Set[str] = set()
        self._listeners: List[TaskListener] = []
        self._waiters: List[asyncio.Event] = []

    # ------------------------------------------------------------------
    # Mutation surface
    # ------------------------------------------------------------------
    def enqueue(self, task: T) -> T:
        with self._lock:
            if task.id in self._known:
                raise ValueError(f"task {task.id} was already enqueued")
            self._known.add(task.id)
            self._pending.append(task)
        logger.debug(
            "[queue.enqueue] task=%s type=%s conversation=%s",
            task.id,
            task.type.value,
            task.conversation_id,
        )
        self._emit(TaskEvent(TaskEventType.ENQUEUED, task))
        return task

    def take(self, predicate: TaskPredicate) -> Optional[BaseTask]:
        """Claim the oldest pending task matching ``predicate``."""

        with self._lock:
            index = next(
                (i for i, task in enumerate(self._pending) if predicate(task)), None
            )
            if index is None:
                return None
            task = self._pending.pop(index)
            self._in_flight[task.id] = task
        self._emit(TaskEvent(TaskEventType.STARTED, task))
        return task

    def complete(self, task: BaseTask) -> None:
        if not self._finish(task):
            return
        self._emit(TaskEvent(TaskEventType.COMPLETED, task))

    def fail(self, task: BaseTask, error: str) -> None:
        if not self._finish(task):
            return
        logger.warning(
            "[queue.fail] task=%s type=%s conversation=%s error=%s",
            task.id,
            task.type.value,
            task.conversation_id,
            error,
        )
        self._emit(TaskEvent(TaskEventType.FAILED, task, error=error))

    def _finish(self, task: BaseTask) -> bool:
        with self._lock:
            if task.id in self._done:
                return False
            if self._in_flight.pop(task.id, None) is None:
                logger.debug("[queue.finish.skip] task=%s reason=not_taken", task.id)
                return False
            self._done.add(task.id)
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return not self._pending and not self._in_flight

    def is_done(self, task: BaseTask) -> bool:
        with self._lock:
            return task.id in self._done

    def pending(self) -> List[BaseTask]:
        """Snapshot of pending tasks, oldest first."""

        with self._lock:
            return list(self._pending)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def subscribe(self, listener: TaskListener) -> Subscription:
        self._listeners.append(listener)

        def _close() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Subscription(close=_close)

    def _emit(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "[queue.listener.error] listener=%s event=%s task=%s",
                    getattr(listener, "__name__", "<callable>"),
                    event.type.value,
                    event.task.id,
                )
        for waiter in list(self._waiters):
            waiter.set()

    async def drain(self, timeout_ms: int = 8000) -> bool:
        """Wait until nothing is pending or taken.

        Returns ``False`` if ``timeout_ms`` elapses first.
        """

        if self.is_idle:
            return True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0, timeout_ms) / 1000.0
        waiter = asyncio.Event()
        self._waiters.append(waiter)
        try:
            while True:
                waiter.clear()
                if self.is_idle:
                    return True
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning(
                        "[queue.drain.timeout] pending=%s in_flight=%s timeout_ms=%s",
                        self.pending_count,
                        self.in_flight_count,
                        timeout_ms,
                    )
                    return False
                try:
                    await asyncio.wait_for(
                        waiter.wait(), timeout=min(remaining, _DRAIN_POLL_SECONDS)
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self._waiters.remove(waiter)
