from __future__ import annotations

import asyncio
import dataclasses
import threading
from typing import List

import pytest

from claimflow.blackboard import (
    ConversationFinalizeTask,
    PipelinePolicy,
    TaskEvent,
    TaskEventType,
    TaskQueue,
    TaskType,
    TurnIngestTask,
    of_type,
)
from claimflow.models import TranscriptTurn


def _turn(text: str, conversation_id: str = "conv-1") -> TurnIngestTask:
    return TurnIngestTask(
        conversation_id=conversation_id,
        turn=TranscriptTurn(speaker="user", text=text),
    )


class EventRecorder:
    def __init__(self) -> None:
        self.events: List[TaskEvent] = []

    def __call__(self, event: TaskEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[TaskEventType]:
        return [event.type for event in self.events]


def test_take_returns_oldest_matching_task() -> None:
    queue = TaskQueue()
    first = queue.enqueue(_turn("one"))
    finalize = queue.enqueue(ConversationFinalizeTask(conversation_id="conv-1"))
    second = queue.enqueue(_turn("two"))

    assert queue.take(of_type(TaskType.TURN_INGEST)) is first
    assert queue.take(of_type(TaskType.TURN_INGEST)) is second
    assert queue.take(of_type(TaskType.TURN_INGEST)) is None
    # Tasks of other types stay where they were.
    assert queue.pending() == [finalize]
    assert queue.pending_count == 1
    assert queue.in_flight_count == 2


def test_enqueue_rejects_duplicate_ids() -> None:
    queue = TaskQueue()
    task = queue.enqueue(_turn("hello"))
    with pytest.raises(ValueError):
        queue.enqueue(task)


def test_threads_taking_at_once_never_share_a_task() -> None:
    queue = TaskQueue()
    enqueued = [queue.enqueue(_turn(f"turn {i}")) for i in range(400)]
    workers = 8
    start = threading.Barrier(workers)
    taken: List[List[str]] = [[] for _ in range(workers)]

    def worker(index: int) -> None:
        start.wait()
        while True:
            task = queue.take(of_type(TaskType.TURN_INGEST))
            if task is None:
                return
            taken[index].append(task.id)
            queue.complete(task)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    ids = [task_id for chunk in taken for task_id in chunk]
    assert len(ids) == len(set(ids)) == len(enqueued)
    assert set(ids) == {task.id for task in enqueued}
    assert queue.is_idle


def test_lifecycle_events_and_idempotent_complete() -> None:
    queue = TaskQueue()
    recorder = EventRecorder()
    queue.subscribe(recorder)

    task = queue.enqueue(_turn("hello"))
    taken = queue.take(of_type(TaskType.TURN_INGEST))
    queue.complete(taken)
    queue.complete(taken)
    queue.fail(taken, "late")

    assert recorder.types == [TaskEventType.ENQUEUED, TaskEventType.STARTED, TaskEventType.COMPLETED]
    assert queue.is_done(task)
    assert queue.is_idle


def test_fail_reports_error() -> None:
    queue = TaskQueue()
    recorder = EventRecorder()
    queue.subscribe(recorder)

    queue.enqueue(_turn("hello"))
    taken = queue.take(of_type(TaskType.TURN_INGEST))
    queue.fail(taken, "boom")

    assert recorder.events[-1].type is TaskEventType.FAILED
    assert recorder.events[-1].error == "boom"
    assert queue.is_idle


def test_complete_ignores_tasks_that_were_never_taken() -> None:
    queue = TaskQueue()
    task = queue.enqueue(_turn("hello"))
    queue.complete(task)

    assert not queue.is_done(task)
    assert queue.pending_count == 1


def test_listener_failures_do_not_break_the_queue() -> None:
    queue = TaskQueue()
    recorder = EventRecorder()

    def broken(_event: TaskEvent) -> None:
        raise RuntimeError("listener bug")

    queue.subscribe(broken)
    queue.subscribe(recorder)
    queue.enqueue(_turn("hello"))

    assert recorder.types == [TaskEventType.ENQUEUED]
    assert queue.pending_count == 1


def test_listener_may_enqueue_follow_up_work() -> None:
    queue = TaskQueue()

    def on_event(event: TaskEvent) -> None:
        if event.type is TaskEventType.COMPLETED:
            queue.enqueue(ConversationFinalizeTask(conversation_id=event.task.conversation_id))

    queue.subscribe(on_event)
    queue.enqueue(_turn("hello"))
    queue.complete(queue.take(of_type(TaskType.TURN_INGEST)))

    follow_up = queue.take(of_type(TaskType.CONVERSATION_FINALIZE))
    assert follow_up is not None
    assert follow_up.conversation_id == "conv-1"


def test_closed_subscription_stops_delivery() -> None:
    queue = TaskQueue()
    recorder = EventRecorder()
    subscription = queue.subscribe(recorder)
    subscription.close()
    subscription.close()

    queue.enqueue(_turn("hello"))
    assert recorder.events == []


def test_tasks_are_immutable() -> None:
    task = _turn("hello")
    with pytest.raises(dataclasses.FrozenInstanceError):
        task.conversation_id = "other"  # type: ignore[misc]


def test_drain_waits_for_completion() -> None:
    queue = TaskQueue()
    queue.enqueue(_turn("hello"))

    async def worker() -> None:
        await asyncio.sleep(0.02)
        task = queue.take(of_type(TaskType.TURN_INGEST))
        await asyncio.sleep(0.02)
        queue.complete(task)

    async def scenario() -> bool:
        job = asyncio.create_task(worker())
        drained = await queue.drain(2000)
        await job
        return drained

    assert asyncio.run(scenario()) is True
    assert queue.is_idle


def test_drain_times_out_with_work_outstanding() -> None:
    queue = TaskQueue()
    queue.enqueue(_turn("hello"))

    async def scenario() -> bool:
        return await queue.drain(50)

    assert asyncio.run(scenario()) is False
    assert queue.pending_count == 1


def test_drain_on_idle_queue_returns_immediately() -> None:
    async def scenario() -> bool:
        return await TaskQueue().drain(0)

    assert asyncio.run(scenario()) is True


def test_policy_rejects_inverted_thresholds() -> None:
    with pytest.raises(ValueError):
        PipelinePolicy(duplicate_threshold=0.6, related_threshold=0.7)
    with pytest.raises(ValueError):
        PipelinePolicy(max_visible_suggestions=0)


def test_policy_from_env(monkeypatch, reset_config) -> None:
    monkeypatch.setenv("DUPLICATE_THRESHOLD", "0.95")
    monkeypatch.setenv("CLAIMFLOW_SUGGESTION_BACKLOG_CAPACITY", "5")
    monkeypatch.setenv("AGENT_POLL_INTERVAL_MS", "10")
    reset_config()

    policy = PipelinePolicy.from_env()

    assert policy.duplicate_threshold == 0.95
    assert policy.related_threshold == 0.7
    assert policy.suggestion_backlog_capacity == 5
    assert policy.poll_interval.total_seconds() == 0.01
