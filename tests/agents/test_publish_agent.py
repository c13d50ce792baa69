from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from claimflow.agents import PublishAgent
from claimflow.blackboard import (
    ActionValidatedTask,
    BaseTask,
    ClaimValidatedTask,
    ConversationFinalizeTask,
    TaskEvent,
    TaskEventType,
    TaskQueue,
    UserDecisionTask,
)
from claimflow.models import Action, Claim, UserDecision
from claimflow.storage import InMemoryStore, StorageError


class RecordingStore(InMemoryStore):
    """In-memory store that also logs the order of write calls."""

    def __init__(self, log: List[str]) -> None:
        super().__init__()
        self.log = log

    async def create_action(self, action: Action) -> str:
        self.log.append("create_action")
        return await super().create_action(action)

    async def append_conversation_action(self, conversation_id: str, action_id: str) -> None:
        self.log.append("append_conversation_action")
        await super().append_conversation_action(conversation_id, action_id)

    async def upsert_claim(self, claim: Claim) -> str:
        self.log.append("upsert_claim")
        return await super().upsert_claim(claim)

    async def append_conversation_claim(self, conversation_id: str, claim_id: str) -> None:
        self.log.append("append_conversation_claim")
        await super().append_conversation_claim(conversation_id, claim_id)


class BrokenStore(InMemoryStore):
    async def create_action(self, action: Action) -> str:
        raise StorageError("disk full")


class SinkRecorder:
    def __init__(self, log: List[str] | None = None) -> None:
        self.payloads: List[Dict[str, Any]] = []
        self.log = log

    def __call__(self, payload: Dict[str, Any]) -> None:
        if self.log is not None:
            self.log.append("sink")
        self.payloads.append(payload)


async def _publish(agent: PublishAgent, tasks: List[BaseTask], wait_until, events: List[TaskEvent] | None = None) -> TaskQueue:
    queue = TaskQueue()
    if events is not None:
        queue.subscribe(events.append)
    agent.start(queue)
    for task in tasks:
        queue.enqueue(task)
    await wait_until(lambda: queue.is_idle)
    agent.stop()
    await agent.wait_stopped()
    return queue


def _validated_action(title: str = "Buy tea") -> ActionValidatedTask:
    return ActionValidatedTask(
        conversation_id="conv-1",
        action=Action(title=title, due_window="Today", conversation_id="conv-1", evidence=["I need to buy tea"]),
    )


def _decision(title: str, accepted: bool) -> UserDecisionTask:
    return UserDecisionTask(
        conversation_id="conv-1",
        decision=UserDecision(title=title, due_window="This Week", accepted=accepted),
    )


def test_validated_action_reaches_sink_before_storage(wait_until) -> None:
    log: List[str] = []
    store = RecordingStore(log)
    sink = SinkRecorder(log)
    agent = PublishAgent(store, sink=sink)

    asyncio.run(_publish(agent, [_validated_action()], wait_until))

    assert log == ["sink", "create_action", "append_conversation_action"]
    assert sink.payloads == [
        {"title": "Buy tea", "due_window": "Today", "evidence": ["I need to buy tea"], "conversation_id": "conv-1"}
    ]
    actions = asyncio.run(store.list_actions())
    assert [(a.title, a.status) for a in actions] == [("Buy tea", "suggested")]
    links = asyncio.run(store.conversation_links("conv-1"))
    assert links["actions"] == [actions[0].id]


def test_validated_claim_is_stored_without_sink(wait_until) -> None:
    log: List[str] = []
    store = RecordingStore(log)
    sink = SinkRecorder()
    stored: List[Claim] = []
    agent = PublishAgent(store, sink=sink, on_stored_claim=stored.append)
    task = ClaimValidatedTask(conversation_id="conv-1", claim=Claim(text="Likes tea", conversation_id="conv-1"))

    asyncio.run(_publish(agent, [task], wait_until))

    assert log == ["upsert_claim", "append_conversation_claim"]
    assert sink.payloads == []
    claims = asyncio.run(store.list_claims())
    assert [(c.text, c.status) for c in claims] == [("Likes tea", "inferred")]
    assert [c.id for c in stored] == [claims[0].id]
    assert asyncio.run(store.conversation_links("conv-1"))["claims"] == [claims[0].id]


def test_accepted_decision_persists_one_approved_action(wait_until) -> None:
    store = InMemoryStore()
    sink = SinkRecorder()
    agent = PublishAgent(store, sink=sink)

    asyncio.run(_publish(agent, [_decision("Buy tea", True)], wait_until))

    actions = asyncio.run(store.list_actions())
    assert len(actions) == 1
    assert actions[0].status == "approved"
    assert actions[0].source == "conversation"
    assert actions[0].due_window == "This Week"
    assert actions[0].reminder is False
    assert sink.payloads == []


def test_rejected_decision_persists_nothing(wait_until) -> None:
    store = InMemoryStore()
    sink = SinkRecorder()
    agent = PublishAgent(store, sink=sink)

    asyncio.run(_publish(agent, [_decision("Buy tea", False)], wait_until))

    assert asyncio.run(store.list_actions()) == []
    assert sink.payloads == []


def test_sink_failure_does_not_block_persistence(wait_until) -> None:
    store = InMemoryStore()

    def broken_sink(_payload: Dict[str, Any]) -> None:
        raise RuntimeError("ui went away")

    agent = PublishAgent(store, sink=broken_sink)
    events: List[TaskEvent] = []

    asyncio.run(_publish(agent, [_validated_action()], wait_until, events))

    assert len(asyncio.run(store.list_actions())) == 1
    assert TaskEventType.FAILED not in [event.type for event in events]


def test_async_sink_is_awaited(wait_until) -> None:
    received: List[str] = []

    async def sink(payload: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        received.append(payload["title"])

    agent = PublishAgent(InMemoryStore(), sink=sink)
    asyncio.run(_publish(agent, [_validated_action("Call mom")], wait_until))

    assert received == ["Call mom"]


def test_storage_error_fails_the_task(wait_until) -> None:
    agent = PublishAgent(BrokenStore(), sink=SinkRecorder())
    events: List[TaskEvent] = []

    queue = asyncio.run(_publish(agent, [_validated_action()], wait_until, events))

    failed = [event for event in events if event.type is TaskEventType.FAILED]
    assert len(failed) == 1
    assert "disk full" in (failed[0].error or "")
    assert queue.is_idle


def test_finalize_completes_without_side_effects(wait_until) -> None:
    log: List[str] = []
    store = RecordingStore(log)
    sink = SinkRecorder()
    agent = PublishAgent(store, sink=sink)
    events: List[TaskEvent] = []

    asyncio.run(_publish(agent, [ConversationFinalizeTask(conversation_id="conv-1")], wait_until, events))

    assert log == []
    assert sink.payloads == []
    assert [event.type for event in events][-1] is TaskEventType.COMPLETED
