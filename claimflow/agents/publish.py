"""Publish agent: persists validated work and feeds the suggestion sink."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Union

from claimflow.blackboard import (
    ActionValidatedTask,
    BaseTask,
    ClaimValidatedTask,
    ConversationFinalizeTask,
    PipelinePolicy,
    TaskQueue,
    TaskType,
    UserDecisionTask,
)
from claimflow.models import Action, Claim
from claimflow.storage import Store

from .base import PollingAgent, maybe_await

SuggestionPayload = Dict[str, Any]
SuggestionSink = Callable[[SuggestionPayload], Union[Awaitable[None], None]]
StoredClaimCallback = Callable[[Claim], Union[Awaitable[None], None]]

_ACCEPTED = (
    TaskType.ACTION_VALIDATED,
    TaskType.CLAIM_VALIDATED,
    TaskType.ACTION_USER_DECISION,
    TaskType.CONVERSATION_FINALIZE,
)


def suggestion_payload(action: Action) -> SuggestionPayload:
    return {
        "title": action.title,
        "due_window": action.due_window,
        "evidence": list(action.evidence),
        "conversation_id": action.conversation_id,
    }


class PublishAgent(PollingAgent):
    """Terminal stage of the pipeline.

    Validated actions go to the suggestion sink first and are then stored as
    ``suggested``. Validated claims are only stored; the UI reads them from
    storage. User decisions store an ``approved`` action when accepted and
    never reach the sink, since the UI originated them.
    """

    name = "publish"

    def __init__(
        self,
        store: Store,
        *,
        sink: SuggestionSink | None = None,
        on_stored_claim: StoredClaimCallback | None = None,
        policy: PipelinePolicy | None = None,
    ) -> None:
        super().__init__(policy=policy, concurrency=1)
        self._store = store
        self._sink = sink
        self._on_stored_claim = on_stored_claim

    def accepts(self, task: BaseTask) -> bool:
        return task.type in _ACCEPTED

    async def handle(self, task: BaseTask, queue: TaskQueue) -> None:
        if isinstance(task, ActionValidatedTask):
            await self._publish_action(task)
        elif isinstance(task, ClaimValidatedTask):
            await self._publish_claim(task)
        elif isinstance(task, UserDecisionTask):
            await self._record_decision(task)
        elif isinstance(task, ConversationFinalizeTask):
            self.logger.info("[publish.finalize] conversation=%s", task.conversation_id)
        else:
            raise ValueError(f"unexpected task type {task.type.value}")

    async def _publish_action(self, task: ActionValidatedTask) -> None:
        action = task.action.model_copy(update={"status": "suggested"})
        await self._notify_sink(task, action)
        action_id = await self._store.create_action(action)
        await self._store.append_conversation_action(task.conversation_id, action_id)
        self.logger.info(
            "[publish.action] conversation=%s id=%s title=%s", task.conversation_id, action_id, action.title
        )

    async def _notify_sink(self, task: ActionValidatedTask, action: Action) -> None:
        if self._sink is None:
            return
        try:
            await maybe_await(self._sink(suggestion_payload(action)))
        except Exception:
            # The UI missing one suggestion must not lose the stored action.
            self.logger.exception("[publish.sink_error] task=%s title=%s", task.id, action.title)

    async def _publish_claim(self, task: ClaimValidatedTask) -> None:
        claim_id = await self._store.upsert_claim(task.claim)
        await self._store.append_conversation_claim(task.conversation_id, claim_id)
        stored = task.claim.model_copy(update={"id": claim_id})
        self.logger.info(
            "[publish.claim] conversation=%s id=%s status=%s", task.conversation_id, claim_id, stored.status
        )
        if self._on_stored_claim is not None:
            try:
                await maybe_await(self._on_stored_claim(stored))
            except Exception:
                self.logger.exception("[publish.callback_error] task=%s claim=%s", task.id, claim_id)

    async def _record_decision(self, task: UserDecisionTask) -> None:
        decision = task.decision
        if not decision.accepted:
            self.logger.info(
                "[publish.decision] conversation=%s title=%s accepted=false", task.conversation_id, decision.title
            )
            return
        action = Action(
            title=decision.title,
            due_window=decision.due_window,
            source="conversation",
            reminder=False,
            status="approved",
            conversation_id=task.conversation_id,
        )
        action_id = await self._store.create_action(action)
        self.logger.info(
            "[publish.decision] conversation=%s title=%s accepted=true id=%s",
            task.conversation_id,
            decision.title,
            action_id,
        )
