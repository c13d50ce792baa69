"""Validation agent: similarity screening of proposed claims and actions."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from claimflow.blackboard import (
    ActionProposedTask,
    ActionValidatedTask,
    BaseTask,
    ClaimProposedTask,
    ClaimValidatedTask,
    PipelinePolicy,
    TaskEvent,
    TaskEventType,
    TaskQueue,
    TaskType,
)
from claimflow.models import Action, Claim, ReviewQueueItem, severity_for_score
from claimflow.services.conflict import detect_conflict
from claimflow.services.embedding_utils import cosine_similarity, generate_embedding
from claimflow.storage import Store
from claimflow.storage.base import new_record_id

from .base import PollingAgent, maybe_await

EmbedFn = Callable[[str], Union[Awaitable[List[float]], List[float]]]
ConflictFn = Callable[[str, str], Union[Awaitable[bool], bool]]

_ACCEPTED = (TaskType.CLAIM_PROPOSED, TaskType.ACTION_PROPOSED)
_SETTLED = (TaskEventType.COMPLETED, TaskEventType.FAILED)


@dataclass(slots=True)
class Match:
    """Best earlier candidate for a proposal."""

    item_id: str
    text: str
    score: float


@dataclass(slots=True)
class Unpublished:
    """A validated item the publish agent has not settled yet."""

    kind: str
    item_id: str
    text: str
    embedding: List[float]


class _KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._entries: Dict[str, List[Any]] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class ValidationAgent(PollingAgent):
    """Compares each proposal against earlier items of its kind.

    * ``score >= duplicate_threshold``: dropped, nothing emitted.
    * ``related_threshold <= score < duplicate_threshold``: conflict check;
      a conflict opens a review item, and the proposal is emitted either way.
    * otherwise: emitted as validated.

    Earlier items are the most recent persisted ones plus everything this
    agent validated that the publish agent has not yet completed or failed.
    Matching and emitting run under a per-kind lock, so of two near-identical
    proposals only the first gets through, whether or not it is stored yet.

    Inconclusive checks (embedding or storage read errors) emit the proposal
    rather than lose it.
    """

    name = "validation"

    def __init__(
        self,
        store: Store,
        *,
        embed: EmbedFn | None = None,
        detect_conflict_fn: ConflictFn | None = None,
        policy: PipelinePolicy | None = None,
        concurrency: int | None = None,
    ) -> None:
        policy = policy or PipelinePolicy()
        super().__init__(policy=policy, concurrency=concurrency or policy.validation_concurrency)
        self._embed: EmbedFn = embed or generate_embedding
        self._detect_conflict: ConflictFn = detect_conflict_fn or detect_conflict
        self._store = store
        self._locks = _KeyedLocks()
        # validated task id -> item awaiting publish
        self._unpublished: Dict[str, Unpublished] = {}

    @property
    def unpublished(self) -> List[Unpublished]:
        return list(self._unpublished.values())

    def accepts(self, task: BaseTask) -> bool:
        return task.type in _ACCEPTED

    def start(self, queue: TaskQueue) -> None:
        if not self.running:
            # Items validated for a previous queue will never be published.
            self._unpublished.clear()
        super().start(queue)

    def _on_event(self, event: TaskEvent) -> None:
        super()._on_event(event)
        if event.type in _SETTLED and self._unpublished.pop(event.task.id, None) is not None:
            self.logger.debug("[validation.settled] task=%s outcome=%s", event.task.id, event.type.value)

    async def handle(self, task: BaseTask, queue: TaskQueue) -> None:
        if isinstance(task, ClaimProposedTask):
            kind, text = "claim", task.claim.text
        elif isinstance(task, ActionProposedTask):
            kind, text = "action", task.action.title
        else:
            raise ValueError(f"unexpected task type {task.type.value}")

        try:
            embedding = list(await maybe_await(self._embed(text)))
        except Exception:
            self.logger.exception(
                "[validation.fail_open] task=%s conversation=%s kind=%s stage=embed",
                task.id,
                task.conversation_id,
                kind,
            )
            self._emit_validated(queue, task, kind, text, None)
            return

        async with self._locks.hold(kind):
            await self._validate(queue, task, kind, text, embedding)

    async def _validate(
        self,
        queue: TaskQueue,
        task: BaseTask,
        kind: str,
        text: str,
        embedding: List[float],
    ) -> None:
        try:
            match = await self._best_match(kind, embedding)
        except Exception:
            self.logger.exception(
                "[validation.fail_open] task=%s conversation=%s kind=%s stage=match",
                task.id,
                task.conversation_id,
                kind,
            )
            self._emit_validated(queue, task, kind, text, embedding)
            return

        if match is None:
            self.logger.debug("[validation.new] task=%s kind=%s candidates=0", task.id, kind)
            self._emit_validated(queue, task, kind, text, embedding)
            return

        policy = self.policy
        if match.score >= policy.duplicate_threshold:
            self.logger.info(
                "[validation.drop] conversation=%s kind=%s score=%.3f match=%s",
                task.conversation_id,
                kind,
                match.score,
                match.item_id,
            )
            return

        if match.score >= policy.related_threshold:
            if await self._conflicts(match.text, text):
                await self._flag(task, kind, text, match, embedding)
        else:
            self.logger.debug("[validation.new] task=%s kind=%s score=%.3f", task.id, kind, match.score)
        self._emit_validated(queue, task, kind, text, embedding)

    async def _candidates(self, kind: str) -> Sequence[Union[Claim, Action]]:
        if kind == "claim":
            items: Sequence[Union[Claim, Action]] = await self._store.list_claims()
        else:
            items = await self._store.list_actions()
        return items[: self.policy.comparison_window]

    async def _best_match(self, kind: str, embedding: Sequence[float]) -> Optional[Match]:
        best: Optional[Match] = None
        # Candidates are visited newest first (unpublished, then stored) and
        # only a strictly greater score replaces the best, so the most
        # recently created item wins a tie.
        for pending in reversed(list(self._unpublished.values())):
            if pending.kind != kind:
                continue
            score = cosine_similarity(embedding, pending.embedding)
            if best is None or score > best.score:
                best = Match(item_id=pending.item_id, text=pending.text, score=score)
        for item in await self._candidates(kind):
            if not item.id:
                continue
            candidate_text = item.text if isinstance(item, Claim) else item.title
            vector = item.embedding or await maybe_await(self._embed(candidate_text))
            score = cosine_similarity(embedding, vector)
            if best is None or score > best.score:
                best = Match(item_id=item.id, text=candidate_text, score=score)
        return best

    async def _conflicts(self, existing_text: str, new_text: str) -> bool:
        try:
            return bool(await maybe_await(self._detect_conflict(existing_text, new_text)))
        except Exception:
            self.logger.exception("[validation.conflict_error] existing=%s new=%s", existing_text, new_text)
            return False

    async def _flag(
        self,
        task: BaseTask,
        kind: str,
        text: str,
        match: Match,
        embedding: Optional[List[float]],
    ) -> None:
        if kind == "action":
            item = ReviewQueueItem(
                title="Potential action conflict detected",
                summary=f"Possible duplicate between '{match.text}' and '{text}'.",
                action_ids=[match.item_id],
            )
        else:
            item = ReviewQueueItem(
                title="Potential conflict detected",
                summary=f"Possible inconsistency between '{match.text}' and '{text}'.",
                claim_ids=[match.item_id],
            )
        item = item.model_copy(
            update={
                "conversation_id": task.conversation_id,
                "severity": severity_for_score(match.score),
                "score": match.score,
                "embedding": embedding,
            }
        )
        try:
            review_id = await self._store.create_review_queue_item(item)
        except Exception:
            self.logger.exception("[validation.review_error] task=%s match=%s", task.id, match.item_id)
            return
        self.logger.info(
            "[validation.review] conversation=%s kind=%s review=%s match=%s score=%.3f",
            task.conversation_id,
            kind,
            review_id,
            match.item_id,
            match.score,
        )

    def _emit_validated(
        self,
        queue: TaskQueue,
        task: BaseTask,
        kind: str,
        text: str,
        embedding: Optional[List[float]],
    ) -> None:
        # Ids are assigned here so a later review item can reference an item
        # that is still on its way to storage.
        validated: Union[ClaimValidatedTask, ActionValidatedTask]
        if isinstance(task, ClaimProposedTask):
            claim = Claim.from_proposal(task.claim, task.conversation_id, embedding)
            claim = claim.model_copy(update={"id": new_record_id("clm")})
            item_id = claim.id
            validated = ClaimValidatedTask(conversation_id=task.conversation_id, claim=claim)
        elif isinstance(task, ActionProposedTask):
            action = Action.from_proposal(task.action, task.conversation_id, embedding)
            action = action.model_copy(update={"id": new_record_id("act")})
            item_id = action.id
            validated = ActionValidatedTask(conversation_id=task.conversation_id, action=action)
        else:
            return
        # A task finishing after stop() emits to a queue nobody publishes from.
        if embedding is not None and self.running and queue is self.queue:
            self._unpublished[validated.id] = Unpublished(
                kind=kind, item_id=item_id, text=text, embedding=list(embedding)
            )
        queue.enqueue(validated)
