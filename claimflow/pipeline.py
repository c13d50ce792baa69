"""Claim/action pipeline wiring: one task queue, three agents, one suggestion queue."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from claimflow.agents import ExtractionAgent, PublishAgent, ValidationAgent
from claimflow.agents.extraction import ReasoningFn
from claimflow.agents.publish import StoredClaimCallback, SuggestionSink
from claimflow.agents.validation import ConflictFn, EmbedFn
from claimflow.blackboard import ConversationFinalizeTask, PipelinePolicy, TaskQueue, TurnIngestTask
from claimflow.models import TranscriptTurn
from claimflow.storage import InMemoryStore, Store
from claimflow.suggestions import Suggestion, SuggestionQueue

logger = logging.getLogger("claimflow.pipeline")


class ClaimPipeline:
    """Runs extraction, validation and publishing against a shared queue.

    Every :meth:`start` creates a fresh :class:`TaskQueue`; :meth:`stop` halts
    all agents and wipes the extraction agent's continuity state, so a
    restarted pipeline treats previously seen texts as new.
    """

    def __init__(
        self,
        reasoning: ReasoningFn | None = None,
        embed: EmbedFn | None = None,
        detect_conflict: ConflictFn | None = None,
        store: Store | None = None,
        *,
        policy: PipelinePolicy | None = None,
        sink: SuggestionSink | None = None,
        on_stored_claim: StoredClaimCallback | None = None,
    ) -> None:
        self.policy = policy or PipelinePolicy()
        self.store: Store = store if store is not None else InMemoryStore()
        self.suggestions = SuggestionQueue.from_policy(self.policy)
        self.extraction = ExtractionAgent(reasoning, policy=self.policy)
        self.validation = ValidationAgent(
            self.store,
            embed=embed,
            detect_conflict_fn=detect_conflict,
            policy=self.policy,
        )
        self.publish = PublishAgent(
            self.store,
            sink=sink if sink is not None else self.suggestions,
            on_stored_claim=on_stored_claim,
            policy=self.policy,
        )
        self._queue: Optional[TaskQueue] = None
        self._running = False

    @property
    def queue(self) -> Optional[TaskQueue]:
        return self._queue

    @property
    def running(self) -> bool:
        return self._running

    @property
    def agents(self) -> tuple:
        return (self.extraction, self.validation, self.publish)

    def start(self) -> TaskQueue:
        """Start every agent on a fresh queue. Requires a running event loop."""

        if self._running and self._queue is not None:
            return self._queue
        queue = TaskQueue()
        self._queue = queue
        self.suggestions.bind(queue)
        for agent in self.agents:
            agent.start(queue)
        self._running = True
        logger.info("[pipeline.start] store=%s", getattr(self.store, "name", type(self.store).__name__))
        return queue

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for agent in self.agents:
            agent.stop()
        self.suggestions.bind(None)
        logger.info("[pipeline.stop]")

    async def shutdown(self) -> None:
        """Stop and wait for in-flight tasks to finish."""

        self.stop()
        for agent in self.agents:
            await agent.wait_stopped()

    def _ensure_running(self) -> TaskQueue:
        if not self._running or self._queue is None:
            raise RuntimeError("Claim pipeline is not running")
        return self._queue

    def ingest_turn(
        self,
        conversation_id: str,
        turn: Union[TranscriptTurn, Mapping[str, Any]],
    ) -> TurnIngestTask:
        queue = self._ensure_running()
        if not isinstance(turn, TranscriptTurn):
            turn = TranscriptTurn.model_validate(turn)
        task = queue.enqueue(TurnIngestTask(conversation_id=conversation_id, turn=turn))
        logger.debug("[pipeline.ingest] conversation=%s speaker=%s task=%s", conversation_id, turn.speaker, task.id)
        return task

    def finalize(self, conversation_id: str) -> ConversationFinalizeTask:
        queue = self._ensure_running()
        return queue.enqueue(ConversationFinalizeTask(conversation_id=conversation_id))

    async def drain(self, timeout_ms: int | None = None) -> bool:
        queue = self._ensure_running()
        if timeout_ms is None:
            timeout_ms = int(self.policy.drain_timeout.total_seconds() * 1000)
        return await queue.drain(timeout_ms)

    def decide(self, suggestion_id: str, accepted: bool) -> Suggestion:
        """Resolve a suggestion on behalf of the user. Unknown ids raise ``KeyError``."""

        self._ensure_running()
        if accepted:
            return self.suggestions.accept(suggestion_id)
        return self.suggestions.dismiss(suggestion_id)


def build_default_pipeline() -> ClaimPipeline:
    """Pipeline bound to the configured LLM services and storage backend."""

    from claimflow.services.conflict import detect_conflict
    from claimflow.services.embedding_utils import generate_embedding
    from claimflow.services.reasoning import extract_claims_and_actions
    from claimflow.storage import build_store

    return ClaimPipeline(
        extract_claims_and_actions,
        generate_embedding,
        detect_conflict,
        build_store(),
        policy=PipelinePolicy.from_env(),
    )
