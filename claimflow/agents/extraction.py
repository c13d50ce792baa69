"""Extraction agent: conversation turns in, claim/action proposals out."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from claimflow.blackboard import (
    ActionProposedTask,
    BaseTask,
    ClaimProposedTask,
    PipelinePolicy,
    TaskQueue,
    TaskType,
    TurnIngestTask,
)
from claimflow.models import ExtractionResult, ProposedAction, ProposedClaim, TranscriptTurn
from claimflow.services.reasoning import extract_claims_and_actions

from .base import PollingAgent, maybe_await

ReasoningResult = Union[ExtractionResult, Dict[str, Any]]
ReasoningFn = Callable[
    [str, Optional[str], Dict[str, List[str]]],
    Union[Awaitable[ReasoningResult], ReasoningResult],
]


def normalize_key(text: str) -> str:
    return text.strip().lower()


class ExtractionAgent(PollingAgent):
    """Turns ``turn.ingest`` tasks into ``claim.proposed`` / ``action.proposed``.

    The agent threads the reasoning service's continuity token from one call
    to the next and remembers every claim text and action title it already
    proposed this session. Both are per-instance state and are wiped by
    :meth:`stop`. A single worker is used so that call *N+1* always sees the
    token returned by call *N*.
    """

    name = "extraction"

    def __init__(self, reasoning: ReasoningFn | None = None, *, policy: PipelinePolicy | None = None) -> None:
        super().__init__(policy=policy, concurrency=1)
        self._reasoning: ReasoningFn = reasoning or extract_claims_and_actions
        self._generation = 0
        self.continuity_token: Optional[str] = None
        self.extracted_claims: Set[str] = set()
        self.extracted_actions: Set[str] = set()

    def accepts(self, task: BaseTask) -> bool:
        return task.type is TaskType.TURN_INGEST

    def stop(self) -> None:
        super().stop()
        self.reset()

    def reset(self) -> None:
        """Forget the continuity token and the session dedup sets."""

        # Bumping the generation invalidates any call still in flight, so a
        # late reply cannot write the previous session's token back.
        self._generation += 1
        self.continuity_token = None
        self.extracted_claims.clear()
        self.extracted_actions.clear()

    def already_extracted(self) -> Dict[str, List[str]]:
        return {
            "claims": sorted(self.extracted_claims),
            "actions": sorted(self.extracted_actions),
        }

    async def handle(self, task: BaseTask, queue: TaskQueue) -> None:
        if not isinstance(task, TurnIngestTask):
            raise ValueError(f"unexpected task type {task.type.value}")

        turn = task.turn
        # Assistant turns are context for the model, not a source of claims.
        if turn.speaker != "user":
            self.logger.debug("[extraction.skip] task=%s speaker=%s", task.id, turn.speaker)
            return

        generation = self._generation
        result = await self._extract(task)
        if generation != self._generation:
            self.logger.info("[extraction.stale] task=%s conversation=%s", task.id, task.conversation_id)
            return

        self.continuity_token = result.continuity_token

        proposed_actions = 0
        for raw in result.actions:
            action = self._build_action(raw, turn)
            if action is None:
                continue
            key = normalize_key(action.title)
            if key in self.extracted_actions:
                self.logger.debug("[extraction.dedup] kind=action title=%s", key)
                continue
            self.extracted_actions.add(key)
            queue.enqueue(ActionProposedTask(conversation_id=task.conversation_id, action=action))
            proposed_actions += 1

        proposed_claims = 0
        for raw in result.claims:
            claim = self._build_claim(raw, turn)
            if claim is None:
                continue
            key = normalize_key(claim.text)
            if key in self.extracted_claims:
                self.logger.debug("[extraction.dedup] kind=claim text=%s", key)
                continue
            self.extracted_claims.add(key)
            queue.enqueue(ClaimProposedTask(conversation_id=task.conversation_id, claim=claim))
            proposed_claims += 1

        self.logger.info(
            "[extraction.done] task=%s conversation=%s claims=%s actions=%s token=%s",
            task.id,
            task.conversation_id,
            proposed_claims,
            proposed_actions,
            "yes" if self.continuity_token else "no",
        )

    async def _extract(self, task: TurnIngestTask) -> ExtractionResult:
        try:
            raw = await maybe_await(
                self._reasoning(task.turn.text, self.continuity_token, self.already_extracted())
            )
            if isinstance(raw, ExtractionResult):
                return raw
            return ExtractionResult.model_validate(raw or {})
        except Exception:
            # A failed extraction is the same as an empty one.
            self.logger.exception(
                "[extraction.service_error] task=%s conversation=%s", task.id, task.conversation_id
            )
            return ExtractionResult()

    def _build_action(self, raw: Any, turn: TranscriptTurn) -> Optional[ProposedAction]:
        if not isinstance(raw, dict):
            self.logger.warning("[extraction.malformed] kind=action payload=%r", raw)
            return None
        title = raw.get("title")
        if not isinstance(title, str) or not title.strip():
            self.logger.debug("[extraction.blank] kind=action")
            return None
        try:
            return ProposedAction(
                title=title.strip(),
                due_window=raw.get("dueWindow", raw.get("due_window")),
                reminder=bool(raw.get("reminder", False)),
                evidence=[turn.text],
            )
        except ValidationError as exc:
            self.logger.warning("[extraction.malformed] kind=action title=%s error=%s", title, exc)
            return None

    def _build_claim(self, raw: Any, turn: TranscriptTurn) -> Optional[ProposedClaim]:
        if not isinstance(raw, dict):
            self.logger.warning("[extraction.malformed] kind=claim payload=%r", raw)
            return None
        text = raw.get("text")
        if not isinstance(text, str) or not text.strip():
            self.logger.debug("[extraction.blank] kind=claim")
            return None
        evidence = raw.get("evidence")
        if isinstance(evidence, str):
            evidence = [evidence]
        elif isinstance(evidence, list):
            evidence = [item for item in evidence if isinstance(item, str)]
        else:
            evidence = []
        try:
            return ProposedClaim(
                text=text.strip(),
                category=raw.get("category", "other"),
                confidence=raw.get("confidence", 0.5),
                evidence=evidence or [turn.text],
            )
        except ValidationError as exc:
            self.logger.warning("[extraction.malformed] kind=claim text=%s error=%s", text, exc)
            return None
