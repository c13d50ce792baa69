"""Bounded, UI-facing queue of suggested actions.

The publish agent pushes every validated action here. The UI renders the
oldest entry as the current suggestion and the rest as a ``+N`` badge. When
suggestions arrive faster than the user resolves them, the oldest entries are
evicted from this queue (they stay in storage).
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, List, Mapping, Optional

from claimflow.blackboard import PipelinePolicy, Subscription, TaskQueue, UserDecisionTask
from claimflow.models import UserDecision, normalize_due_window

logger = logging.getLogger("claimflow.suggestions")


def _suggestion_id() -> str:
    return f"sug_{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class Suggestion:
    title: str
    due_window: str = "Everything else"
    evidence: List[str] = field(default_factory=list)
    conversation_id: Optional[str] = None
    id: str = field(default_factory=_suggestion_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "due_window": self.due_window,
            "evidence": list(self.evidence),
            "conversation_id": self.conversation_id,
            "created_at": self.created_at.isoformat(),
        }


SuggestionListener = Callable[["SuggestionQueue"], None]


class SuggestionQueue:
    """Oldest-first suggestion buffer holding ``max_visible + backlog_capacity`` entries."""

    def __init__(
        self,
        queue: TaskQueue | None = None,
        *,
        backlog_capacity: int = 3,
        max_visible: int = 1,
    ) -> None:
        if backlog_capacity < 0:
            raise ValueError("backlog_capacity must be >= 0")
        if max_visible < 1:
            raise ValueError("max_visible must be >= 1")
        self._queue = queue
        self.backlog_capacity = backlog_capacity
        self.max_visible = max_visible
        self._entries: Deque[Suggestion] = deque()
        self._listeners: List[SuggestionListener] = []
        self.evicted_count = 0

    @classmethod
    def from_policy(cls, policy: PipelinePolicy, queue: TaskQueue | None = None) -> "SuggestionQueue":
        return cls(
            queue,
            backlog_capacity=policy.suggestion_backlog_capacity,
            max_visible=policy.max_visible_suggestions,
        )

    def bind(self, queue: TaskQueue | None) -> None:
        """Route user decisions to ``queue`` (``None`` to stop routing them)."""

        self._queue = queue

    @property
    def capacity(self) -> int:
        return self.max_visible + self.backlog_capacity

    # ------------------------------------------------------------------
    # Sink side
    # ------------------------------------------------------------------
    def __call__(self, payload: Mapping[str, Any]) -> Optional[Suggestion]:
        return self.push(payload)

    def push(self, payload: Mapping[str, Any]) -> Optional[Suggestion]:
        title = str(payload.get("title") or "").strip()
        if not title:
            logger.debug("[suggestions.skip] reason=blank_title")
            return None
        conversation_id = payload.get("conversation_id")
        # The same title from another conversation is a separate suggestion.
        if any(entry.title == title and entry.conversation_id == conversation_id for entry in self._entries):
            logger.debug("[suggestions.dedup] title=%s conversation=%s", title, conversation_id)
            return None

        evidence = payload.get("evidence") or []
        suggestion = Suggestion(
            title=title,
            due_window=normalize_due_window(payload.get("due_window", payload.get("dueWindow"))),
            evidence=[str(item) for item in evidence],
            conversation_id=conversation_id,
        )
        while len(self._entries) >= self.capacity:
            evicted = self._entries.popleft()
            self.evicted_count += 1
            logger.info("[suggestions.evict] id=%s title=%s", evicted.id, evicted.title)
        self._entries.append(suggestion)
        logger.debug("[suggestions.push] id=%s title=%s size=%s", suggestion.id, title, len(self._entries))
        self._notify()
        return suggestion

    # ------------------------------------------------------------------
    # UI side
    # ------------------------------------------------------------------
    @property
    def current(self) -> Optional[Suggestion]:
        return self._entries[0] if self._entries else None

    @property
    def visible(self) -> List[Suggestion]:
        return list(self._entries)[: self.max_visible]

    @property
    def remaining_count(self) -> int:
        return max(0, len(self._entries) - self.max_visible)

    @property
    def badge(self) -> str:
        remaining = self.remaining_count
        return f"+{remaining}" if remaining else ""

    def entries(self) -> List[Suggestion]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def accept(self, suggestion_id: str) -> Suggestion:
        return self._resolve(suggestion_id, accepted=True)

    def dismiss(self, suggestion_id: str) -> Suggestion:
        return self._resolve(suggestion_id, accepted=False)

    def clear(self) -> None:
        self._entries.clear()
        self._notify()

    def _resolve(self, suggestion_id: str, *, accepted: bool) -> Suggestion:
        suggestion = next((entry for entry in self._entries if entry.id == suggestion_id), None)
        if suggestion is None:
            raise KeyError(suggestion_id)
        self._entries.remove(suggestion)
        logger.info("[suggestions.resolve] id=%s title=%s accepted=%s", suggestion.id, suggestion.title, accepted)

        if self._queue is not None and suggestion.conversation_id:
            self._queue.enqueue(
                UserDecisionTask(
                    conversation_id=suggestion.conversation_id,
                    decision=UserDecision(
                        title=suggestion.title,
                        due_window=suggestion.due_window,
                        accepted=accepted,
                    ),
                )
            )
        else:
            logger.debug("[suggestions.resolve.local] id=%s reason=no_queue_or_conversation", suggestion.id)
        self._notify()
        return suggestion

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe(self, listener: SuggestionListener) -> Subscription:
        self._listeners.append(listener)

        def _close() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Subscription(close=_close)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("[suggestions.listener.error] listener=%s", getattr(listener, "__name__", "<callable>"))
