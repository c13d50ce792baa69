"""Task variants exchanged between agents through the blackboard queue.

Every task is an immutable record. The queue keeps its own lifecycle status
for each task id, so agents never need (or get) a way to edit a task once it
has been enqueued.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ClassVar, Optional, Union
from uuid import uuid4

from claimflow.models import (
    Action,
    Claim,
    ProposedAction,
    ProposedClaim,
    TranscriptTurn,
    UserDecision,
)


class TaskType(str, Enum):
    TURN_INGEST = "turn.ingest"
    CLAIM_PROPOSED = "claim.proposed"
    ACTION_PROPOSED = "action.proposed"
    CLAIM_VALIDATED = "claim.validated"
    ACTION_VALIDATED = "action.validated"
    ACTION_USER_DECISION = "action.user_decision"
    CONVERSATION_FINALIZE = "conversation.finalize"


class TaskEventType(str, Enum):
    ENQUEUED = "task.enqueued"
    STARTED = "task.started"
    COMPLETED = "task.completed"
    FAILED = "task.failed"


def _task_id() -> str:
    return f"task-{uuid4().hex}"


@dataclass(frozen=True, slots=True, kw_only=True)
class BaseTask:
    type: ClassVar[TaskType]

    conversation_id: str
    id: str = field(default_factory=_task_id)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True, kw_only=True)
class TurnIngestTask(BaseTask):
    type: ClassVar[TaskType] = TaskType.TURN_INGEST

    turn: TranscriptTurn


@dataclass(frozen=True, slots=True, kw_only=True)
class ClaimProposedTask(BaseTask):
    type: ClassVar[TaskType] = TaskType.CLAIM_PROPOSED

    claim: ProposedClaim


@dataclass(frozen=True, slots=True, kw_only=True)
class ActionProposedTask(BaseTask):
    type: ClassVar[TaskType] = TaskType.ACTION_PROPOSED

    action: ProposedAction


@dataclass(frozen=True, slots=True, kw_only=True)
class ClaimValidatedTask(BaseTask):
    type: ClassVar[TaskType] = TaskType.CLAIM_VALIDATED

    claim: Claim


@dataclass(frozen=True, slots=True, kw_only=True)
class ActionValidatedTask(BaseTask):
    type: ClassVar[TaskType] = TaskType.ACTION_VALIDATED

    action: Action


@dataclass(frozen=True, slots=True, kw_only=True)
class UserDecisionTask(BaseTask):
    type: ClassVar[TaskType] = TaskType.ACTION_USER_DECISION

    decision: UserDecision


@dataclass(frozen=True, slots=True, kw_only=True)
class ConversationFinalizeTask(BaseTask):
    """Marker enqueued when a conversation ends so ``drain`` has something to wait on."""

    type: ClassVar[TaskType] = TaskType.CONVERSATION_FINALIZE


Task = Union[
    TurnIngestTask,
    ClaimProposedTask,
    ActionProposedTask,
    ClaimValidatedTask,
    ActionValidatedTask,
    UserDecisionTask,
    ConversationFinalizeTask,
]

TaskPredicate = Callable[[BaseTask], bool]


def of_type(*types: TaskType) -> TaskPredicate:
    """Build a ``take`` predicate matching any of ``types``."""

    wanted = frozenset(types)

    def _predicate(task: BaseTask) -> bool:
        return task.type in wanted

    return _predicate


@dataclass(frozen=True, slots=True)
class TaskEvent:
    type: TaskEventType
    task: BaseTask
    error: Optional[str] = None


TaskListener = Callable[[TaskEvent], None]
