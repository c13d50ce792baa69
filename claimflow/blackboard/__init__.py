"""Shared task queue through which the pipeline agents coordinate."""

from .policies import PipelinePolicy
from .queue import Subscription, TaskQueue
from .tasks import (
    ActionProposedTask,
    ActionValidatedTask,
    BaseTask,
    ClaimProposedTask,
    ClaimValidatedTask,
    ConversationFinalizeTask,
    Task,
    TaskEvent,
    TaskEventType,
    TaskListener,
    TaskType,
    TurnIngestTask,
    UserDecisionTask,
    of_type,
)

__all__ = [
    "PipelinePolicy",
    "Subscription",
    "TaskQueue",
    "ActionProposedTask",
    "ActionValidatedTask",
    "BaseTask",
    "ClaimProposedTask",
    "ClaimValidatedTask",
    "ConversationFinalizeTask",
    "Task",
    "TaskEvent",
    "TaskEventType",
    "TaskListener",
    "TaskType",
    "TurnIngestTask",
    "UserDecisionTask",
    "of_type",
]
