"""Policy objects that govern validation thresholds and agent scheduling."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from claimflow import config


@dataclass(frozen=True)
class PipelinePolicy:
    """Thresholds and capacities shared by the pipeline agents."""

    duplicate_threshold: float = 0.9
    """Similarity at or above which a proposal is dropped as a duplicate."""

    related_threshold: float = 0.7
    """Similarity at or above which a proposal is checked for conflicts."""

    comparison_window: int = 25
    """How many recent persisted items a proposal is compared against."""

    suggestion_backlog_capacity: int = 3
    """Suggestions kept behind the visible one before the oldest is evicted."""

    max_visible_suggestions: int = 1

    poll_interval: timedelta = timedelta(milliseconds=25)
    """Idle sleep between ``take`` attempts when an agent finds no work."""

    drain_timeout: timedelta = timedelta(seconds=8)

    validation_concurrency: int = 1

    def __post_init__(self) -> None:
        if not 0.0 <= self.related_threshold <= self.duplicate_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= related_threshold <= duplicate_threshold <= 1"
            )
        if self.suggestion_backlog_capacity < 0:
            raise ValueError("suggestion_backlog_capacity must be >= 0")
        if self.max_visible_suggestions < 1:
            raise ValueError("max_visible_suggestions must be >= 1")
        if self.validation_concurrency < 1:
            raise ValueError("validation_concurrency must be >= 1")

    @classmethod
    def from_env(cls) -> "PipelinePolicy":
        return cls(
            duplicate_threshold=config.get_duplicate_threshold(),
            related_threshold=config.get_related_threshold(),
            comparison_window=config.get_comparison_window(),
            suggestion_backlog_capacity=config.get_suggestion_backlog_capacity(),
            poll_interval=timedelta(milliseconds=config.get_agent_poll_interval_ms()),
            drain_timeout=timedelta(milliseconds=config.get_drain_timeout_ms()),
            validation_concurrency=config.get_validation_concurrency(),
        )
