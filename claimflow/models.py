from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, get_args

from pydantic import BaseModel, Field, field_validator


Speaker = Literal["user", "assistant"]
DueWindow = Literal["Today", "This Week", "This Month", "Everything else"]
ClaimCategory = Literal["preferences", "skills", "relationships", "other"]
ClaimStatus = Literal["inferred", "confirmed", "rejected"]
ActionSource = Literal["conversation", "suggested", "user", "system"]
ActionStatus = Literal["suggested", "approved", "dismissed", "done"]
ReviewStatus = Literal["pending", "resolved"]
ReviewSeverity = Literal["low", "medium", "high"]

DUE_WINDOWS: tuple[str, ...] = get_args(DueWindow)
CLAIM_CATEGORIES: tuple[str, ...] = get_args(ClaimCategory)


def normalize_due_window(value: Any) -> str:
    """Coerce free-form due values onto the four due buckets."""
    if isinstance(value, str) and value in DUE_WINDOWS:
        return value
    return "Everything else"


def normalize_category(value: Any) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in CLAIM_CATEGORIES:
            return lowered
    return "other"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptTurn(BaseModel):
    speaker: Speaker
    text: str
    timestamp_ms: int = 0


class ProposedClaim(BaseModel):
    text: str = Field(min_length=1)
    category: ClaimCategory = "other"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> str:
        return normalize_category(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.5
        return min(1.0, max(0.0, number))


class ProposedAction(BaseModel):
    title: str = Field(min_length=1)
    due_window: DueWindow = "Everything else"
    source: ActionSource = "conversation"
    reminder: bool = False
    evidence: List[str] = Field(default_factory=list)

    @field_validator("due_window", mode="before")
    @classmethod
    def _coerce_due_window(cls, value: Any) -> str:
        return normalize_due_window(value)


class Claim(BaseModel):
    id: Optional[str] = None
    text: str
    category: ClaimCategory = "other"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)
    status: ClaimStatus = "inferred"
    conversation_id: str
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_proposal(
        cls,
        proposal: ProposedClaim,
        conversation_id: str,
        embedding: Optional[List[float]] = None,
    ) -> "Claim":
        return cls(
            text=proposal.text,
            category=proposal.category,
            confidence=proposal.confidence,
            evidence=list(proposal.evidence),
            conversation_id=conversation_id,
            embedding=embedding,
        )


class Action(BaseModel):
    id: Optional[str] = None
    title: str
    due_window: DueWindow = "Everything else"
    source: ActionSource = "conversation"
    reminder: bool = False
    status: ActionStatus = "suggested"
    conversation_id: str
    evidence: List[str] = Field(default_factory=list)
    # Kept with the record so later validations can skip re-embedding the title.
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_proposal(
        cls,
        proposal: ProposedAction,
        conversation_id: str,
        embedding: Optional[List[float]] = None,
    ) -> "Action":
        return cls(
            title=proposal.title,
            due_window=proposal.due_window,
            source=proposal.source,
            reminder=proposal.reminder,
            conversation_id=conversation_id,
            evidence=list(proposal.evidence),
            embedding=embedding,
        )


class ReviewQueueItem(BaseModel):
    id: Optional[str] = None
    title: str
    summary: str
    claim_ids: List[str] = Field(default_factory=list)
    action_ids: List[str] = Field(default_factory=list)
    conversation_id: Optional[str] = None
    status: ReviewStatus = "pending"
    resolution: Optional[str] = None
    severity: ReviewSeverity = "low"
    score: Optional[float] = None
    embedding: Optional[List[float]] = None
    created_at: datetime = Field(default_factory=_utcnow)


class UserDecision(BaseModel):
    title: str
    due_window: DueWindow = "Everything else"
    accepted: bool

    @field_validator("due_window", mode="before")
    @classmethod
    def _coerce_due_window(cls, value: Any) -> str:
        return normalize_due_window(value)


class ExtractionResult(BaseModel):
    """Raw output of the reasoning service for one turn.

    Items are kept as loose dicts; the extraction agent validates them one by
    one so a single malformed entry does not discard the rest of the turn.
    """

    claims: List[Any] = Field(default_factory=list)
    actions: List[Any] = Field(default_factory=list)
    continuity_token: Optional[str] = None


def severity_for_score(score: float) -> str:
    if score >= 0.85:
        return "high"
    if score >= 0.75:
        return "medium"
    return "low"
