from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from claimflow.suggestions import Suggestion


class TurnRequest(BaseModel):
	speaker: Literal["user", "assistant"]
	text: str = Field(min_length=1)
	timestamp_ms: int = 0


class TurnResponse(BaseModel):
	task_id: str
	conversation_id: str


class FinalizeResponse(BaseModel):
	task_id: str
	conversation_id: str
	drained: bool
	claims: List[str] = Field(default_factory=list)
	actions: List[str] = Field(default_factory=list)


class SuggestionItem(BaseModel):
	id: str
	title: str
	due_window: str
	evidence: List[str] = Field(default_factory=list)
	conversation_id: Optional[str] = None

	@classmethod
	def from_suggestion(cls, suggestion: Suggestion) -> "SuggestionItem":
		return cls(
			id=suggestion.id,
			title=suggestion.title,
			due_window=suggestion.due_window,
			evidence=list(suggestion.evidence),
			conversation_id=suggestion.conversation_id,
		)


class SuggestionsResponse(BaseModel):
	current: Optional[SuggestionItem] = None
	remaining: int = 0
	badge: str = ""
	evicted: int = 0


class DecisionResponse(BaseModel):
	suggestion: SuggestionItem
	accepted: bool
	next: SuggestionsResponse


class ResolveReviewRequest(BaseModel):
	resolution: str = Field(min_length=1)


class ListResponse(BaseModel):
	items: List[Dict[str, object]] = Field(default_factory=list)
	count: int = 0
