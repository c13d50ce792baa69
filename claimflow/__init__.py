"""Conversation claim and action extraction pipeline."""

from .pipeline import ClaimPipeline, build_default_pipeline
from .suggestions import Suggestion, SuggestionQueue

__all__ = ["ClaimPipeline", "build_default_pipeline", "Suggestion", "SuggestionQueue"]
