from .base import PollingAgent
from .extraction import ExtractionAgent
from .publish import PublishAgent, suggestion_payload
from .validation import ValidationAgent

__all__ = [
    "PollingAgent",
    "ExtractionAgent",
    "PublishAgent",
    "ValidationAgent",
    "suggestion_payload",
]
