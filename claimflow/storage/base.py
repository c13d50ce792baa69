"""Storage contract consumed by the pipeline agents."""

from __future__ import annotations

import uuid
from typing import Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

from claimflow.models import Action, Claim, ReviewQueueItem


StatusFilter = Optional[Union[str, Sequence[str]]]


class StorageError(RuntimeError):
    """Raised when a storage backend cannot complete a request."""


def new_record_id(prefix: str) -> str:
    """Record id such as ``act_1a2b3c4d5e6f``; stores keep ids they are given."""

    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@runtime_checkable
class Store(Protocol):
    """Durable storage for claims, actions and review-queue items.

    ``list_*`` methods return newest first. Every stored record carries the
    embedding it was persisted with, if any.
    """

    name: str

    async def list_actions(self, status: StatusFilter = None) -> List[Action]:
        ...

    async def list_claims(self, status: StatusFilter = None) -> List[Claim]:
        ...

    async def create_action(self, action: Action) -> str:
        """Persist a new action under ``action.id`` (or a fresh id) and return the id."""

    async def upsert_claim(self, claim: Claim) -> str:
        """Insert a claim, or replace it when ``claim.id`` already exists."""

    async def append_conversation_action(self, conversation_id: str, action_id: str) -> None:
        ...

    async def append_conversation_claim(self, conversation_id: str, claim_id: str) -> None:
        ...

    async def create_review_queue_item(self, item: ReviewQueueItem) -> str:
        ...

    async def list_review_queue(self, status: StatusFilter = "pending") -> List[ReviewQueueItem]:
        ...

    async def resolve_review_queue_item(self, review_id: str, resolution: str) -> ReviewQueueItem:
        ...

    async def conversation_links(self, conversation_id: str) -> Dict[str, List[str]]:
        """Return ``{"claims": [...], "actions": [...]}`` linked to a conversation."""


def status_matches(value: str, status: StatusFilter) -> bool:
    if status is None:
        return True
    if isinstance(status, str):
        return value == status
    return value in status
