"""Process-local store used by default and in tests."""

from __future__ import annotations

import logging
from typing import Dict, List

from claimflow.models import Action, Claim, ReviewQueueItem

from .base import StatusFilter, StorageError, new_record_id, status_matches

logger = logging.getLogger("claimflow.storage")


class InMemoryStore:
    """Keeps records in insertion order; listings are returned newest first."""

    name = "memory"

    def __init__(self) -> None:
        self._claims: Dict[str, Claim] = {}
        self._actions: Dict[str, Action] = {}
        self._reviews: Dict[str, ReviewQueueItem] = {}
        self._links: Dict[str, Dict[str, List[str]]] = {}

    async def list_actions(self, status: StatusFilter = None) -> List[Action]:
        items = [a for a in self._actions.values() if status_matches(a.status, status)]
        return [a.model_copy(deep=True) for a in reversed(items)]

    async def list_claims(self, status: StatusFilter = None) -> List[Claim]:
        items = [c for c in self._claims.values() if status_matches(c.status, status)]
        return [c.model_copy(deep=True) for c in reversed(items)]

    async def create_action(self, action: Action) -> str:
        action_id = action.id or new_record_id("act")
        self._actions[action_id] = action.model_copy(update={"id": action_id}, deep=True)
        logger.info(
            "[storage.action.create] id=%s conversation=%s status=%s",
            action_id,
            action.conversation_id,
            action.status,
        )
        return action_id

    async def upsert_claim(self, claim: Claim) -> str:
        claim_id = claim.id or new_record_id("clm")
        self._claims[claim_id] = claim.model_copy(update={"id": claim_id}, deep=True)
        logger.info(
            "[storage.claim.upsert] id=%s conversation=%s status=%s",
            claim_id,
            claim.conversation_id,
            claim.status,
        )
        return claim_id

    async def append_conversation_action(self, conversation_id: str, action_id: str) -> None:
        self._append_link(conversation_id, "actions", action_id)

    async def append_conversation_claim(self, conversation_id: str, claim_id: str) -> None:
        self._append_link(conversation_id, "claims", claim_id)

    def _append_link(self, conversation_id: str, kind: str, item_id: str) -> None:
        links = self._links.setdefault(conversation_id, {"claims": [], "actions": []})
        if item_id not in links[kind]:
            links[kind].append(item_id)

    async def create_review_queue_item(self, item: ReviewQueueItem) -> str:
        review_id = new_record_id("rev")
        self._reviews[review_id] = item.model_copy(update={"id": review_id}, deep=True)
        logger.info(
            "[storage.review.create] id=%s severity=%s claims=%s actions=%s",
            review_id,
            item.severity,
            item.claim_ids,
            item.action_ids,
        )
        return review_id

    async def list_review_queue(self, status: StatusFilter = "pending") -> List[ReviewQueueItem]:
        items = [r for r in self._reviews.values() if status_matches(r.status, status)]
        return [r.model_copy(deep=True) for r in reversed(items)]

    async def resolve_review_queue_item(self, review_id: str, resolution: str) -> ReviewQueueItem:
        item = self._reviews.get(review_id)
        if item is None:
            raise StorageError(f"review item {review_id} not found")
        resolved = item.model_copy(update={"status": "resolved", "resolution": resolution})
        self._reviews[review_id] = resolved
        return resolved.model_copy(deep=True)

    async def conversation_links(self, conversation_id: str) -> Dict[str, List[str]]:
        links = self._links.get(conversation_id, {"claims": [], "actions": []})
        return {"claims": list(links["claims"]), "actions": list(links["actions"])}
