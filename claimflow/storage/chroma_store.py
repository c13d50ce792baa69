"""Chroma-backed store: one collection per record kind.

Conversation links are kept on the records themselves, as a JSON list under
the ``conversation_ids`` metadata key.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from claimflow.models import Action, Claim, ReviewQueueItem
from claimflow.services.embedding_utils import generate_embedding

from .base import StatusFilter, StorageError, new_record_id

logger = logging.getLogger("claimflow.storage")

EmbedFn = Callable[[str], Awaitable[List[float]]]

_INCLUDE = ["documents", "metadatas", "embeddings"]


def _where_status(status: StatusFilter) -> Optional[Dict[str, Any]]:
	if status is None:
		return None
	if isinstance(status, str):
		return {"status": status}
	return {"status": {"$in": list(status)}}


def _json_list(value: Any) -> List[str]:
	if not value:
		return []
	try:
		parsed = json.loads(value)
	except (TypeError, ValueError):
		return []
	return [str(v) for v in parsed] if isinstance(parsed, list) else []


def _rows(result: Dict[str, Any]) -> List[Dict[str, Any]]:
	ids = result.get("ids") or []
	documents = result.get("documents")
	metadatas = result.get("metadatas")
	embeddings = result.get("embeddings")
	rows = []
	for index, item_id in enumerate(ids):
		embedding = embeddings[index] if embeddings is not None else None
		rows.append(
			{
				"id": item_id,
				"document": documents[index] if documents is not None else "",
				"metadata": dict(metadatas[index] or {}) if metadatas is not None else {},
				"embedding": [float(x) for x in embedding] if embedding is not None else None,
			}
		)
	rows.sort(key=lambda row: row["metadata"].get("created_at", ""), reverse=True)
	return rows


def _claim_metadata(claim: Claim, conversation_ids: List[str]) -> Dict[str, Any]:
	return {
		"conversation_id": claim.conversation_id,
		"category": claim.category,
		"confidence": claim.confidence,
		"status": claim.status,
		"evidence": json.dumps(claim.evidence),
		"created_at": claim.created_at.isoformat(),
		"conversation_ids": json.dumps(conversation_ids),
	}


def _action_metadata(action: Action, conversation_ids: List[str]) -> Dict[str, Any]:
	return {
		"conversation_id": action.conversation_id,
		"due_window": action.due_window,
		"source": action.source,
		"reminder": action.reminder,
		"status": action.status,
		"evidence": json.dumps(action.evidence),
		"created_at": action.created_at.isoformat(),
		"conversation_ids": json.dumps(conversation_ids),
	}


def _review_metadata(item: ReviewQueueItem) -> Dict[str, Any]:
	meta: Dict[str, Any] = {
		"title": item.title,
		"claim_ids": json.dumps(item.claim_ids),
		"action_ids": json.dumps(item.action_ids),
		"status": item.status,
		"severity": item.severity,
		"created_at": item.created_at.isoformat(),
	}
	# Chroma metadata values cannot be None
	if item.conversation_id is not None:
		meta["conversation_id"] = item.conversation_id
	if item.resolution is not None:
		meta["resolution"] = item.resolution
	if item.score is not None:
		meta["score"] = item.score
	return meta


def _claim_from_row(row: Dict[str, Any]) -> Claim:
	meta = row["metadata"]
	return Claim(
		id=row["id"],
		text=row["document"],
		category=meta.get("category", "other"),
		confidence=meta.get("confidence", 0.5),
		evidence=_json_list(meta.get("evidence")),
		status=meta.get("status", "inferred"),
		conversation_id=meta.get("conversation_id", ""),
		embedding=row["embedding"],
		created_at=datetime.fromisoformat(meta["created_at"]),
	)


def _action_from_row(row: Dict[str, Any]) -> Action:
	meta = row["metadata"]
	return Action(
		id=row["id"],
		title=row["document"],
		due_window=meta.get("due_window", "Everything else"),
		source=meta.get("source", "conversation"),
		reminder=bool(meta.get("reminder", False)),
		status=meta.get("status", "suggested"),
		conversation_id=meta.get("conversation_id", ""),
		evidence=_json_list(meta.get("evidence")),
		embedding=row["embedding"],
		created_at=datetime.fromisoformat(meta["created_at"]),
	)


def _review_from_row(row: Dict[str, Any]) -> ReviewQueueItem:
	meta = row["metadata"]
	return ReviewQueueItem(
		id=row["id"],
		title=meta.get("title", ""),
		summary=row["document"],
		claim_ids=_json_list(meta.get("claim_ids")),
		action_ids=_json_list(meta.get("action_ids")),
		conversation_id=meta.get("conversation_id"),
		status=meta.get("status", "pending"),
		resolution=meta.get("resolution"),
		severity=meta.get("severity", "low"),
		score=meta.get("score"),
		embedding=row["embedding"],
		created_at=datetime.fromisoformat(meta["created_at"]),
	)


class ChromaStore:
	"""Persists claims, actions and review items in Chroma collections.

	The chromadb client is synchronous; every call runs in a worker thread so
	agents keep suspending cooperatively while storage is busy.
	"""

	name = "chroma"

	def __init__(self, client: Any, *, prefix: str = "claimflow", embed_fn: EmbedFn | None = None) -> None:
		self._client = client
		self._embed = embed_fn or generate_embedding
		self._claims = client.get_or_create_collection(f"{prefix}_claims")
		self._actions = client.get_or_create_collection(f"{prefix}_actions")
		self._reviews = client.get_or_create_collection(f"{prefix}_review_queue")

	async def _get(self, collection: Any, **kwargs: Any) -> List[Dict[str, Any]]:
		try:
			result = await asyncio.to_thread(collection.get, include=_INCLUDE, **kwargs)
		except Exception as exc:
			raise StorageError(f"chroma get failed on {collection.name}: {exc}") from exc
		return _rows(result)

	async def _write(self, method: Callable[..., Any], **kwargs: Any) -> None:
		try:
			await asyncio.to_thread(method, **kwargs)
		except Exception as exc:
			raise StorageError(f"chroma write failed: {exc}") from exc

	async def _embedding_for(self, embedding: Optional[List[float]], text: str) -> List[float]:
		if embedding:
			return list(embedding)
		return await self._embed(text)

	async def list_actions(self, status: StatusFilter = None) -> List[Action]:
		rows = await self._get(self._actions, where=_where_status(status))
		return [_action_from_row(row) for row in rows]

	async def list_claims(self, status: StatusFilter = None) -> List[Claim]:
		rows = await self._get(self._claims, where=_where_status(status))
		return [_claim_from_row(row) for row in rows]

	async def create_action(self, action: Action) -> str:
		action_id = action.id or new_record_id("act")
		embedding = await self._embedding_for(action.embedding, action.title)
		await self._write(
			self._actions.add,
			ids=[action_id],
			documents=[action.title],
			embeddings=[embedding],
			metadatas=[_action_metadata(action, [])],
		)
		logger.info("[storage.action.create] id=%s conversation=%s status=%s", action_id, action.conversation_id, action.status)
		return action_id

	async def upsert_claim(self, claim: Claim) -> str:
		claim_id = claim.id or new_record_id("clm")
		conversation_ids: List[str] = []
		if claim.id:
			existing = await self._get(self._claims, ids=[claim.id])
			if existing:
				conversation_ids = _json_list(existing[0]["metadata"].get("conversation_ids"))
		embedding = await self._embedding_for(claim.embedding, claim.text)
		await self._write(
			self._claims.upsert,
			ids=[claim_id],
			documents=[claim.text],
			embeddings=[embedding],
			metadatas=[_claim_metadata(claim, conversation_ids)],
		)
		logger.info("[storage.claim.upsert] id=%s conversation=%s status=%s", claim_id, claim.conversation_id, claim.status)
		return claim_id

	async def append_conversation_action(self, conversation_id: str, action_id: str) -> None:
		await self._append_link(self._actions, action_id, conversation_id)

	async def append_conversation_claim(self, conversation_id: str, claim_id: str) -> None:
		await self._append_link(self._claims, claim_id, conversation_id)

	async def _append_link(self, collection: Any, item_id: str, conversation_id: str) -> None:
		rows = await self._get(collection, ids=[item_id])
		if not rows:
			raise StorageError(f"{collection.name} record {item_id} not found")
		metadata = rows[0]["metadata"]
		conversation_ids = _json_list(metadata.get("conversation_ids"))
		if conversation_id in conversation_ids:
			return
		conversation_ids.append(conversation_id)
		metadata["conversation_ids"] = json.dumps(conversation_ids)
		await self._write(collection.update, ids=[item_id], metadatas=[metadata])

	async def create_review_queue_item(self, item: ReviewQueueItem) -> str:
		review_id = new_record_id("rev")
		embedding = await self._embedding_for(item.embedding, item.summary)
		await self._write(
			self._reviews.add,
			ids=[review_id],
			documents=[item.summary],
			embeddings=[embedding],
			metadatas=[_review_metadata(item)],
		)
		logger.info("[storage.review.create] id=%s severity=%s", review_id, item.severity)
		return review_id

	async def list_review_queue(self, status: StatusFilter = "pending") -> List[ReviewQueueItem]:
		rows = await self._get(self._reviews, where=_where_status(status))
		return [_review_from_row(row) for row in rows]

	async def resolve_review_queue_item(self, review_id: str, resolution: str) -> ReviewQueueItem:
		rows = await self._get(self._reviews, ids=[review_id])
		if not rows:
			raise StorageError(f"review item {review_id} not found")
		resolved = _review_from_row(rows[0]).model_copy(update={"status": "resolved", "resolution": resolution})
		await self._write(self._reviews.update, ids=[review_id], metadatas=[_review_metadata(resolved)])
		return resolved

	async def conversation_links(self, conversation_id: str) -> Dict[str, List[str]]:
		links: Dict[str, List[str]] = {"claims": [], "actions": []}
		for kind, collection in (("claims", self._claims), ("actions", self._actions)):
			for row in reversed(await self._get(collection)):
				if conversation_id in _json_list(row["metadata"].get("conversation_ids")):
					links[kind].append(row["id"])
		return links
