from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import time as _time
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request

from claimflow.config import get_log_level, is_llm_configured
from claimflow.pipeline import ClaimPipeline, build_default_pipeline
from claimflow.schemas import (
	DecisionResponse,
	FinalizeResponse,
	ListResponse,
	ResolveReviewRequest,
	SuggestionItem,
	SuggestionsResponse,
	TurnRequest,
	TurnResponse,
)
from claimflow.storage import StorageError


logger = logging.getLogger("claimflow.api")
if not logger.handlers:
	_handler = logging.StreamHandler()
	_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
	logger.addHandler(_handler)
_level = getattr(logging, get_log_level(), logging.INFO)
logger.setLevel(_level)
logger.propagate = False

# Root logger fallback (so claimflow.* module loggers still emit)
_root = logging.getLogger()
if not _root.handlers:
	_root_handler = logging.StreamHandler()
	_root_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
	_root.addHandler(_root_handler)
	_root.setLevel(_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
	pipeline = build_default_pipeline()
	pipeline.start()
	app.state.pipeline = pipeline
	logger.info("[startup] pipeline started llm_configured=%s", is_llm_configured())
	try:
		yield
	finally:
		await pipeline.shutdown()
		app.state.pipeline = None
		logger.info("[shutdown] pipeline stopped")


app = FastAPI(title="Claimflow API", version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def _log_requests(request: Request, call_next):
	start = _time.perf_counter()
	path = request.url.path
	method = request.method
	client = request.client.host if request.client else "-"
	try:
		response = await call_next(request)
		status = getattr(response, "status_code", 200)
	except Exception as exc:  # pragma: no cover
		elapsed_ms = int(((_time.perf_counter() - start) * 1000))
		logger.exception("[http] %s %s error=%s client=%s latency_ms=%s", method, path, exc.__class__.__name__, client, elapsed_ms)
		raise
	elapsed_ms = int(((_time.perf_counter() - start) * 1000))
	logger.info("[http] %s %s status=%s client=%s latency_ms=%s", method, path, status, client, elapsed_ms)
	return response


def _pipeline(request: Request) -> ClaimPipeline:
	pipeline: Optional[ClaimPipeline] = getattr(request.app.state, "pipeline", None)
	if pipeline is None or not pipeline.running:
		raise HTTPException(status_code=503, detail="Pipeline is not running")
	return pipeline


def _suggestions_view(pipeline: ClaimPipeline) -> SuggestionsResponse:
	suggestions = pipeline.suggestions
	current = suggestions.current
	return SuggestionsResponse(
		current=SuggestionItem.from_suggestion(current) if current is not None else None,
		remaining=suggestions.remaining_count,
		badge=suggestions.badge,
		evicted=suggestions.evicted_count,
	)


@app.get("/health")
async def health(request: Request) -> dict:
	pipeline: Optional[ClaimPipeline] = getattr(request.app.state, "pipeline", None)
	queue = pipeline.queue if pipeline is not None else None
	return {
		"status": "ok" if pipeline is not None and pipeline.running else "degraded",
		"time": datetime.now(timezone.utc).isoformat(),
		"llm_configured": is_llm_configured(),
		"storage": getattr(pipeline.store, "name", None) if pipeline is not None else None,
		"pending": queue.pending_count if queue is not None else 0,
		"in_flight": queue.in_flight_count if queue is not None else 0,
	}


@app.post("/v1/conversations/{conversation_id}/turns", response_model=TurnResponse)
async def ingest_turn(conversation_id: str, body: TurnRequest, request: Request) -> TurnResponse:
	pipeline = _pipeline(request)
	task = pipeline.ingest_turn(conversation_id, body.model_dump())
	return TurnResponse(task_id=task.id, conversation_id=conversation_id)


@app.post("/v1/conversations/{conversation_id}/finalize", response_model=FinalizeResponse)
async def finalize_conversation(
	conversation_id: str,
	request: Request,
	timeout_ms: Optional[int] = Query(default=None, ge=0, le=60000),
) -> FinalizeResponse:
	pipeline = _pipeline(request)
	task = pipeline.finalize(conversation_id)
	drained = await pipeline.drain(timeout_ms)
	links = await pipeline.store.conversation_links(conversation_id)
	logger.info("[api.finalize] conversation=%s drained=%s claims=%s actions=%s", conversation_id, drained, len(links["claims"]), len(links["actions"]))
	return FinalizeResponse(
		task_id=task.id,
		conversation_id=conversation_id,
		drained=drained,
		claims=links["claims"],
		actions=links["actions"],
	)


@app.get("/v1/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(request: Request) -> SuggestionsResponse:
	return _suggestions_view(_pipeline(request))


async def _decide(request: Request, suggestion_id: str, accepted: bool) -> DecisionResponse:
	pipeline = _pipeline(request)
	try:
		suggestion = pipeline.decide(suggestion_id, accepted)
	except KeyError:
		raise HTTPException(status_code=404, detail=f"Suggestion {suggestion_id} not found")
	return DecisionResponse(
		suggestion=SuggestionItem.from_suggestion(suggestion),
		accepted=accepted,
		next=_suggestions_view(pipeline),
	)


@app.post("/v1/suggestions/{suggestion_id}/accept", response_model=DecisionResponse)
async def accept_suggestion(suggestion_id: str, request: Request) -> DecisionResponse:
	return await _decide(request, suggestion_id, True)


@app.post("/v1/suggestions/{suggestion_id}/dismiss", response_model=DecisionResponse)
async def dismiss_suggestion(suggestion_id: str, request: Request) -> DecisionResponse:
	return await _decide(request, suggestion_id, False)


@app.get("/v1/claims", response_model=ListResponse)
async def list_claims(request: Request, status: Optional[str] = Query(default=None)) -> ListResponse:
	claims = await _pipeline(request).store.list_claims(status)
	items = [c.model_dump(mode="json", exclude={"embedding"}) for c in claims]
	return ListResponse(items=items, count=len(items))


@app.get("/v1/actions", response_model=ListResponse)
async def list_actions(request: Request, status: Optional[str] = Query(default=None)) -> ListResponse:
	actions = await _pipeline(request).store.list_actions(status)
	items = [a.model_dump(mode="json", exclude={"embedding"}) for a in actions]
	return ListResponse(items=items, count=len(items))


@app.get("/v1/review-queue", response_model=ListResponse)
async def list_review_queue(request: Request, status: Optional[str] = Query(default="pending")) -> ListResponse:
	reviews = await _pipeline(request).store.list_review_queue(status)
	items = [r.model_dump(mode="json", exclude={"embedding"}) for r in reviews]
	return ListResponse(items=items, count=len(items))


@app.post("/v1/review-queue/{review_id}/resolve")
async def resolve_review(review_id: str, body: ResolveReviewRequest, request: Request) -> dict:
	try:
		item = await _pipeline(request).store.resolve_review_queue_item(review_id, body.resolution)
	except StorageError as exc:
		raise HTTPException(status_code=404, detail=str(exc))
	return item.model_dump(mode="json", exclude={"embedding"})
