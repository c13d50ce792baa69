from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List

from claimflow.services import conflict, reasoning


class FakeResponses:
    def __init__(self, outcomes: List[Any]) -> None:
        self.outcomes = list(outcomes)
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(outcomes: List[Any]) -> SimpleNamespace:
    return SimpleNamespace(responses=FakeResponses(outcomes))


def _response(payload: Dict[str, Any], response_id: str = "resp_1") -> SimpleNamespace:
    return SimpleNamespace(id=response_id, output_text=json.dumps(payload))


def test_extraction_passes_previous_response_id(monkeypatch) -> None:
    client = _client(
        [_response({"claims": [{"text": "Likes tea"}], "actions": [{"title": "Buy tea"}]}, "resp_2")]
    )
    monkeypatch.setattr(reasoning, "get_async_client", lambda: client)
    monkeypatch.setattr(reasoning, "get_extraction_model_name", lambda: "test-model")

    result = asyncio.run(
        reasoning.extract_claims_and_actions(
            "yes get tea", "resp_1", {"claims": ["likes tea"], "actions": []}
        )
    )

    request = client.responses.requests[0]
    assert request["model"] == "test-model"
    assert request["previous_response_id"] == "resp_1"
    assert request["text"] == {"format": {"type": "json_object"}}
    assert "likes tea" in request["input"]
    assert result.continuity_token == "resp_2"
    assert result.claims == [{"text": "Likes tea"}]
    assert result.actions == [{"title": "Buy tea"}]


def test_first_call_has_no_previous_response_id(monkeypatch) -> None:
    client = _client([_response({"claims": [], "actions": []})])
    monkeypatch.setattr(reasoning, "get_async_client", lambda: client)

    asyncio.run(reasoning.extract_claims_and_actions("hello"))

    assert "previous_response_id" not in client.responses.requests[0]


def test_extraction_retries_then_returns_empty(monkeypatch) -> None:
    client = _client([RuntimeError("timeout"), RuntimeError("timeout again")])
    monkeypatch.setattr(reasoning, "get_async_client", lambda: client)
    monkeypatch.setattr(reasoning, "get_extraction_retries", lambda: 1)

    result = asyncio.run(reasoning.extract_claims_and_actions("hello", "resp_1"))

    assert len(client.responses.requests) == 2
    assert result.claims == []
    assert result.actions == []
    assert result.continuity_token is None


def test_extraction_tolerates_non_list_fields(monkeypatch) -> None:
    client = _client([SimpleNamespace(id="resp_9", output_text='```json\n{"claims": "nope"}\n```')])
    monkeypatch.setattr(reasoning, "get_async_client", lambda: client)

    result = asyncio.run(reasoning.extract_claims_and_actions("hello"))

    assert result.claims == []
    assert result.actions == []
    assert result.continuity_token == "resp_9"


def test_unconfigured_provider_yields_empty_result() -> None:
    result = asyncio.run(reasoning.extract_claims_and_actions("I need to buy tea"))
    assert result.claims == []
    assert result.continuity_token is None


def test_conflict_answer_parsing(monkeypatch) -> None:
    client = _client(
        [
            SimpleNamespace(id="r1", output_text="Yes."),
            SimpleNamespace(id="r2", output_text="no"),
            RuntimeError("boom"),
        ]
    )
    monkeypatch.setattr(conflict, "get_async_client", lambda: client)

    assert asyncio.run(conflict.detect_conflict("Likes tea", "Hates tea")) is True
    assert asyncio.run(conflict.detect_conflict("Likes tea", "Likes green tea")) is False
    assert asyncio.run(conflict.detect_conflict("Likes tea", "Likes coffee")) is False
    assert "Statement A: Likes tea" in client.responses.requests[0]["input"]


def test_conflict_without_provider_is_false() -> None:
    assert asyncio.run(conflict.detect_conflict("a", "b")) is False
