"""Reasoning-service binding: turn text in, candidate claims/actions out.

The continuity token is the id of the previous Responses API call. Passing it
back as ``previous_response_id`` lets the model keep context across turns
without resending the whole transcript.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from claimflow.config import get_extraction_model_name, get_extraction_retries
from claimflow.models import ExtractionResult

from .llm import get_async_client, parse_json_from_text
from .prompts import EXTRACTION_PROMPT, build_extraction_input

logger = logging.getLogger("claimflow.reasoning")


async def extract_claims_and_actions(
    turn_text: str,
    continuity_token: Optional[str] = None,
    already_extracted: Optional[Dict[str, List[str]]] = None,
) -> ExtractionResult:
    """Ask the reasoning model for claims and actions in one turn.

    Never raises: a disabled or failing service yields an empty result with
    no continuity token.
    """
    client = get_async_client()
    if client is None:
        logger.debug("[reasoning.skip] reason=llm_not_configured")
        return ExtractionResult()

    model = get_extraction_model_name()
    request = {
        "model": model,
        "instructions": EXTRACTION_PROMPT,
        "input": build_extraction_input(turn_text, already_extracted),
        "text": {"format": {"type": "json_object"}},
    }
    if continuity_token:
        request["previous_response_id"] = continuity_token

    retries = max(0, get_extraction_retries())
    last_exc: Optional[Exception] = None
    for _ in range(retries + 1):
        try:
            response = await client.responses.create(**request)
        except Exception as exc:  # retry
            last_exc = exc
            continue

        parsed = parse_json_from_text(response.output_text or "{}")
        claims = parsed.get("claims")
        actions = parsed.get("actions")
        result = ExtractionResult(
            claims=claims if isinstance(claims, list) else [],
            actions=actions if isinstance(actions, list) else [],
            continuity_token=getattr(response, "id", None),
        )
        logger.info(
            "[reasoning.ok] model=%s claims=%s actions=%s continued=%s",
            model,
            len(result.claims),
            len(result.actions),
            bool(continuity_token),
        )
        return result

    logger.error(
        "[reasoning.error] model=%s attempts=%s error=%s",
        model,
        retries + 1,
        last_exc,
        exc_info=last_exc,
    )
    return ExtractionResult()
