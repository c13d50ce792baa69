from __future__ import annotations

import logging

from claimflow.config import get_conflict_model_name

from .llm import get_async_client
from .prompts import CONFLICT_PROMPT, build_conflict_input

logger = logging.getLogger("claimflow.conflict")


async def detect_conflict(existing_text: str, new_text: str) -> bool:
    """Ask the LLM whether two statements about the user are inconsistent.

    Any failure, or an unconfigured provider, counts as "no conflict".
    """
    client = get_async_client()
    if client is None:
        return False

    model = get_conflict_model_name()
    try:
        response = await client.responses.create(
            model=model,
            instructions=CONFLICT_PROMPT,
            input=build_conflict_input(existing_text, new_text),
        )
    except Exception:
        logger.exception("[conflict.error] model=%s", model)
        return False

    answer = (response.output_text or "").strip().lower()
    logger.debug("[conflict.ok] model=%s answer=%s", model, answer[:20])
    return answer.startswith("y")
