from __future__ import annotations

from typing import Any, Optional

import json
import logging
import re
from functools import lru_cache

from claimflow.config import (
    get_extraction_timeouts_ms,
    get_llm_provider,
    get_openai_api_key,
    get_xai_api_key,
    get_xai_base_url,
    is_langfuse_enabled,
    is_llm_configured,
)

logger = logging.getLogger("claimflow.llm")


def get_async_client() -> Optional[Any]:
    """Return an async OpenAI-compatible client for the configured provider.

    Uses the Langfuse OpenAI wrapper for auto-instrumentation when Langfuse keys
    are configured. Returns ``None`` when no provider is usable.
    """
    if not is_llm_configured():
        return None

    timeout_s = max(1, get_extraction_timeouts_ms() // 1000)
    traced = is_langfuse_enabled()
    provider = get_llm_provider()
    if provider == "openai":
        return shared_client((get_openai_api_key() or "").strip(), timeout=timeout_s, traced=traced)
    if provider == "xai":
        # xAI uses OpenAI-compatible API with custom base_url
        return shared_client(
            (get_xai_api_key() or "").strip(),
            base_url=get_xai_base_url(),
            timeout=timeout_s,
            traced=traced,
        )
    logger.error("Unknown LLM provider: %s", provider)
    return None


@lru_cache(maxsize=8)
def shared_client(
    api_key: str,
    *,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    traced: bool = False,
) -> Any:
    """One long-lived AsyncOpenAI client per distinct connection setting."""
    if traced:
        from langfuse.openai import AsyncOpenAI  # type: ignore
    else:
        from openai import AsyncOpenAI  # type: ignore

    kwargs: dict = {"api_key": api_key}
    if base_url:
        kwargs["base_url"] = base_url
    if timeout is not None:
        kwargs["timeout"] = timeout
    logger.info("[llm.client] base_url=%s traced=%s", base_url or "default", traced)
    return AsyncOpenAI(**kwargs)


def parse_json_from_text(text: str, expect_array: bool = False) -> Any:
    """Best-effort parse JSON from LLM text.

    Handles code fences (```json ... ```), leading/trailing prose, and extracts the
    first complete JSON object/array if needed. Falls back to [] or {}.
    """
    if not text or text.strip() == "":
        return [] if expect_array else {}

    candidate = text.strip()

    # 1) Strip code fences if present
    code_block = re.search(r"```(?:json)?\s*([\s\S]+?)```", candidate, re.IGNORECASE)
    if code_block:
        candidate = code_block.group(1).strip()

    # 2) Try direct parse
    try:
        parsed = json.loads(candidate)
        if expect_array:
            if isinstance(parsed, list):
                return parsed
            if isinstance(parsed, dict) and isinstance(parsed.get("items"), list):
                return parsed["items"]
            return []
        return parsed if isinstance(parsed, dict) else {}
    except ValueError:
        pass

    # 3) Extract the outermost bracketed region
    opener, closer = ("[", "]") if expect_array else ("{", "}")
    start = candidate.find(opener)
    end = candidate.rfind(closer)
    if start != -1 and end > start:
        try:
            parsed = json.loads(candidate[start : end + 1])
            if expect_array:
                return parsed if isinstance(parsed, list) else []
            return parsed if isinstance(parsed, dict) else {}
        except ValueError:
            pass

    # 4) Fallback: empty structure to avoid hard failure in pipeline
    logger.warning("[llm.parse.fallback] expect_array=%s text=%s", expect_array, text[:200])
    return [] if expect_array else {}
