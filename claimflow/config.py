import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Load .env once when module is imported. `override=True` ensures that local
# development values defined in .env always take precedence over variables
# exported by the host system.
load_dotenv(override=True)


def _get_raw_env(name: str) -> Optional[str]:
    """Return the raw environment value for ``name``.

    The lookup order is:
    1. Regular environment variable
    2. ``CLAIMFLOW_<NAME>`` – explicit prefix used when several services share
       one environment file.
    """

    if name in os.environ:
        return os.environ[name]
    prefixed = f"CLAIMFLOW_{name}"
    if prefixed in os.environ:
        return os.environ[prefixed]
    return None


def get_env_value(name: str, default: Optional[str] = None) -> Optional[str]:
    """Fetch an environment value honouring the prefix fallback and defaults."""

    value = _get_raw_env(name)
    if value is None:
        return default
    return value


def _get_bool_env(name: str, default: str = "false") -> bool:
    value = get_env_value(name)
    if value is None:
        value = default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: str) -> int:
    value = get_env_value(name)
    try:
        return int(value if value is not None else default)
    except (TypeError, ValueError):
        return int(default)


def _get_float_env(name: str, default: str) -> float:
    value = get_env_value(name)
    try:
        return float(value if value is not None else default)
    except (TypeError, ValueError):
        return float(default)


# =============================
# LLM provider
# =============================


@lru_cache(maxsize=1)
def get_openai_api_key() -> Optional[str]:
    return get_env_value("OPENAI_API_KEY")


@lru_cache(maxsize=1)
def get_xai_api_key() -> Optional[str]:
    return get_env_value("XAI_API_KEY")


@lru_cache(maxsize=1)
def get_xai_base_url() -> str:
    # Allow override for proxies/self-hosted gateways
    return get_env_value("XAI_BASE_URL", "https://api.x.ai/v1") or "https://api.x.ai/v1"


@lru_cache(maxsize=1)
def get_llm_provider() -> str:
    val = (get_env_value("LLM_PROVIDER", "openai") or "openai").strip().lower()
    # Normalize alias "grok" to canonical provider name "xai"
    if val == "grok":
        return "xai"
    return val


@lru_cache(maxsize=1)
def is_ai_disabled() -> bool:
    return _get_bool_env("AI_DISABLED", "false")


@lru_cache(maxsize=1)
def is_llm_configured() -> bool:
    if is_ai_disabled():
        return False
    provider = get_llm_provider()
    if provider == "openai":
        key = get_openai_api_key() or ""
        return key.strip() != ""
    if provider == "xai":
        key = get_xai_api_key() or ""
        return key.strip() != ""
    # Unknown provider → not configured
    return False


@lru_cache(maxsize=1)
def get_extraction_model_name() -> str:
    env_val = get_env_value("EXTRACTION_MODEL")
    if env_val and env_val.strip() != "":
        return env_val
    if get_llm_provider() == "xai":
        return "grok-4-fast-reasoning"
    return "gpt-5-mini"


@lru_cache(maxsize=1)
def get_conflict_model_name() -> str:
    env_val = get_env_value("CONFLICT_MODEL")
    if env_val and env_val.strip() != "":
        return env_val
    return get_extraction_model_name()


@lru_cache(maxsize=1)
def get_embedding_model_name() -> str:
    return get_env_value("EMBEDDING_MODEL", "text-embedding-3-small") or "text-embedding-3-small"


@lru_cache(maxsize=1)
def get_extraction_timeouts_ms() -> int:
    return _get_int_env("EXTRACTION_TIMEOUT_MS", "60000")


@lru_cache(maxsize=1)
def get_extraction_retries() -> int:
    return _get_int_env("EXTRACTION_RETRIES", "1")


# =============================
# Pipeline tuning
# =============================


@lru_cache(maxsize=1)
def get_duplicate_threshold() -> float:
    return _get_float_env("DUPLICATE_THRESHOLD", "0.9")


@lru_cache(maxsize=1)
def get_related_threshold() -> float:
    return _get_float_env("RELATED_THRESHOLD", "0.7")


@lru_cache(maxsize=1)
def get_comparison_window() -> int:
    return _get_int_env("COMPARISON_WINDOW", "25")


@lru_cache(maxsize=1)
def get_suggestion_backlog_capacity() -> int:
    return _get_int_env("SUGGESTION_BACKLOG_CAPACITY", "3")


@lru_cache(maxsize=1)
def get_agent_poll_interval_ms() -> int:
    return _get_int_env("AGENT_POLL_INTERVAL_MS", "25")


@lru_cache(maxsize=1)
def get_drain_timeout_ms() -> int:
    return _get_int_env("DRAIN_TIMEOUT_MS", "8000")


@lru_cache(maxsize=1)
def get_validation_concurrency() -> int:
    return max(1, _get_int_env("VALIDATION_CONCURRENCY", "1"))


# =============================
# Storage
# =============================


@lru_cache(maxsize=1)
def get_storage_backend() -> str:
    return (get_env_value("STORAGE_BACKEND", "memory") or "memory").strip().lower()


@lru_cache(maxsize=1)
def get_chroma_host() -> str:
    return get_env_value("CHROMA_HOST", "localhost") or "localhost"


@lru_cache(maxsize=1)
def get_chroma_port() -> int:
    return _get_int_env("CHROMA_PORT", "8000")


@lru_cache(maxsize=1)
def get_chroma_collection_prefix() -> str:
    return get_env_value("CHROMA_COLLECTION_PREFIX", "claimflow") or "claimflow"


# =============================
# Observability
# =============================


def get_log_level() -> str:
    return (get_env_value("LOG_LEVEL", "INFO") or "INFO").upper()


def get_langfuse_public_key() -> str:
    """Get Langfuse public key from environment."""
    return get_env_value("LANGFUSE_PUBLIC_KEY", "") or ""


def get_langfuse_secret_key() -> str:
    """Get Langfuse secret key from environment."""
    return get_env_value("LANGFUSE_SECRET_KEY", "") or ""


def is_langfuse_enabled() -> bool:
    """Check if Langfuse tracing is enabled."""
    return bool(get_langfuse_public_key() and get_langfuse_secret_key())
