import asyncio
import warnings
from typing import Callable

warnings.filterwarnings(
    "ignore",
    category=PendingDeprecationWarning,
    module=r"starlette\\.formparsers",
)
warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    module=r"pydantic\\.v1\\.typing",
)

import pytest

from claimflow import config
from claimflow.services import llm


_PROVIDER_ENV = (
    "OPENAI_API_KEY",
    "XAI_API_KEY",
    "LLM_PROVIDER",
    "AI_DISABLED",
    "LANGFUSE_PUBLIC_KEY",
    "LANGFUSE_SECRET_KEY",
    "STORAGE_BACKEND",
)


def _clear_config_caches() -> None:
    for value in vars(config).values():
        cache_clear = getattr(value, "cache_clear", None)
        if callable(cache_clear):
            cache_clear()
    llm.shared_client.cache_clear()


@pytest.fixture(autouse=True)
def offline_env(monkeypatch):
    """Keep every test offline: no provider keys, no tracing, memory storage."""

    for name in _PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"CLAIMFLOW_{name}", raising=False)
    _clear_config_caches()
    yield
    _clear_config_caches()


@pytest.fixture
def reset_config() -> Callable[[], None]:
    """Clear cached config getters after a test changes the environment."""

    return _clear_config_caches


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until
