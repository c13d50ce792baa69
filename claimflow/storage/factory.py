from __future__ import annotations

import logging

from claimflow.config import get_chroma_collection_prefix, get_storage_backend

from .base import Store
from .memory_store import InMemoryStore

logger = logging.getLogger("claimflow.storage")


def build_store() -> Store:
    """Instantiate the store selected by ``STORAGE_BACKEND``."""

    backend = get_storage_backend()
    if backend == "chroma":
        from claimflow.dependencies.chroma import get_chroma_client

        from .chroma_store import ChromaStore

        return ChromaStore(get_chroma_client(), prefix=get_chroma_collection_prefix())
    if backend != "memory":
        logger.warning("[storage.backend.unknown] backend=%s falling back to memory", backend)
    return InMemoryStore()
