import logging
from functools import lru_cache
from typing import Any

import chromadb

from claimflow.config import get_chroma_host, get_chroma_port

logger = logging.getLogger("claimflow.chroma")


@lru_cache(maxsize=1)
def get_chroma_client() -> Any:
	"""Return a shared Chroma HTTP client for the configured host."""
	host = get_chroma_host()
	port = get_chroma_port()
	logger.info("[chroma.connect] host=%s port=%s", host, port)
	return chromadb.HttpClient(host=host, port=port)
