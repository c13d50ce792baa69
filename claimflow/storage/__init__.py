from .base import StorageError, Store
from .factory import build_store
from .memory_store import InMemoryStore

__all__ = ["StorageError", "Store", "InMemoryStore", "build_store"]
