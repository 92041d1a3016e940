"""Storage modules for crawl progress and results."""

from .base import ProgressStore, SessionNotFoundError
from .memory import InMemoryProgressStore
from .sqlite import SQLiteProgressStore


def get_storage(backend: str = "memory", **kwargs) -> ProgressStore:
    """Factory function to get a progress store.

    Args:
        backend: The backend type ("memory" or "sqlite").
        **kwargs: Additional arguments passed to the backend constructor.

    Returns:
        A ProgressStore instance.

    Raises:
        ValueError: If backend type is unknown.
    """
    if backend == "memory":
        return InMemoryProgressStore()
    elif backend == "sqlite":
        return SQLiteProgressStore(**kwargs)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")


__all__ = [
    "ProgressStore",
    "SessionNotFoundError",
    "InMemoryProgressStore",
    "SQLiteProgressStore",
    "get_storage",
]
