"""In-memory caches shared across scheduling services."""

from .progress_cache import ProgressCache

__all__ = ["ProgressCache"]
