from resilient_http.cache.base import ResponseCache
from resilient_http.cache.memory import MemoryResponseCache
from resilient_http.cache.sqlite_cache import SQLiteResponseCache

__all__ = [
    "MemoryResponseCache",
    "ResponseCache",
    "SQLiteResponseCache",
]
