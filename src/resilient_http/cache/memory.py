from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, Mapping, Optional

from resilient_http.cache.base import conditional_patch, is_cacheable, validators_of
from resilient_http.http.response import HttpResponse


class MemoryResponseCache:
    """In-process cache keyed by URL. Safe to share between threads."""

    def __init__(self):
        self._entries: Dict[str, HttpResponse] = {}
        self._lock = threading.Lock()

    def add_headers(self, url: str, headers: Mapping[str, str]) -> Dict[str, str]:
        with self._lock:
            entry = self._entries.get(url)
        if entry is None:
            return {}
        return conditional_patch(validators_of(entry), headers)

    def store_response(self, response: HttpResponse) -> None:
        if not is_cacheable(response):
            return
        with self._lock:
            self._entries[response.url] = response

    def load_response(self, response: HttpResponse) -> Optional[HttpResponse]:
        with self._lock:
            entry = self._entries.get(response.url)
        if entry is None:
            return None
        return replace(entry, from_cache=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
