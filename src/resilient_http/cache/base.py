from __future__ import annotations

from typing import Dict, Mapping, Optional, Protocol

from resilient_http.http.response import HttpResponse


class ResponseCache(Protocol):
    """Protocol for response caches consulted by the request loop."""

    def add_headers(self, url: str, headers: Mapping[str, str]) -> Dict[str, str]:
        """Return conditional-request headers to merge into the next attempt."""
        ...

    def store_response(self, response: HttpResponse) -> None: ...

    def load_response(self, response: HttpResponse) -> Optional[HttpResponse]:
        """Materialize the stored response matching a "not modified" answer."""
        ...


def validators_of(response: HttpResponse) -> Dict[str, str]:
    """ETag / Last-Modified of a response, keyed by the header they become."""
    out: Dict[str, str] = {}
    etag = response.header("etag")
    if etag:
        out["If-None-Match"] = etag
    last_modified = response.header("last-modified")
    if last_modified:
        out["If-Modified-Since"] = last_modified
    return out


def is_cacheable(response: HttpResponse) -> bool:
    if not response.ok or response.from_cache or not response.url:
        return False
    if "no-store" in (response.header("cache-control") or "").lower():
        return False
    return bool(validators_of(response))


def conditional_patch(validators: Mapping[str, str], headers: Mapping[str, str]) -> Dict[str, str]:
    """Validators the caller did not already set explicitly."""
    present = {k.lower() for k in headers}
    return {k: v for k, v in validators.items() if k.lower() not in present}
