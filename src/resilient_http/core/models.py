from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple, Union

import requests

from resilient_http.http.response import HttpResponse

if TYPE_CHECKING:
    from resilient_http.cache.base import ResponseCache
    from resilient_http.http.reporting import Reporter

DEFAULT_MAX_RETRIES = 4
DEFAULT_MIN_WAIT_MS = 2000
DEFAULT_MAX_REDIRECTS = 3
DEFAULT_RETRY_SCHEDULE_MS: Tuple[int, ...] = (300, 15000, 45000, 80000)
DEFAULT_SLOW_RETRY_SCHEDULE_MS: Tuple[int, ...] = (1000, 10000, 30000, 60000)


def prepared_url(url: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """The URL requests will actually send: query params folded in, normalized."""
    return requests.Request("GET", url, params=dict(params or {})).prepare().url


@dataclass(frozen=True)
class RequestSpec:
    """Specification for a single HTTP request attempt."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class Finish:
    """Terminal decision: hand `response` back to the caller."""

    response: Optional[HttpResponse]
    postprocess: bool = False
    message: Optional[str] = None

    done = True
    repeat_after = None
    url = None


@dataclass(frozen=True)
class RepeatAfter:
    """Wait `delay_ms` and try again."""

    delay_ms: int
    response: Optional[HttpResponse] = None
    message: Optional[str] = None

    done = False
    postprocess = False
    url = None

    def __post_init__(self) -> None:
        if self.delay_ms <= 0:
            raise ValueError(f"RepeatAfter needs a positive delay, got {self.delay_ms}")

    @property
    def repeat_after(self) -> int:
        return self.delay_ms


@dataclass(frozen=True)
class Redirect:
    """Retry immediately against `url`."""

    url: str
    response: Optional[HttpResponse] = None
    message: Optional[str] = None

    done = False
    postprocess = False
    repeat_after = 0


Decision = Union[Finish, RepeatAfter, Redirect]

Policy = Callable[[Optional[HttpResponse], "RequestOptions", int], Decision]


@dataclass(frozen=True)
class RequestOptions:
    """Per-call configuration for the request loop."""

    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None
    max_retries: int = DEFAULT_MAX_RETRIES
    min_wait_ms: int = DEFAULT_MIN_WAIT_MS
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    retry_schedule_ms: Tuple[int, ...] = DEFAULT_RETRY_SCHEDULE_MS
    slow_retry_schedule_ms: Tuple[int, ...] = DEFAULT_SLOW_RETRY_SCHEDULE_MS
    cache: Optional["ResponseCache"] = None
    reporter: Optional["Reporter"] = None
    postprocess: Optional[Callable[[HttpResponse], Any]] = None
    state_actions: Optional[Mapping[Union[int, str], Policy]] = None

    def request_for(self, url: str, extra_headers: Optional[Mapping[str, str]] = None) -> RequestSpec:
        """
        Build the request for one attempt without touching `self.headers`.

        `self.params` are folded into the returned URL, which is also the key
        response caches use for the exchange.
        """
        headers = dict(self.headers)
        if extra_headers:
            headers.update(extra_headers)
        return RequestSpec(
            url=prepared_url(url, self.params),
            method=self.method.upper(),
            headers=headers,
            body=self.body,
        )
