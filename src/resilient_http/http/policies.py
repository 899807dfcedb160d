"""
Decision policies for the request loop.

Every policy has the same signature, ``policy(response, options, attempt)``, and
returns a Decision. ``response`` is None when the transport raised instead of
answering. Policies keep no state between calls: anything that changes from one
attempt to the next lives in the loop.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence
from urllib.parse import urljoin

from resilient_http.core.models import Decision, Finish, Redirect, RepeatAfter, RequestOptions
from resilient_http.http.response import HttpResponse
from resilient_http.utils.logging import get_logger

log = get_logger("resilient_http.policies")


def _describe(response: Optional[HttpResponse]) -> str:
    if response is None:
        return "transport error"
    return f"status {response.status_code}"


def _scheduled_retry(
    response: Optional[HttpResponse],
    schedule: Sequence[int],
    attempt: int,
) -> Decision:
    index = attempt - 1
    if index < 0 or index >= len(schedule):
        return Finish(response=response, postprocess=False)

    entry = schedule[index]
    if not entry > 0:
        return Finish(response=response, postprocess=False)

    # Round fractional milliseconds up so a positive entry never becomes a zero delay.
    delay = int(math.ceil(entry))
    return RepeatAfter(
        delay_ms=delay,
        response=response,
        message=f"Retry {attempt} after {delay / 1000:g}s ({_describe(response)})",
    )


def retry_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """Back off along `options.retry_schedule_ms`; give up once the schedule runs out."""
    return _scheduled_retry(response, options.retry_schedule_ms, attempt)


def slow_retry_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """Like retry_policy, over the slower schedule used for connection-level failures."""
    return _scheduled_retry(response, options.slow_retry_schedule_ms, attempt)


def redirect_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """
    Follow a `location` header.

    Hops are counted by the shared attempt number, so a redirect past
    `options.max_redirects` is handed back as the final response.
    """
    if response is None:
        return Finish(response=None, postprocess=False)

    location = response.header("location")
    if not location or attempt > options.max_redirects:
        return Finish(response=response, postprocess=response.ok)

    target = urljoin(response.url, location) if response.url else location
    return Redirect(url=target, response=response, message=f"Redirect {response.status_code} -> {target}")


def error_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """Terminal failure; the caller gets the response untouched."""
    return Finish(response=response, postprocess=False)


def default_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """Terminal; postprocess successful responses and remember them in the cache."""
    if response is None:
        return Finish(response=None, postprocess=False)

    if options.cache is not None:
        options.cache.store_response(response)

    return Finish(response=response, postprocess=response.ok)


def cache_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """
    Serve a "304 Not Modified" answer from the cache.

    Without a cached entry the 304 itself is returned, unprocessed.
    """
    if response is None:
        return Finish(response=None, postprocess=False)

    cached = options.cache.load_response(response) if options.cache is not None else None
    if cached is None:
        log.warning("Got %s for %s but nothing is cached", response.status_code, response.url)
        return Finish(response=response, postprocess=False, message="Not modified, no cached entry")

    log.debug("Serving %s from cache", response.url)
    return Finish(response=cached, postprocess=cached.ok, message=f"{response.url} served from cache")
