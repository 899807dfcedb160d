"""
Rate-limit handling.

`rate_limit_policy` is the dispatch-table policy for 403/429 responses. It reads
the server's throttle headers and turns them into a wait decision.

`wait_for_rate_limit` is the older, self-contained loop: it keeps calling a
zero-argument fetcher until the response is no longer rate limited or the
`decide` callback gives up. It predates the dispatch table and is kept for
callers that only need rate-limit handling.
"""

from __future__ import annotations

import math
from email.utils import parsedate_to_datetime
from typing import Callable, Optional

from resilient_http.core.models import DEFAULT_MIN_WAIT_MS, Decision, Finish, RepeatAfter, RequestOptions
from resilient_http.http.response import HttpResponse
from resilient_http.http.wait import MAX_WAIT_MS, wait
from resilient_http.utils.logging import get_logger
from resilient_http.utils.time import now_ms

log = get_logger("resilient_http.rate_limit")

RATE_LIMITED_STATUSES = (403, 429)
MAX_RATE_LIMIT_TRIES = 5


def _retry_after_ms(value: str, now: float, min_wait_ms: int) -> Optional[float]:
    """Delta-seconds or HTTP-date; None when neither parses."""
    s = value.strip()
    try:
        seconds = float(s)
    except ValueError:
        pass
    else:
        return seconds * 1000.0 if math.isfinite(seconds) else None

    try:
        when = parsedate_to_datetime(s)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    return when.timestamp() * 1000.0 - now


def _ratelimit_reset_ms(value: str, now: float, min_wait_ms: int) -> Optional[float]:
    """Absolute epoch seconds; an unusable value means 'wait the minimum'."""
    try:
        reset = float(value.strip())
    except ValueError:
        return float(min_wait_ms)
    if not math.isfinite(reset):
        return float(min_wait_ms)
    return reset * 1000.0 - now


# Priority order matters: the first header yielding a number wins.
RATE_LIMIT_HEADERS = (
    ("retry-after", _retry_after_ms),
    ("x-ratelimit-reset", _ratelimit_reset_ms),
)


def compute_wait_ms(response: HttpResponse, min_wait_ms: int = DEFAULT_MIN_WAIT_MS) -> float:
    """
    Milliseconds to wait before retrying a rate-limited response.

    Returns 0 when no header asks for a wait (or the requested time already passed).
    Positive waits are clamped into [`min_wait_ms`, MAX_WAIT_MS].
    """
    now = now_ms()
    for name, parse in RATE_LIMIT_HEADERS:
        value = response.header(name)
        if value is None:
            continue
        ms = parse(value, now, min_wait_ms)
        if ms is None:
            continue

        if ms <= 0:
            return 0
        return min(max(ms, float(min_wait_ms)), float(MAX_WAIT_MS))

    return 0


def rate_limit_policy(response: Optional[HttpResponse], options: RequestOptions, attempt: int) -> Decision:
    """Policy for rate-limit responses (403 / 429)."""
    if response is None:
        return Finish(response=None, postprocess=False)

    wait_ms = compute_wait_ms(response, options.min_wait_ms)
    if wait_ms <= 0:
        return Finish(response=response, postprocess=response.ok)

    delay = int(math.ceil(wait_ms))
    return RepeatAfter(
        delay_ms=delay,
        response=response,
        message=f"Rate limit reached: waiting for {delay / 1000:g}s",
    )


def default_wait_decide(
    ms_to_wait: float,
    rate_limit_remaining: Optional[int],
    nth_try: int,
    response: Optional[HttpResponse],
) -> float:
    """
    Default `decide` callback for `wait_for_rate_limit`.

    Returns milliseconds to wait before the next try, or a negative number to
    deliver the current response.
    """
    if nth_try > MAX_RATE_LIMIT_TRIES:
        return -1
    return ms_to_wait + DEFAULT_MIN_WAIT_MS


def _parse_number_header(response: HttpResponse, name: str) -> Optional[float]:
    value = response.header(name)
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def wait_for_rate_limit(
    fetcher: Callable[[], HttpResponse],
    decide: Callable[[float, Optional[int], int, HttpResponse], float] = default_wait_decide,
) -> HttpResponse:
    """Call `fetcher` until it stops answering with a rate-limit status."""
    nth_try = 0
    while True:
        response = fetcher()
        if response.status_code not in RATE_LIMITED_STATUSES:
            return response

        remaining = _parse_number_header(response, "x-ratelimit-remaining")
        reset = _parse_number_header(response, "x-ratelimit-reset")
        ms_to_wait = reset * 1000.0 - now_ms() if reset is not None else 0.0

        ms_to_wait = decide(ms_to_wait, int(remaining) if remaining is not None else None, nth_try, response)
        if ms_to_wait <= 0:
            return response

        log.warning("Rate limited (status=%s, remaining=%s), waiting %.0fms", response.status_code, remaining, ms_to_wait)
        wait(ms_to_wait)
        nth_try += 1
