"""
The request loop.

One call to :meth:`RequestExecutor.execute` performs attempts until a policy
returns a terminal decision or the attempt budget runs out:

    perform -> dispatch on status (or error identifier) -> act on the decision

Policies decide; the loop only applies what they decide. A non-terminal
decision makes the loop wait (``repeat_after``), optionally switch URL
(redirects) and try again with the next attempt number.
"""

from __future__ import annotations

from dataclasses import replace
from functools import partial
from typing import Any, Optional, Union

from resilient_http.core.errors import MaxRetriesError, error_code
from resilient_http.core.models import Decision, Finish, Redirect, RequestOptions, RequestSpec
from resilient_http.http.client import Transport
from resilient_http.http.dispatch import DEFAULT_STATE_ACTIONS, lookup_error_action, lookup_status_action
from resilient_http.http.response import HttpResponse
from resilient_http.http.wait import wait
from resilient_http.utils.logging import get_logger

CONDITIONAL_METHODS = ("GET", "HEAD")


class RequestExecutor:
    """Runs a single request through the dispatch table until it settles."""

    def __init__(self, transport: Transport):
        self.transport = transport
        self.log = get_logger("resilient_http.executor")

    def execute(self, url: str, options: Optional[RequestOptions] = None) -> Any:
        """
        Perform `url` with retries, redirects, rate limiting and caching.

        Args:
            url: The URL of the first attempt.
            options: Per-call options; defaults apply when omitted.

        Returns:
            The postprocess result when a postprocess callback is configured and
            the final decision asks for it, otherwise the final HttpResponse.

        Raises:
            MaxRetriesError: No terminal decision within `options.max_retries` attempts.
            Exception: Unclassified transport errors and postprocess errors, unchanged.
        """
        options = options or RequestOptions()
        actions = options.state_actions if options.state_actions is not None else DEFAULT_STATE_ACTIONS
        method = options.method.upper()

        last_exc: Optional[Exception] = None

        for attempt in range(1, options.max_retries + 1):
            request = self._prepare(url, options, method)

            try:
                response = self.transport.perform(request)
            except Exception as exc:
                policy = lookup_error_action(actions, exc)
                code = error_code(exc) or type(exc).__name__
                self._report(options, url, method, code, attempt)
                if policy is None:
                    raise

                decision = policy(None, options, attempt)
                if decision.done or not decision.repeat_after:
                    raise

                last_exc = exc
                self.log.warning("Transport error for %s (error=%s, attempt=%s)", url, code, attempt)
            else:
                last_exc = None
                if response is None:
                    response = HttpResponse.failed(url)

                policy = lookup_status_action(actions, response.status_code)
                decision = policy(response, options, attempt)
                self._report(options, url, method, response.status_code, attempt)

                if isinstance(decision, Finish):
                    return self._finish(decision, options)

            if attempt >= options.max_retries:
                break

            url = self._advance(decision, options, url, method, attempt)

        self.log.error("Giving up on %s %s after %s attempts", method, url, options.max_retries)
        raise MaxRetriesError(url, method, options.max_retries) from last_exc

    def _prepare(self, url: str, options: RequestOptions, method: str) -> RequestSpec:
        request = options.request_for(url)
        if options.cache is None or method not in CONDITIONAL_METHODS:
            return request
        # Caches key entries by the URL actually sent.
        patch = options.cache.add_headers(request.url, dict(options.headers))
        if not patch:
            return request
        return replace(request, headers={**request.headers, **patch})

    def _finish(self, decision: Finish, options: RequestOptions) -> Any:
        if decision.message:
            self.log.debug(decision.message)
        if options.postprocess is not None and decision.postprocess:
            return options.postprocess(decision.response)
        return decision.response

    def _advance(self, decision: Decision, options: RequestOptions, url: str, method: str, attempt: int) -> str:
        """Apply a non-terminal decision and return the URL for the next attempt."""
        delay = decision.repeat_after or 0
        if delay > 0:
            message = decision.message
            announce = None
            if options.reporter is not None and message:
                announce = partial(self._report, options, url, method, message, attempt)
            self.log.warning("%s %s: %s", method, url, message or f"waiting {delay}ms")
            wait(delay, announce)

        if isinstance(decision, Redirect):
            self.log.info("Following redirect %s -> %s", url, decision.url)
            return decision.url
        return url

    def _report(self, options: RequestOptions, url: str, method: str, status_or_error: Union[int, str], attempt: int) -> None:
        if options.reporter is None:
            return
        try:
            options.reporter.report(url, method, status_or_error, attempt)
        except Exception as exc:
            self.log.warning("Reporter failed for %s (%s)", url, type(exc).__name__)


def execute(transport: Transport, url: str, options: Optional[RequestOptions] = None) -> Any:
    """Shortcut for ``RequestExecutor(transport).execute(url, options)``."""
    return RequestExecutor(transport).execute(url, options)
