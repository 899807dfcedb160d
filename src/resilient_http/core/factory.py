from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from resilient_http.cache.base import ResponseCache
from resilient_http.cache.memory import MemoryResponseCache
from resilient_http.cache.sqlite_cache import SQLiteResponseCache
from resilient_http.config_models import FetchConfig, config_to_request_objects
from resilient_http.core.models import RequestOptions, RequestSpec
from resilient_http.http.client import RequestsTransport
from resilient_http.http.executor import RequestExecutor
from resilient_http.http.reporting import LoggingReporter, Reporter
from resilient_http.http.response import HttpResponse

DEFAULT_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; ResilientHttp/0.1)"}


@dataclass(frozen=True)
class BuiltComponents:
    executor: RequestExecutor
    transport: RequestsTransport
    request: RequestSpec
    options: RequestOptions
    cache: Optional[ResponseCache]
    reporter: Optional[Reporter]

    def run(self) -> Any:
        """Execute the configured request."""
        return self.executor.execute(self.request.url, self.options)


class ComponentFactory:
    """
    Factory responsible for wiring dependencies.
    Keeps main.py clean and makes the collaborators easy to swap.
    """

    def __init__(self, config: FetchConfig, report: bool = True):
        self.config = config
        self.report = report

    def build(self, postprocess: Optional[Callable[[HttpResponse], Any]] = None) -> BuiltComponents:
        """
        Build the transport, collaborators and options for the configured request.

        Args:
            postprocess: Optional transform applied to the accepted final response.

        Returns:
            A container with all built components.
        """
        request, options = config_to_request_objects(self.config)
        transport = self._transport()
        cache = self._cache()
        reporter = self._reporter()

        options = replace(
            options,
            headers={**DEFAULT_HEADERS, **dict(options.headers)},
            cache=cache,
            reporter=reporter,
            postprocess=postprocess,
        )

        return BuiltComponents(
            executor=RequestExecutor(transport),
            transport=transport,
            request=request,
            options=options,
            cache=cache,
            reporter=reporter,
        )

    # ---------- Builders (private) ----------

    def _transport(self) -> RequestsTransport:
        """Create the HTTP transport."""
        return RequestsTransport(timeout_s=self.config.executor.timeout_s)

    def _cache(self) -> Optional[ResponseCache]:
        """Create the response cache, if any."""
        cache_type = self.config.cache.type
        if cache_type == "memory":
            return MemoryResponseCache()
        if cache_type == "sqlite":
            return SQLiteResponseCache(self.config.cache.path)
        return None

    def _reporter(self) -> Optional[Reporter]:
        """Create the progress reporter."""
        if not self.report:
            return None
        return LoggingReporter()
