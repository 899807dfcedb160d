from __future__ import annotations

from typing import Callable, Protocol, Union

from resilient_http.utils.logging import get_logger

StatusOrError = Union[int, str]


class Reporter(Protocol):
    """Protocol for progress sinks notified once per attempt."""

    def report(self, url: str, method: str, status_or_error: StatusOrError, attempt: int) -> None: ...


class LoggingReporter:
    """Reporter writing every event to the `resilient_http.report` logger."""

    def __init__(self, logger_name: str = "resilient_http.report"):
        self.log = get_logger(logger_name)

    def report(self, url: str, method: str, status_or_error: StatusOrError, attempt: int) -> None:
        self.log.info("%s %s -> %s (attempt=%s)", method, url, status_or_error, attempt)


class CallbackReporter:
    """Adapts a plain function to the Reporter protocol."""

    def __init__(self, fn: Callable[[str, str, StatusOrError, int], None]):
        self.fn = fn

    def report(self, url: str, method: str, status_or_error: StatusOrError, attempt: int) -> None:
        self.fn(url, method, status_or_error, attempt)
