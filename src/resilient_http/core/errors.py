"""
Exceptions raised by the request executor and its transports.
"""

from __future__ import annotations

import errno
from typing import Optional


class ResilientHttpError(RuntimeError):
    """Base class for failures raised by resilient_http itself."""


class MaxRetriesError(ResilientHttpError):
    """Raised when the request loop runs out of attempts without a terminal decision."""

    def __init__(self, url: str, method: str, max_retries: int):
        self.url = url
        self.method = method
        self.max_retries = max_retries
        super().__init__(f"{url},{method}: Max retry count reached ({max_retries})")


class TransportError(ResilientHttpError):
    """
    A transport-level failure (no HTTP response at all).

    `code` is the identifier looked up in the dispatch table, e.g. "ETIMEDOUT".
    `transient` marks failures that may be retried even when `code` has no entry.
    """

    def __init__(self, code: str, message: str = "", transient: bool = False):
        self.code = code
        self.transient = transient
        super().__init__(f"{code}: {message}" if message else code)


def error_code(exc: BaseException) -> Optional[str]:
    """Best-effort dispatch identifier for an exception."""
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return code

    if isinstance(exc, OSError) and exc.errno is not None:
        return errno.errorcode.get(exc.errno)

    return None


def is_transient(exc: BaseException) -> bool:
    return bool(getattr(exc, "transient", False))
