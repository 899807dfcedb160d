from __future__ import annotations

import errno
from typing import Optional, Protocol

import requests

from resilient_http.core.errors import TransportError
from resilient_http.core.models import RequestSpec
from resilient_http.http.response import HttpResponse
from resilient_http.utils.logging import get_logger

# Identifier for connection failures whose errno could not be recovered.
CONNECTION_ERROR = "ECONNERROR"


class Transport(Protocol):
    """Protocol for performing exactly one HTTP exchange."""

    def perform(self, req: RequestSpec) -> Optional[HttpResponse]: ...


def _errno_name(exc: BaseException) -> Optional[str]:
    """Walk the cause/context chain looking for an OSError with an errno."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and current.errno in errno.errorcode:
            return errno.errorcode[current.errno]
        # urllib3 keeps the low-level error in `reason`, requests wraps it in args[0].
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            current = reason
            continue
        if current.args and isinstance(current.args[0], BaseException):
            current = current.args[0]
            continue
        current = current.__cause__ or current.__context__
    return None


class RequestsTransport:
    """Transport using the requests library. Redirects are left to the executor."""

    def __init__(self, timeout_s: float = 30, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.log = get_logger("resilient_http.transport")

    def perform(self, req: RequestSpec) -> HttpResponse:
        """Send one request and wrap the answer."""
        try:
            r = self.session.request(
                method=req.method,
                url=req.url,
                headers=req.headers,
                params=req.params or None,
                json=req.body if isinstance(req.body, (dict, list)) else None,
                data=None if isinstance(req.body, (dict, list)) else req.body,
                timeout=self.timeout_s,
                allow_redirects=False,
            )
        except requests.Timeout as e:
            raise TransportError("ETIMEDOUT", str(e), transient=True) from e
        except requests.ConnectionError as e:
            code = _errno_name(e)
            self.log.debug("Connection error for %s (errno=%s)", req.url, code)
            raise TransportError(code or CONNECTION_ERROR, str(e), transient=True) from e

        ct = r.headers.get("Content-Type", "")

        # If charset not specified, force utf-8 for text-ish content
        if "charset=" not in ct.lower() and ("text/" in ct.lower() or "json" in ct.lower()):
            r.encoding = "utf-8"

        js = None
        if "application/json" in ct.lower():
            try:
                js = r.json()
            except ValueError:
                js = None

        return HttpResponse(
            status_code=r.status_code,
            headers=r.headers,
            text=r.text,
            json=js,
            url=r.url or req.url,
            reason=r.reason or "",
        )

    def close(self) -> None:
        self.session.close()
