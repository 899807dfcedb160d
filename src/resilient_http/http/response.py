from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from requests.structures import CaseInsensitiveDict


@dataclass(frozen=True)
class HttpResponse:
    """HTTP response data."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    text: str = ""
    json: Any = None
    url: str = ""
    reason: str = ""
    from_cache: bool = False

    def __post_init__(self) -> None:
        # Header lookups are case-insensitive regardless of what the transport handed us.
        if not isinstance(self.headers, CaseInsensitiveDict):
            object.__setattr__(self, "headers", CaseInsensitiveDict(self.headers or {}))

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str) -> Optional[str]:
        """Return a header value or None."""
        value = self.headers.get(name)
        if value is None:
            return None
        return str(value)

    @classmethod
    def failed(cls, url: str, reason: str = "No response") -> "HttpResponse":
        """Synthetic failed response for a transport that returned nothing."""
        return cls(status_code=0, url=url, reason=reason)
