from __future__ import annotations

import json
from typing import Any

from resilient_http.http.response import HttpResponse


def json_postprocess(response: HttpResponse) -> Any:
    """Decoded JSON body; parse errors propagate to the caller."""
    if response.json is not None:
        return response.json
    return json.loads(response.text)


def text_postprocess(response: HttpResponse) -> str:
    return response.text
