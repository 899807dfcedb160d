from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Optional, Union

from resilient_http.core.errors import error_code, is_transient
from resilient_http.core.models import Policy
from resilient_http.http.policies import (
    cache_policy,
    default_policy,
    error_policy,
    redirect_policy,
    retry_policy,
    slow_retry_policy,
)
from resilient_http.http.rate_limit import rate_limit_policy

StateKey = Union[int, str]
StateActions = Mapping[StateKey, Policy]

# Key used for transport errors flagged transient whose identifier has no entry of its own.
ANY_TRANSIENT_ERROR = "*"

POLICIES: Mapping[str, Policy] = MappingProxyType(
    {
        "default": default_policy,
        "redirect": redirect_policy,
        "cache": cache_policy,
        "error": error_policy,
        "rate_limit": rate_limit_policy,
        "retry": retry_policy,
        "slow_retry": slow_retry_policy,
    }
)


def _table() -> Dict[StateKey, Policy]:
    table: Dict[StateKey, Policy] = {}

    for status in (200, 401, 404):
        table[status] = default_policy
    for status in (301, 302, 303, 307, 308):
        table[status] = redirect_policy
    table[304] = cache_policy
    for status in (400, 405, 412, 413, 422):
        table[status] = error_policy
    for status in (403, 429):
        table[status] = rate_limit_policy
    for status in (408, 409, 425, 500, 502, 503, 504):
        table[status] = retry_policy

    table["ETIMEDOUT"] = retry_policy
    for code in ("ECONNRESET", "ECONNREFUSED", "EPIPE", "EAI_AGAIN", "ENETUNREACH"):
        table[code] = slow_retry_policy
    table[ANY_TRANSIENT_ERROR] = slow_retry_policy

    return table


DEFAULT_STATE_ACTIONS: StateActions = MappingProxyType(_table())


def build_state_actions(overrides: Optional[Mapping[StateKey, Policy]] = None) -> StateActions:
    """Return an immutable table: the defaults plus `overrides`."""
    table = dict(DEFAULT_STATE_ACTIONS)
    if overrides:
        table.update(overrides)
    return MappingProxyType(table)


def lookup_status_action(actions: StateActions, status: int) -> Policy:
    """Policy for an HTTP status; unmapped statuses get the default policy."""
    return actions.get(status, default_policy)


def lookup_error_action(actions: StateActions, exc: BaseException) -> Optional[Policy]:
    """Policy for a transport exception, or None when it must propagate."""
    code = error_code(exc)
    if code is not None and code in actions:
        return actions[code]

    if is_transient(exc):
        return actions.get(ANY_TRANSIENT_ERROR)

    return None


def policy_by_name(name: str) -> Policy:
    key = str(name or "").strip().lower()
    if key not in POLICIES:
        known = ", ".join(sorted(POLICIES.keys()))
        raise KeyError(f"Unknown policy '{name}'. Known policies: {known}")
    return POLICIES[key]
