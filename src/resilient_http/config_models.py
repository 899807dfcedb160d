"""
Pydantic models for YAML configuration validation.
Provides schema validation with clear error messages for request configurations.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Literal, Union
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from resilient_http.core.models import (
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MIN_WAIT_MS,
    DEFAULT_RETRY_SCHEDULE_MS,
    DEFAULT_SLOW_RETRY_SCHEDULE_MS,
)

HTTP_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}


def _check_schedule(v: List[int]) -> List[int]:
    if not v:
        raise ValueError('retry schedule cannot be empty')
    if any(ms < 0 for ms in v):
        raise ValueError('retry schedule entries must be >= 0')
    if any(b < a for a, b in zip(v, v[1:])):
        raise ValueError('retry schedule must be non-decreasing')
    return v


class ExecutorSettings(BaseModel):
    """Retry budget and wait settings for the request loop."""
    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=1, le=100, description="Maximum number of attempts")
    min_wait_ms: int = Field(DEFAULT_MIN_WAIT_MS, ge=0, le=3600000, description="Floor for rate-limit waits")
    max_redirects: int = Field(DEFAULT_MAX_REDIRECTS, ge=0, le=20, description="Redirect hops to follow")
    retry_schedule_ms: List[int] = Field(
        default_factory=lambda: list(DEFAULT_RETRY_SCHEDULE_MS),
        description="Backoff delays for retryable statuses, by attempt"
    )
    slow_retry_schedule_ms: List[int] = Field(
        default_factory=lambda: list(DEFAULT_SLOW_RETRY_SCHEDULE_MS),
        description="Backoff delays for connection-level transport errors, by attempt"
    )
    timeout_s: float = Field(30.0, gt=0, le=600, description="Transport timeout in seconds")

    @field_validator('retry_schedule_ms', 'slow_retry_schedule_ms')
    @classmethod
    def validate_schedule(cls, v):
        return _check_schedule(v)


class RequestConfig(BaseModel):
    """The request to execute."""
    url: str = Field(..., description="Initial URL")
    method: str = Field("GET", description="HTTP method to use")
    headers: Dict[str, str] = Field(default_factory=dict, description="HTTP headers")
    params: Dict[str, Any] = Field(default_factory=dict, description="URL query parameters")
    body: Optional[Any] = Field(None, description="Request body")

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError('url must be a valid HTTP/HTTPS URL')
        return v

    @field_validator('method')
    @classmethod
    def validate_method(cls, v):
        method = str(v or "").strip().upper()
        if method not in HTTP_METHODS:
            raise ValueError(f'method must be one of: {", ".join(sorted(HTTP_METHODS))}')
        return method


class CacheConfig(BaseModel):
    """Optional response cache."""
    type: Literal["none", "memory", "sqlite"] = "none"
    path: Optional[str] = Field(None, description="Database path for the sqlite cache")

    @model_validator(mode='after')
    def validate_cache_config(self):
        if self.type == "sqlite" and not self.path:
            raise ValueError('path is required when cache type is "sqlite"')
        return self


class FetchConfig(BaseModel):
    """Root configuration model for a request."""
    request: RequestConfig
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    state_actions: Dict[Union[int, str], str] = Field(
        default_factory=dict,
        description="Overrides: status code or error identifier -> policy name"
    )

    @field_validator('state_actions')
    @classmethod
    def validate_state_actions(cls, v):
        from resilient_http.http.dispatch import POLICIES

        out: Dict[Union[int, str], str] = {}
        for key, name in v.items():
            policy_name = str(name or "").strip().lower()
            if policy_name not in POLICIES:
                raise ValueError(f'Unknown policy "{name}" for {key}. Known: {", ".join(sorted(POLICIES))}')
            # YAML keys like "503" arrive as strings; statuses are matched as ints.
            if isinstance(key, str) and key.strip().isdigit():
                key = int(key.strip())
            out[key] = policy_name
        return out


def load_and_validate_config(config_path: str) -> FetchConfig:
    """
    Load and validate a request configuration from YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated FetchConfig object

    Raises:
        ValueError: If configuration is invalid or the YAML is malformed
        FileNotFoundError: If config file doesn't exist
    """
    import yaml

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    try:
        config = FetchConfig(**(raw_config or {}))
        return config
    except ValidationError as e:
        # Format validation errors nicely
        error_messages = []
        for error in e.errors():
            field_path = '.'.join(str(loc) for loc in error['loc'])
            error_messages.append(f"  {field_path}: {error['msg']}")

        raise ValueError(
            f"Configuration validation failed for {config_path}:\n" +
            '\n'.join(error_messages)
        ) from e


def config_to_request_objects(config: FetchConfig) -> tuple:
    """
    Convert validated config to the objects expected by the executor.

    Collaborators (cache, reporter, postprocess) are left unset; the factory fills them in.

    Returns:
        Tuple of (RequestSpec, RequestOptions)
    """
    from resilient_http.core.models import RequestOptions, RequestSpec
    from resilient_http.http.dispatch import build_state_actions, policy_by_name

    request = RequestSpec(
        url=config.request.url,
        method=config.request.method,
        headers=config.request.headers,
        params=config.request.params,
        body=config.request.body,
    )

    state_actions = None
    if config.state_actions:
        state_actions = build_state_actions(
            {key: policy_by_name(name) for key, name in config.state_actions.items()}
        )

    settings = config.executor
    options = RequestOptions(
        method=request.method,
        headers=dict(request.headers),
        params=dict(request.params),
        body=request.body,
        max_retries=settings.max_retries,
        min_wait_ms=settings.min_wait_ms,
        max_redirects=settings.max_redirects,
        retry_schedule_ms=tuple(settings.retry_schedule_ms),
        slow_retry_schedule_ms=tuple(settings.slow_retry_schedule_ms),
        state_actions=state_actions,
    )

    return request, options
