"""Environment configuration for gl-token-scope."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from gl_token_scope.errors import ConfigError
from gl_token_scope.models import (
    DEFAULT_GITLAB_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
)


@dataclass(frozen=True)
class ClientConfig:
    """Settings needed to build a GitLabClient."""

    url: str
    token: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS


def load_config(environ: Mapping[str, str] | None = None, gitlab_url: str | None = None) -> ClientConfig:
    """
    Read GitLab settings from the environment.

    GITLAB_TOKEN is required. GITLAB_URL defaults to gitlab.com and is overridden
    by an explicit ``gitlab_url``. HTTP tuning comes from GITLAB_HTTP_TIMEOUT_MS,
    GITLAB_HTTP_MAX_RETRIES and GITLAB_HTTP_RETRY_DELAY_MS.
    """
    env = os.environ if environ is None else environ

    token = env.get("GITLAB_TOKEN")
    if not token:
        raise ConfigError("GITLAB_TOKEN is not defined. Please set it in your environment variables.")

    url = gitlab_url or env.get("GITLAB_URL") or DEFAULT_GITLAB_URL

    timeout_ms = _parse_int_env(env, "GITLAB_HTTP_TIMEOUT_MS", minimum=1)
    max_retries = _parse_int_env(env, "GITLAB_HTTP_MAX_RETRIES", minimum=0)
    retry_delay_ms = _parse_int_env(env, "GITLAB_HTTP_RETRY_DELAY_MS", minimum=0)

    return ClientConfig(
        url=url.rstrip("/"),
        token=token,
        timeout_ms=DEFAULT_TIMEOUT_MS if timeout_ms is None else timeout_ms,
        max_retries=DEFAULT_MAX_RETRIES if max_retries is None else max_retries,
        retry_delay_ms=DEFAULT_RETRY_DELAY_MS if retry_delay_ms is None else retry_delay_ms,
    )


def _parse_int_env(env: Mapping[str, str], name: str, minimum: int | None = None) -> int | None:
    raw = env.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f'{name} must be a valid integer, but received "{raw}"') from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be greater than or equal to {minimum}, but received {value}")
    return value
