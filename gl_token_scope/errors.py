"""Exception hierarchy for gl-token-scope."""

from __future__ import annotations

from typing import Any, Sequence

import requests

from gl_token_scope.models import RETRYABLE_STATUS_CODES, DependencyFailure, ProjectAdjustmentFailure


class GlTokenScopeError(Exception):
    """Base class for all errors raised by gl-token-scope."""


class ConfigError(GlTokenScopeError):
    """Configuration is missing or invalid. Raised before any scanning starts."""


class GitLabApiError(GlTokenScopeError):
    """A GitLab API request failed after exhausting retries."""

    def __init__(
        self,
        message: str,
        method: str,
        endpoint: str,
        status_code: int | None = None,
        retryable: bool = False,
        response_body: Any = None,
    ):
        super().__init__(message)
        self.method = method
        self.endpoint = endpoint
        self.status_code = status_code
        self.retryable = retryable
        self.response_body = response_body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @classmethod
    def from_exception(cls, exc: Exception, method: str, endpoint: str) -> GitLabApiError:
        """Build a typed error from whatever the requests stack raised."""
        if isinstance(exc, requests.HTTPError) and exc.response is not None:
            return cls.from_response(exc.response, method, endpoint)

        retryable = isinstance(exc, (requests.ConnectionError, requests.Timeout))
        details = str(exc) or type(exc).__name__
        return cls(
            build_message(method, endpoint, None, details),
            method=method,
            endpoint=endpoint,
            retryable=retryable,
        )

    @classmethod
    def from_response(cls, resp: requests.Response, method: str, endpoint: str) -> GitLabApiError:
        status = resp.status_code
        body = _response_body(resp)
        return cls(
            build_message(method, endpoint, status, _extract_details(body, resp.reason)),
            method=method,
            endpoint=endpoint,
            status_code=status,
            retryable=is_retryable_status(status),
            response_body=body,
        )


class UnexpectedEncodingError(GlTokenScopeError):
    """GitLab returned repository file content in an encoding other than base64."""


class ProjectUnavailableError(GlTokenScopeError):
    """Project metadata could not be retrieved."""

    def __init__(self, project_id: int):
        super().__init__(f"Project ID {project_id} metadata unavailable (not found or inaccessible)")
        self.project_id = project_id


class DependencyFileProcessingError(GlTokenScopeError):
    """A single dependency manifest could not be fetched or processed."""

    def __init__(self, project_id: int, file: str, cause: BaseException):
        super().__init__(f"Failed to process dependency file {file} for project ID {project_id}")
        self.project_id = project_id
        self.file = file
        self.cause = cause


class DependencyProcessingError(GlTokenScopeError):
    """One or more dependency files or dependency projects failed for a source project."""

    def __init__(self, source_project_id: int, failures: Sequence[DependencyFailure], message: str | None = None):
        super().__init__(
            message or f"Failed to process {len(failures)} dependencies for project ID {source_project_id}"
        )
        self.source_project_id = source_project_id
        self.failures = list(failures)


class AdjustAllProjectsError(GlTokenScopeError):
    """One or more projects failed during a bulk run."""

    def __init__(self, failures: Sequence[ProjectAdjustmentFailure], message: str | None = None):
        super().__init__(message or f"Failed to adjust token scope for {len(failures)} project(s).")
        self.failures = list(failures)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_retryable_status(status_code: int | None) -> bool:
    if status_code is None:
        return False
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def build_message(method: str, endpoint: str, status_code: int | None = None, details: str | None = None) -> str:
    status_part = f" (status {status_code})" if status_code else ""
    details_part = f": {details}" if details else ""
    return f"GitLab API request failed [{method.upper()} {endpoint}]{status_part}{details_part}"


def _response_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _extract_details(body: Any, fallback: str | None) -> str | None:
    if isinstance(body, str) and body:
        return body[:500]
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str):
                return value
            if value is not None:
                return str(value)
    return fallback
