"""Data models and constants for gl-token-scope."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_GITLAB_URL = "https://gitlab.com"
API_V4 = "/api/v4"
PER_PAGE = 100
MAX_PER_PAGE = 100

# HTTP configuration
DEFAULT_TIMEOUT_MS = 10000
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY_MS = 500
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Concurrency
DEFAULT_CONCURRENCY = 5
DEFAULT_PROJECT_CONCURRENCY = 1

DEFAULT_REPORT_PATH = "gitlab-token-scope-report.yaml"

# Manifest basenames the scanner knows how to process
MANIFEST_FILES = ("go.mod", "composer.json", "composer.lock", "package-lock.json")

# GitLab access level constants
ACCESS_LEVELS = {
    "guest": 10,
    "reporter": 20,
    "developer": 30,
    "maintainer": 40,
    "owner": 50,
}

ORDER_BY_FIELDS = ("id", "name", "path", "created_at", "updated_at", "last_activity_at")
VISIBILITY_LEVELS = ("private", "internal", "public")


# ---------------------------------------------------------------------------
# Data Classes
# ---------------------------------------------------------------------------


@dataclass
class ProjectListOptions:
    """Filters forwarded to the GitLab project listing endpoint."""

    per_page: int | None = None
    search: str | None = None
    membership: bool | None = None
    owned: bool | None = None
    archived: bool | None = None
    simple: bool | None = None
    min_access_level: int | None = None
    page_limit: int | None = None
    order_by: str | None = None
    sort: str | None = None
    visibility: str | None = None

    def to_params(self) -> dict[str, Any]:
        """Build query parameters, leaving out filters that were not set."""
        params: dict[str, Any] = {"per_page": resolve_per_page(self.per_page)}
        if self.search:
            params["search"] = self.search
        for name in ("membership", "owned", "archived", "simple"):
            value = getattr(self, name)
            if value is not None:
                params[name] = "true" if value else "false"
        min_access_level = resolve_positive_int(self.min_access_level)
        if min_access_level is not None:
            params["min_access_level"] = min_access_level
        if self.order_by:
            params["order_by"] = self.order_by
        if self.sort:
            params["sort"] = self.sort
        if self.visibility:
            params["visibility"] = self.visibility
        return params


@dataclass(frozen=True)
class ScanResult:
    """Outcome of scanning one project for dependency manifests."""

    project_id: int
    project_name: str
    default_branch: str
    dependencies: tuple[str, ...] = ()
    failures: tuple[DependencyFailure, ...] = ()


@dataclass
class ProjectReportEntry:
    """Dry-run report unit: the dependencies a project would be allowlisted in."""

    project_name: str
    project_id: int
    dependencies: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AllowlistDecision:
    """Whether a source project is already present in a dependency's job token allowlist."""

    dependency: str
    dependency_project_id: int
    source_project_id: int
    already_allowed: bool
    applied: bool = False


@dataclass(frozen=True)
class DependencyFailure:
    dependency: str
    cause: BaseException


@dataclass(frozen=True)
class ProjectAdjustmentFailure:
    project_id: int
    cause: BaseException


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_per_page(per_page: int | None) -> int:
    """Clamp a requested page size into GitLab's accepted 1..100 range."""
    if per_page is None:
        return MAX_PER_PAGE
    try:
        value = int(per_page)
    except (TypeError, ValueError):
        return MAX_PER_PAGE
    if value <= 0:
        return MAX_PER_PAGE
    return min(MAX_PER_PAGE, value)


def resolve_positive_int(value: int | None) -> int | None:
    if value is None:
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None
