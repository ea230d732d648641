"""GitLab API client with pagination and retry support."""

from __future__ import annotations

import base64
import logging
import posixpath
import time
import urllib.parse
from typing import Any, Callable

import requests

from gl_token_scope.errors import GitLabApiError, UnexpectedEncodingError, build_message
from gl_token_scope.models import (
    API_V4,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
    MANIFEST_FILES,
    PER_PAGE,
    ProjectListOptions,
    resolve_positive_int,
)

ProgressCallback = Callable[[int, int], None]

# Status codes meaning the blob search endpoint is not usable on this instance
SEARCH_UNAVAILABLE_STATUS_CODES = {400, 403, 404}


class GitLabClient:
    """Thin wrapper around GitLab REST API v4 with pagination support and retry logic."""

    def __init__(
        self,
        base_url: str,
        token: str,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_MS / 1000,
        timeout: float = DEFAULT_TIMEOUT_MS / 1000,
        search_files: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}{API_V4}"
        self.session = requests.Session()
        self.session.headers.update(
            {
                "PRIVATE-TOKEN": token,
                "Content-Type": "application/json",
            }
        )
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.search_files = search_files
        self.logger = logging.getLogger("gl-token-scope")

    @property
    def url(self) -> str:
        return self.base_url

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """Make an HTTP request, retrying rate limits, server errors and network failures."""
        url = f"{self.api_url}{endpoint}"
        kwargs.setdefault("timeout", self.timeout)
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                self.logger.debug(
                    f"{method.upper()} {url} {kwargs.get('params') or ''} {kwargs.get('json') or ''} "
                    f"(attempt {attempt}/{attempts})"
                )
                resp = self.session.request(method, url, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt < attempts:
                    wait_time = self.retry_delay * attempt
                    self.logger.warning(f"Connection error, retrying in {wait_time:.1f}s: {e}")
                    time.sleep(wait_time)
                    continue
                raise GitLabApiError.from_exception(e, method, url) from e
            except requests.RequestException as e:
                raise GitLabApiError.from_exception(e, method, url) from e

            if resp.status_code >= 400:
                error = GitLabApiError.from_response(resp, method, url)
                if error.retryable and attempt < attempts:
                    wait_time = self._calculate_backoff(resp, attempt)
                    self.logger.warning(f"Retryable error {resp.status_code}, waiting {wait_time:.1f}s before retry")
                    time.sleep(wait_time)
                    continue
                if resp.status_code != 404:
                    self.logger.debug(f"API error {resp.status_code}: {resp.text[:500]}")
                raise error
            return resp

        # Loop always returns or raises; kept for type checkers
        raise GitLabApiError("GitLab API request exhausted retry attempts.", method=method, endpoint=url)

    def _calculate_backoff(self, resp: requests.Response, attempt: int) -> float:
        """Linear backoff, respecting Retry-After header for 429s."""
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass  # Fall through to linear backoff
        return self.retry_delay * attempt

    def get(self, endpoint: str, params: dict | None = None) -> Any:
        return self._decode(self._request("GET", endpoint, params=params), "GET", endpoint)

    def post(self, endpoint: str, data: dict | None = None) -> Any:
        resp = self._request("POST", endpoint, json=data)
        return self._decode(resp, "POST", endpoint) if resp.content else None

    def _decode(self, resp: requests.Response, method: str, endpoint: str) -> Any:
        """Parse a JSON body; anything else (an HTML proxy page, say) is an API error."""
        try:
            return resp.json()
        except ValueError as e:
            url = f"{self.api_url}{endpoint}"
            raise GitLabApiError(
                build_message(method, url, resp.status_code, "response body is not valid JSON"),
                method=method,
                endpoint=url,
                status_code=resp.status_code,
                response_body=resp.text[:500],
            ) from e

    def paginate(
        self,
        endpoint: str,
        params: dict | None = None,
        page_limit: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[dict]:
        """Fetch all pages of a paginated endpoint, or the first ``page_limit`` pages."""
        params = dict(params or {})
        params.setdefault("per_page", PER_PAGE)
        page = 1
        fetched = 0
        total_pages = 0
        results: list[dict] = []
        while True:
            if page_limit and fetched >= page_limit:
                break
            params["page"] = page
            resp = self._request("GET", endpoint, params=params)
            data = self._decode(resp, "GET", endpoint)
            if not isinstance(data, list) or not data:
                break
            results.extend(data)
            fetched += 1

            total_header = resp.headers.get("x-total-pages")
            if total_header and total_header.isdigit():
                total_pages = int(total_header)
            if on_progress:
                on_progress(fetched, total_pages)

            # Check if there are more pages
            next_page = resp.headers.get("x-next-page")
            if next_page is not None:
                if not next_page.strip().isdigit():
                    break
                page = int(next_page)
            elif total_pages and page < total_pages:
                page += 1
            else:
                break
        return results

    # -- Projects --

    def get_project(self, project_ref: int | str) -> dict:
        """Get project details by numeric ID or ``namespace/path``."""
        encoded = urllib.parse.quote(str(project_ref), safe="")
        return self.get(f"/projects/{encoded}")

    def get_project_id(self, path_with_namespace: str) -> int:
        """Resolve a ``namespace/path`` to its numeric project ID."""
        return int(self.get_project(path_with_namespace)["id"])

    def get_all_projects(
        self,
        options: ProjectListOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[dict]:
        """List every project visible to the token, filtered as requested."""
        options = options or ProjectListOptions()
        return self.paginate(
            "/projects",
            params=options.to_params(),
            page_limit=resolve_positive_int(options.page_limit),
            on_progress=on_progress,
        )

    # -- Repository --

    def find_dependency_files(
        self,
        project_id: int,
        branch: str,
        monorepo: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> list[str]:
        """
        Locate supported dependency manifests in a project's repository.

        Uses blob search when enabled and available, otherwise walks the
        repository tree (recursively only in monorepo mode). Returns repository
        paths; outside monorepo mode only root-level files are returned.
        """
        if self.search_files:
            found = self._search_dependency_files(project_id, branch, monorepo)
            if found is not None:
                return found

        items = self.paginate(
            f"/projects/{project_id}/repository/tree",
            params={"ref": branch, "recursive": "true" if monorepo else "false"},
            on_progress=on_progress,
        )
        files = []
        for item in items:
            if item.get("type", "blob") != "blob":
                continue
            path = item.get("path") or item.get("name")
            if isinstance(path, str) and is_manifest(path, monorepo):
                files.append(path)
        return files

    def _search_dependency_files(self, project_id: int, branch: str, monorepo: bool) -> list[str] | None:
        found: dict[str, None] = {}
        for filename in MANIFEST_FILES:
            try:
                hits = self.paginate(
                    f"/projects/{project_id}/search",
                    params={"scope": "blobs", "search": f"filename:{filename}", "ref": branch},
                )
            except GitLabApiError as e:
                if e.status_code in SEARCH_UNAVAILABLE_STATUS_CODES:
                    self.logger.debug(f"File search unavailable for project {project_id}, walking repository tree")
                    return None
                raise
            for hit in hits:
                path = hit.get("path") or hit.get("filename")
                if isinstance(path, str) and is_manifest(path, monorepo):
                    found[path] = None
        return list(found)

    def get_file_content(self, project_id: int, file_path: str, branch: str) -> str:
        """Download and decode a repository file."""
        encoded_path = urllib.parse.quote(file_path, safe="")
        data = self.get(f"/projects/{project_id}/repository/files/{encoded_path}", params={"ref": branch})
        if data.get("encoding") != "base64":
            raise UnexpectedEncodingError("Unexpected encoding of file content received from GitLab API")
        return base64.b64decode(data.get("content") or "").decode("utf-8")

    # -- CI job token scope --

    def is_project_whitelisted(self, source_project_id: int, dependency_project_id: int) -> bool:
        """Check whether the dependency's job token allowlist already contains the source project."""
        allowlist = self.paginate(f"/projects/{dependency_project_id}/job_token_scope/allowlist")
        return any(entry.get("id") == source_project_id for entry in allowlist)

    def allow_ci_job_token_access(self, dependency_project_id: int, source_project_id: int) -> None:
        """Add the source project to the dependency's job token allowlist."""
        self.post(
            f"/projects/{dependency_project_id}/job_token_scope/allowlist",
            data={"target_project_id": source_project_id},
        )


def is_manifest(path: str, monorepo: bool) -> bool:
    """True when ``path`` names a supported manifest at a location the scan mode covers."""
    path = path.strip("/")
    if posixpath.basename(path) not in MANIFEST_FILES:
        return False
    return monorepo or "/" not in path
