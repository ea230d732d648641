"""Shared test fixtures for gl-token-scope tests."""

import base64
import sys
import threading
import time
from pathlib import Path
from typing import Any

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from gl_token_scope.client import GitLabClient
from gl_token_scope.errors import GitLabApiError

# Constants for use in tests - pytest makes conftest.py fixtures available,
# but these constants need to be imported directly from tests
MOCK_GITLAB_URL = "https://gitlab.example.com"
MOCK_API_URL = f"{MOCK_GITLAB_URL}/api/v4"


def encode_file(content: str) -> dict[str, Any]:
    """Repository file API payload for ``content``."""
    return {"encoding": "base64", "content": base64.b64encode(content.encode()).decode()}


def not_found(endpoint: str) -> GitLabApiError:
    return GitLabApiError(
        f"GitLab API request failed [GET {endpoint}] (status 404): 404 Not Found",
        method="GET",
        endpoint=endpoint,
        status_code=404,
    )


class FakeGitLabClient:
    """
    In-memory stand-in for GitLabClient used by the async component tests.

    ``projects`` maps numeric IDs and paths to project payloads, ``files`` maps
    project IDs to {path: content}, ``allowlists`` maps dependency IDs to the
    set of allowlisted source IDs. Every call is recorded in ``calls``.
    """

    url = MOCK_GITLAB_URL

    def __init__(self, delay: float = 0.0):
        self.projects: dict[str, dict] = {}
        self.files: dict[int, dict[str, str]] = {}
        self.allowlists: dict[int, set[int]] = {}
        self.failing: dict[tuple[str, Any], Exception] = {}
        self.project_list: list[dict] = []
        self.delay = delay
        self.calls: list[tuple] = []
        self._lock = threading.Lock()

    def add_project(self, project_id: int, path: str, default_branch: str = "main", files: dict | None = None):
        project = {"id": project_id, "path_with_namespace": path, "default_branch": default_branch}
        self.projects[str(project_id)] = project
        self.projects[path] = project
        if files is not None:
            self.files[project_id] = dict(files)
        self.project_list.append(project)
        return project

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)
        if self.delay:
            time.sleep(self.delay)
        failure = self.failing.get((call[0], call[1]))
        if failure is not None:
            raise failure

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def get_project(self, project_ref):
        self._record("get_project", str(project_ref))
        try:
            return self.projects[str(project_ref)]
        except KeyError:
            raise not_found(f"/projects/{project_ref}") from None

    def get_project_id(self, path):
        self._record("get_project_id", path)
        try:
            return self.projects[path]["id"]
        except KeyError:
            raise not_found(f"/projects/{path}") from None

    def get_all_projects(self, options=None, on_progress=None):
        self._record("get_all_projects", None)
        return list(self.project_list)

    def find_dependency_files(self, project_id, branch, monorepo=False, on_progress=None):
        self._record("find_dependency_files", project_id)
        paths = list(self.files.get(project_id, {}))
        return [p for p in paths if monorepo or "/" not in p]

    def get_file_content(self, project_id, file_path, branch):
        self._record("get_file_content", (project_id, file_path))
        return self.files[project_id][file_path]

    def is_project_whitelisted(self, source_project_id, dependency_project_id):
        self._record("is_project_whitelisted", (source_project_id, dependency_project_id))
        return source_project_id in self.allowlists.get(dependency_project_id, set())

    def allow_ci_job_token_access(self, dependency_project_id, source_project_id):
        self._record("allow_ci_job_token_access", dependency_project_id)
        self.allowlists.setdefault(dependency_project_id, set()).add(source_project_id)


@pytest.fixture
def mock_client():
    """GitLabClient pointing at mock server."""
    return GitLabClient(MOCK_GITLAB_URL, "test-token", max_retries=2, retry_delay=0)


@pytest.fixture
def fake_client():
    return FakeGitLabClient()


@pytest.fixture
def sample_project() -> dict[str, Any]:
    """Sample project API response."""
    return {
        "id": 123,
        "name": "my-project",
        "path_with_namespace": "myorg/my-project",
        "default_branch": "main",
        "web_url": f"{MOCK_GITLAB_URL}/myorg/my-project",
    }
