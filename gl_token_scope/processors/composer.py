"""Composer manifest (composer.json) processor."""

from __future__ import annotations

import json
import logging
import urllib.parse
from typing import TYPE_CHECKING

from gl_token_scope.logging_utils import format_error
from gl_token_scope.processors.base import (
    FileProcessor,
    extract_host,
    extract_project_path,
    is_group_package_endpoint,
    split_remote,
)

if TYPE_CHECKING:
    from gl_token_scope.processors.resolver import ProjectReferenceResolver


class ComposerProcessor(FileProcessor):
    """Extracts GitLab-hosted repositories declared under ``repositories`` in composer.json."""

    manifest_name = "composer.json"

    def __init__(self, resolver: ProjectReferenceResolver | None = None) -> None:
        super().__init__()
        self.resolver = resolver
        self._reported_endpoints: set[str] = set()

    async def extract_dependencies(self, file_content: str, gitlab_url: str, project_id: int) -> list[str]:
        manifest = self._load(file_content, project_id)
        if manifest is None:
            return []

        repositories = manifest.get("repositories")
        if isinstance(repositories, list):
            entries = [(str(index), repo) for index, repo in enumerate(repositories)]
        elif isinstance(repositories, dict):
            entries = list(repositories.items())
        else:
            return []

        host = extract_host(gitlab_url)
        dependencies: dict[str, None] = {}
        for key, repo in entries:
            if not isinstance(repo, dict):
                continue
            url = repo.get("url")
            remote = split_remote(url) if isinstance(url, str) else None
            if remote is None or remote[0] != host:
                self._log(
                    project_id,
                    f"Skipping repository '{key}' with URL '{url}' of unknown type '{repo.get('type')}'",
                    logging.WARNING,
                )
                continue

            dependency = await self._dependency_from_url(url, host, project_id)
            if dependency:
                dependencies[dependency] = None

        return list(dependencies)

    def _load(self, file_content: str, project_id: int) -> dict | None:
        try:
            data = json.loads(file_content)
        except ValueError as e:
            self._log(project_id, f"Failed to parse {self.manifest_name} file: {format_error(e)}", logging.ERROR)
            return None
        if not isinstance(data, dict):
            self._log(project_id, f"Unexpected {self.manifest_name} layout: top level is not an object", logging.ERROR)
            return None
        return data

    async def _dependency_from_url(self, url: str, host: str, project_id: int) -> str | None:
        """
        Map a repository or package URL on ``host`` to a project path.

        Tries, in order: a plain project URL (HTTPS or scp-like SSH), then a
        project package API URL (``/api/v4/projects/<id or path>/...``), whose
        numeric IDs go through the resolver. Group package endpoints cannot be
        mapped to a single project and are reported once each.
        """
        remote = split_remote(url)
        if remote is None or remote[0] != host:
            return None

        if is_group_package_endpoint(remote[1]):
            self._report_group_endpoint(remote[1], project_id)
            return None

        direct = extract_project_path(url, host)
        if direct:
            return direct

        reference = api_project_reference(remote[1])
        if reference is None:
            return None
        if not reference.isdigit():
            return reference
        if self.resolver is None:
            self._log(project_id, f"Cannot resolve project ID {reference} without a resolver", logging.WARNING)
            return None
        return await self.resolver.resolve(reference, project_id)

    def _report_group_endpoint(self, path: str, project_id: int) -> None:
        key = path.lower()
        if key in self._reported_endpoints:
            return
        self._reported_endpoints.add(key)
        self._log(
            project_id,
            f"Skipping GitLab group package endpoint '{path}'. "
            "Group-level Composer packages cannot be allowlisted automatically.",
            logging.WARNING,
        )


def api_project_reference(path: str) -> str | None:
    """``/api/v4/projects/<ref>/...`` -> decoded ``<ref>`` (numeric ID or URL-encoded path)."""
    segments = [segment for segment in path.split("/") if segment]
    try:
        index = segments.index("projects")
    except ValueError:
        return None
    if index + 1 >= len(segments):
        return None
    reference = urllib.parse.unquote(segments[index + 1])
    return reference or None
