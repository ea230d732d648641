"""npm lockfile (package-lock.json) processor."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

from gl_token_scope.logging_utils import format_error
from gl_token_scope.processors.base import FileProcessor

if TYPE_CHECKING:
    from gl_token_scope.processors.resolver import ProjectReferenceResolver


class NpmProcessor(FileProcessor):
    """
    Finds packages installed from a GitLab project package registry.

    Walks the nested ``dependencies`` tree of lockfile v1 (and the flat
    ``packages`` map of v2/v3) without recursion, matching each ``resolved``
    URL against ``<gitlab>/api/v4/projects/<id>/packages`` and resolving the
    captured IDs to project paths.
    """

    def __init__(self, resolver: ProjectReferenceResolver) -> None:
        super().__init__()
        self.resolver = resolver

    async def extract_dependencies(self, file_content: str, gitlab_url: str, project_id: int) -> list[str]:
        try:
            lockfile = json.loads(file_content)
        except ValueError as e:
            self._log(project_id, f"Failed to parse package-lock.json file: {format_error(e)}", logging.ERROR)
            return []
        if not isinstance(lockfile, dict):
            return []

        pattern = registry_pattern(gitlab_url)
        project_refs: dict[str, None] = {}

        stack = [lockfile.get("dependencies"), lockfile.get("packages")]
        while stack:
            deps = stack.pop()
            if not isinstance(deps, dict):
                continue
            for details in deps.values():
                if not isinstance(details, dict):
                    continue
                resolved = details.get("resolved")
                if isinstance(resolved, str):
                    match = pattern.search(resolved)
                    if match:
                        project_refs[match.group(1)] = None
                nested = details.get("dependencies")
                if isinstance(nested, dict):
                    stack.append(nested)

        dependencies: dict[str, None] = {}
        for ref in project_refs:
            path = await self.resolver.resolve(ref, project_id)
            if path:
                dependencies[path] = None
        return list(dependencies)


def registry_pattern(gitlab_url: str) -> re.Pattern[str]:
    return re.compile(rf"{re.escape(gitlab_url.rstrip('/'))}/api/v4/projects/(\d+)/packages")
