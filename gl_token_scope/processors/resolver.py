"""Resolution of numeric project IDs found in package URLs."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from gl_token_scope.logging_utils import format_error
from gl_token_scope.memo import AsyncMemo

if TYPE_CHECKING:
    from gl_token_scope.client import GitLabClient


class ProjectReferenceResolver:
    """
    Resolves project IDs to ``path_with_namespace`` for one scan.

    Every ID is looked up at most once, including concurrent requests for an
    ID whose lookup is still in flight. Failed lookups are cached as ``None``
    and reported against the source project being scanned.
    """

    def __init__(self, client: GitLabClient):
        self.client = client
        self.logger = logging.getLogger("gl-token-scope")
        self._cache: AsyncMemo[str, str | None] = AsyncMemo()

    async def resolve(self, project_ref: str, source_project_id: int) -> str | None:
        return await self._cache.get(str(project_ref), lambda: self._lookup(str(project_ref), source_project_id))

    async def _lookup(self, project_ref: str, source_project_id: int) -> str | None:
        try:
            project = await asyncio.to_thread(self.client.get_project, project_ref)
        except Exception as e:
            self.logger.error(
                f"Error fetching project {project_ref}: {format_error(e)}",
                extra={"project_id": source_project_id},
            )
            return None
        return project.get("path_with_namespace") or None

    @property
    def cache_size(self) -> int:
        return len(self._cache)
