"""Composer lockfile (composer.lock) processor."""

from __future__ import annotations

from gl_token_scope.processors.base import extract_host
from gl_token_scope.processors.composer import ComposerProcessor


class ComposerLockProcessor(ComposerProcessor):
    """Extracts GitLab-hosted packages from the source and dist URLs of a composer.lock."""

    manifest_name = "composer.lock"

    async def extract_dependencies(self, file_content: str, gitlab_url: str, project_id: int) -> list[str]:
        lockfile = self._load(file_content, project_id)
        if lockfile is None:
            return []

        packages = list(lockfile.get("packages") or []) + list(lockfile.get("packages-dev") or [])
        if not packages:
            return []

        host = extract_host(gitlab_url)
        dependencies: dict[str, None] = {}
        for package in packages:
            if not isinstance(package, dict):
                continue
            for section in ("source", "dist"):
                details = package.get(section)
                url = details.get("url") if isinstance(details, dict) else None
                if not isinstance(url, str) or not url:
                    continue
                dependency = await self._dependency_from_url(url, host, project_id)
                if dependency:
                    dependencies[dependency] = None

        return list(dependencies)
