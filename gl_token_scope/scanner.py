"""Repository scanning: find dependency manifests and extract GitLab-hosted dependencies."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from gl_token_scope.errors import DependencyFileProcessingError, DependencyProcessingError, GitLabApiError
from gl_token_scope.logging_utils import format_error
from gl_token_scope.models import DependencyFailure, ScanResult
from gl_token_scope.processors import FileProcessor, ProcessorRegistry, ProjectReferenceResolver

if TYPE_CHECKING:
    from gl_token_scope.client import GitLabClient, ProgressCallback


class DependencyScanner:
    """Discovers manifests in a project's default branch and collects the dependencies they declare."""

    def __init__(self, client: GitLabClient, registry: ProcessorRegistry | None = None):
        self.client = client
        self.registry = registry or ProcessorRegistry()
        self.logger = logging.getLogger("gl-token-scope")

    async def scan(
        self,
        project_id: int,
        monorepo: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> ScanResult | None:
        """
        Scan one project.

        Returns None when the project does not exist or is not visible to the token.
        Manifests that fail are recorded in ``ScanResult.failures``; dependencies
        from the other manifests are still returned.
        """
        project = await self._fetch_project(project_id)
        if project is None:
            self.logger.warning(f"Skipping project ID {project_id} because details could not be retrieved.")
            return None

        project_name = project["path_with_namespace"]
        default_branch = project.get("default_branch") or ""
        self.logger.info(f"Processing project {project_name} (ID: {project_id}, branch: {default_branch or '-'})")

        if not default_branch:
            self.logger.warning(f"Project {project_name} has no default branch (empty repository?). Skipping files.")
            files: list[str] = []
        else:
            files = await self._fetch_dependency_files(project_id, default_branch, monorepo, on_progress)

        if files:
            self.logger.info(f"Found dependency files: {', '.join(files)}")
        else:
            self.logger.warning(f"No dependency files found in {project_name}")

        # One resolver and one processor per manifest type for the whole scan
        resolver = ProjectReferenceResolver(self.client)
        processors: dict[str, FileProcessor | None] = {}

        dependencies: dict[str, None] = {}
        failures: list[DependencyFailure] = []
        for file in files:
            try:
                found = await self._process_file(project_id, default_branch, file, resolver, processors)
            except DependencyFileProcessingError as e:
                self.logger.error(
                    f"Failed to process {file}: {format_error(e.cause)}", extra={"project_id": project_id}
                )
                failures.append(DependencyFailure(dependency=file, cause=e.cause))
                continue
            for dependency in found:
                dependencies.setdefault(dependency, None)

        return ScanResult(
            project_id=project_id,
            project_name=project_name,
            default_branch=default_branch,
            dependencies=tuple(dependencies),
            failures=tuple(failures),
        )

    async def _fetch_project(self, project_id: int) -> dict | None:
        try:
            return await asyncio.to_thread(self.client.get_project, project_id)
        except GitLabApiError as e:
            if e.is_not_found:
                self.logger.warning(f"Project ID {project_id} not found or inaccessible. Skipping.")
                return None
            self.logger.error(f"Failed to fetch project details for project ID {project_id}: {format_error(e)}")
            raise

    async def _fetch_dependency_files(
        self,
        project_id: int,
        branch: str,
        monorepo: bool,
        on_progress: ProgressCallback | None,
    ) -> list[str]:
        try:
            files = await asyncio.to_thread(
                self.client.find_dependency_files, project_id, branch, monorepo, on_progress
            )
        except GitLabApiError as e:
            if e.is_not_found:
                self.logger.warning(
                    f"Repository tree not found for project ID {project_id}; proceeding without dependency files."
                )
                return []
            self.logger.error(f"Failed to fetch dependency files for project ID {project_id}: {format_error(e)}")
            raise
        return [file for file in files if self.registry.supports(file)]

    async def _process_file(
        self,
        project_id: int,
        branch: str,
        file: str,
        resolver: ProjectReferenceResolver,
        processors: dict[str, FileProcessor | None],
    ) -> list[str]:
        try:
            content = await asyncio.to_thread(self.client.get_file_content, project_id, file, branch)
            if not content:
                return []

            processor_key = file.rsplit("/", 1)[-1]
            if processor_key not in processors:
                processors[processor_key] = self.registry.create(file, resolver)
            processor = processors[processor_key]
            if processor is None:
                return []

            dependencies = await processor.extract_dependencies(content, self.client.url, project_id)
        except Exception as e:
            raise DependencyFileProcessingError(project_id, file, e) from e

        self.logger.info(
            f"Dependencies from {file} that match the GitLab URL: {', '.join(dependencies) or 'none'}",
            extra={"project_id": project_id},
        )
        return dependencies


def scan_failure_error(result: ScanResult) -> DependencyProcessingError | None:
    """Aggregate the manifest failures of a scan into one error, or None if every file succeeded."""
    if not result.failures:
        return None
    summary = "; ".join(f"{failure.dependency}: {format_error(failure.cause)}" for failure in result.failures)
    return DependencyProcessingError(
        result.project_id,
        result.failures,
        f"Encountered {len(result.failures)} error(s) while processing dependency files "
        f"for project ID {result.project_id}: {summary}",
    )
