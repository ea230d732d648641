"""Token scope adjustment for one project or every project visible to the token."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gl_token_scope.errors import AdjustAllProjectsError, GlTokenScopeError, ProjectUnavailableError
from gl_token_scope.logging_utils import format_error
from gl_token_scope.models import (
    DEFAULT_PROJECT_CONCURRENCY,
    ProjectAdjustmentFailure,
    ProjectListOptions,
    ProjectReportEntry,
)
from gl_token_scope.reconciler import AllowlistReconciler
from gl_token_scope.scanner import DependencyScanner, scan_failure_error

if TYPE_CHECKING:
    from gl_token_scope.client import GitLabClient, ProgressCallback
    from gl_token_scope.report import DryRunReporter


@dataclass
class AdjustProjectOptions:
    dry_run: bool = False
    monorepo: bool = False


@dataclass
class AdjustAllProjectsOptions(AdjustProjectOptions):
    reporter: DryRunReporter | None = None
    project_query: ProjectListOptions = field(default_factory=ProjectListOptions)
    concurrency: int = DEFAULT_PROJECT_CONCURRENCY
    project_timeout: float | None = None
    on_list_progress: ProgressCallback | None = None


class TokenScopeAdjuster:
    """
    Scans projects for GitLab-hosted dependencies and allowlists each project
    in the job token scope of its dependencies.

    The reconciler is kept for the adjuster's lifetime so lookups are shared
    across all projects of a bulk run.
    """

    def __init__(
        self,
        client: GitLabClient,
        scanner: DependencyScanner | None = None,
        reconciler: AllowlistReconciler | None = None,
    ):
        self.client = client
        self.scanner = scanner or DependencyScanner(client)
        self.reconciler = reconciler or AllowlistReconciler(client)
        self.logger = logging.getLogger("gl-token-scope")

    async def adjust_project(
        self,
        project_id: int,
        options: AdjustProjectOptions | None = None,
        require_project: bool = False,
    ) -> ProjectReportEntry | None:
        """
        Adjust a single project.

        Dry-run returns the report entry for the project's dependencies; a live
        run returns None. A project that cannot be read is skipped (None), or
        raises ProjectUnavailableError when ``require_project`` is set.
        """
        entry, error = await self._adjust(project_id, options or AdjustProjectOptions(), require_project)
        if error is not None:
            raise error
        return entry

    async def _adjust(
        self,
        project_id: int,
        options: AdjustProjectOptions,
        require_project: bool = False,
    ) -> tuple[ProjectReportEntry | None, GlTokenScopeError | None]:
        result = await self.scanner.scan(project_id, options.monorepo)
        if result is None:
            if require_project:
                raise ProjectUnavailableError(project_id)
            return None, None

        file_error = scan_failure_error(result)

        if not result.dependencies:
            if file_error is None:
                self.logger.info("No dependencies found to process. No changes required.", extra={"project_id": project_id})
            return None, file_error

        if options.dry_run:
            self.logger.info(
                "Dry run mode: CI_JOB_TOKEN would be allowlisted in the following projects:\n"
                + "\n".join(f"  - {dependency}" for dependency in result.dependencies),
                extra={"project_id": project_id},
            )
            entry = ProjectReportEntry(
                project_name=result.project_name,
                project_id=result.project_id,
                dependencies=list(result.dependencies),
            )
            return entry, file_error

        # Dependencies from readable manifests are applied even when others failed
        await self.reconciler.reconcile(result.dependencies, result.project_id)
        return None, file_error

    async def adjust_all_projects(self, options: AdjustAllProjectsOptions | None = None) -> list[ProjectReportEntry]:
        """
        Adjust every project visible to the token.

        Failures are collected per project without stopping the run; if any
        project failed an AdjustAllProjectsError is raised at the end. Dry-run
        entries are streamed to ``options.reporter`` as projects complete.
        """
        options = options or AdjustAllProjectsOptions()
        projects = await asyncio.to_thread(self.client.get_all_projects, options.project_query, options.on_list_progress)

        if not projects:
            self.logger.warning("No projects available to process.")
            return []

        self.logger.info(f"Processing {len(projects)} project(s)")
        reporter = options.reporter if options.dry_run else None
        if reporter is not None:
            await reporter.initialize()

        entries: list[ProjectReportEntry] = []
        failures: list[ProjectAdjustmentFailure] = []
        semaphore = asyncio.Semaphore(max(1, options.concurrency))

        async def _run_one(project_id: int) -> None:
            async with semaphore:
                try:
                    entry, error = await self._with_timeout(project_id, options)
                except Exception as exc:
                    entry, error = None, exc
                if entry is not None:
                    entries.append(entry)
                    if reporter is not None:
                        await reporter.append(entry)
                if error is not None:
                    self.logger.error(
                        f"Failed to adjust token scope for project ID {project_id}: {format_error(error)}"
                    )
                    failures.append(ProjectAdjustmentFailure(project_id=project_id, cause=error))

        project_ids = []
        for project in projects:
            project_id = project.get("id") if isinstance(project, dict) else None
            if not project_id:
                self.logger.warning("Encountered a project without an ID, skipping...")
                continue
            project_ids.append(project_id)

        await asyncio.gather(*(_run_one(project_id) for project_id in project_ids))

        if reporter is not None:
            await reporter.finalize()

        if failures:
            summary = "; ".join(f"project {failure.project_id}: {format_error(failure.cause)}" for failure in failures)
            raise AdjustAllProjectsError(
                failures, f"Failed to adjust token scope for {len(failures)} project(s): {summary}"
            )
        return entries

    async def _with_timeout(
        self, project_id: int, options: AdjustAllProjectsOptions
    ) -> tuple[ProjectReportEntry | None, BaseException | None]:
        if not options.project_timeout:
            return await self._adjust(project_id, options)
        try:
            return await asyncio.wait_for(self._adjust(project_id, options), timeout=options.project_timeout)
        except asyncio.TimeoutError:
            return None, TimeoutError(f"Timed out after {options.project_timeout:g}s")
