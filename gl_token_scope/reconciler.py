"""Job token allowlist reconciliation for dependency projects."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

from gl_token_scope.errors import DependencyProcessingError
from gl_token_scope.logging_utils import format_error
from gl_token_scope.memo import AsyncMemo
from gl_token_scope.models import DEFAULT_CONCURRENCY, AllowlistDecision, DependencyFailure

if TYPE_CHECKING:
    from gl_token_scope.client import GitLabClient


class AllowlistReconciler:
    """
    Ensures a source project is present in the CI job token allowlist of each dependency.

    Dependency project IDs and allowlist checks are memoized for the lifetime of
    the reconciler, so a dependency shared by many source projects in one run is
    resolved once and each (source, dependency) pair is checked once. At most
    ``concurrency`` dependencies are processed at a time.
    """

    def __init__(self, client: GitLabClient, concurrency: int = DEFAULT_CONCURRENCY):
        self.client = client
        self.concurrency = max(1, concurrency)
        self.logger = logging.getLogger("gl-token-scope")
        self._project_ids: AsyncMemo[str, int] = AsyncMemo()
        self._allowlisted: AsyncMemo[tuple[int, int], bool] = AsyncMemo()
        # Keyed by resolved ID so two spellings of one project share a single write
        self._writes: AsyncMemo[tuple[int, int], bool] = AsyncMemo()
        self._semaphore = asyncio.Semaphore(self.concurrency)

    async def reconcile(
        self,
        dependencies: Iterable[str],
        source_project_id: int,
        dry_run: bool = False,
    ) -> list[AllowlistDecision]:
        """
        Allowlist ``source_project_id`` in every dependency that does not already allow it.

        With ``dry_run`` the checks run but nothing is written. Every dependency is
        attempted; if any of them fail a DependencyProcessingError listing all
        failures is raised after the rest have been applied.
        """
        unique = list(dict.fromkeys(dependencies))
        decisions: list[AllowlistDecision] = []
        failures: list[DependencyFailure] = []

        async def _run_one(dependency: str) -> None:
            async with self._semaphore:
                try:
                    decisions.append(await self._reconcile_one(dependency, source_project_id, dry_run))
                except Exception as exc:
                    self.logger.error(
                        f"Failed to allowlist project in {dependency}: {format_error(exc)}",
                        extra={"project_id": source_project_id},
                    )
                    failures.append(DependencyFailure(dependency=dependency, cause=exc))

        await asyncio.gather(*(_run_one(dependency) for dependency in unique))

        if failures:
            summary = "; ".join(f"{failure.dependency}: {format_error(failure.cause)}" for failure in failures)
            noun = "dependency" if len(failures) == 1 else "dependencies"
            raise DependencyProcessingError(
                source_project_id,
                failures,
                f"Failed to process {len(failures)} {noun} for project ID {source_project_id}: {summary}",
            )
        return decisions

    async def _reconcile_one(self, dependency: str, source_project_id: int, dry_run: bool) -> AllowlistDecision:
        dependency_id = await self.resolve_project_id(dependency)
        key = (source_project_id, dependency_id)
        already_allowed = await self._allowlisted.get(
            key, lambda: asyncio.to_thread(self.client.is_project_whitelisted, source_project_id, dependency_id)
        )

        if already_allowed:
            self.logger.info(
                f"Project is already allowlisted in {dependency}, skipping...", extra={"project_id": source_project_id}
            )
            return AllowlistDecision(dependency, dependency_id, source_project_id, already_allowed=True)

        if dry_run:
            self.logger.info(
                f"[DRY-RUN] Would allowlist project in {dependency}", extra={"project_id": source_project_id}
            )
            return AllowlistDecision(dependency, dependency_id, source_project_id, already_allowed=False)

        await self._writes.get(key, lambda: self._allow(source_project_id, dependency_id))
        self._allowlisted.set(key, True)
        self.logger.info(
            f"Project was allowlisted in {dependency} successfully", extra={"project_id": source_project_id}
        )
        return AllowlistDecision(dependency, dependency_id, source_project_id, already_allowed=False, applied=True)

    async def _allow(self, source_project_id: int, dependency_id: int) -> bool:
        await asyncio.to_thread(self.client.allow_ci_job_token_access, dependency_id, source_project_id)
        return True

    async def resolve_project_id(self, dependency: str) -> int:
        return await self._project_ids.get(
            dependency, lambda: asyncio.to_thread(self.client.get_project_id, dependency)
        )
