"""Tests for AllowlistReconciler: idempotency, memoization and failure isolation."""

import asyncio

import pytest

from conftest import FakeGitLabClient
from gl_token_scope.errors import DependencyProcessingError, GitLabApiError
from gl_token_scope.reconciler import AllowlistReconciler


@pytest.fixture
def client():
    client = FakeGitLabClient()
    client.add_project(1, "team/app")
    client.add_project(20, "team/lib")
    client.add_project(21, "team/common")
    return client


class TestReconcile:
    def test_adds_source_to_missing_allowlists(self, client):
        decisions = asyncio.run(AllowlistReconciler(client).reconcile(["team/lib", "team/common"], 1))

        assert client.allowlists == {20: {1}, 21: {1}}
        assert sorted(d.dependency for d in decisions if d.applied) == ["team/common", "team/lib"]

    def test_already_allowlisted_performs_no_write(self, client):
        client.allowlists = {20: {1}, 21: {1, 5}}

        decisions = asyncio.run(AllowlistReconciler(client).reconcile(["team/lib", "team/common"], 1))

        assert client.count("allow_ci_job_token_access") == 0
        assert all(d.already_allowed for d in decisions)

    def test_rerun_is_idempotent(self, client):
        asyncio.run(AllowlistReconciler(client).reconcile(["team/lib"], 1))
        asyncio.run(AllowlistReconciler(client).reconcile(["team/lib"], 1))

        assert client.count("allow_ci_job_token_access") == 1

    def test_duplicate_dependencies_processed_once(self, client):
        asyncio.run(AllowlistReconciler(client).reconcile(["team/lib", "team/lib", "team/lib"], 1))

        assert client.count("get_project_id") == 1
        assert client.count("allow_ci_job_token_access") == 1

    def test_spellings_of_same_project_written_once(self, client):
        # GitLab resolves paths case-insensitively
        client.projects["Team/Lib"] = client.projects["team/lib"]

        decisions = asyncio.run(AllowlistReconciler(client).reconcile(["Team/Lib", "team/lib"], 1))

        assert client.count("get_project_id") == 2
        assert client.count("allow_ci_job_token_access") == 1
        assert client.allowlists == {20: {1}}
        assert len(decisions) == 2

    def test_dry_run_checks_without_writing(self, client):
        client.allowlists = {21: {1}}

        decisions = asyncio.run(AllowlistReconciler(client).reconcile(["team/lib", "team/common"], 1, dry_run=True))

        assert client.count("allow_ci_job_token_access") == 0
        by_dependency = {d.dependency: d for d in decisions}
        assert by_dependency["team/lib"].already_allowed is False
        assert by_dependency["team/lib"].applied is False
        assert by_dependency["team/common"].already_allowed is True


class TestMemoization:
    def test_lookups_shared_across_source_projects(self, client):
        client.add_project(2, "team/other")
        reconciler = AllowlistReconciler(client)

        async def scenario():
            await reconciler.reconcile(["team/lib"], 1)
            await reconciler.reconcile(["team/lib"], 2)
            await reconciler.reconcile(["team/lib"], 1)

        asyncio.run(scenario())

        assert client.count("get_project_id") == 1
        # One check per (source, dependency) pair
        assert client.count("is_project_whitelisted") == 2
        assert client.count("allow_ci_job_token_access") == 2
        assert client.allowlists[20] == {1, 2}

    def test_concurrent_requests_for_same_dependency_share_lookup(self):
        client = FakeGitLabClient(delay=0.02)
        client.add_project(20, "team/lib")
        reconciler = AllowlistReconciler(client, concurrency=5)

        async def scenario():
            await asyncio.gather(*(reconciler.reconcile(["team/lib"], source) for source in (1, 2, 3)))

        asyncio.run(scenario())

        assert client.count("get_project_id") == 1
        assert client.allowlists[20] == {1, 2, 3}


class TestFailureIsolation:
    def test_one_failure_does_not_stop_siblings(self, client):
        client.failing[("allow_ci_job_token_access", 20)] = GitLabApiError(
            "forbidden", method="POST", endpoint="/projects/20/job_token_scope/allowlist", status_code=403
        )

        with pytest.raises(DependencyProcessingError) as exc_info:
            asyncio.run(AllowlistReconciler(client).reconcile(["team/lib", "team/common", "team/missing"], 1))

        error = exc_info.value
        assert error.source_project_id == 1
        assert sorted(f.dependency for f in error.failures) == ["team/lib", "team/missing"]
        assert "Failed to process 2 dependencies for project ID 1" in str(error)
        # Successful sibling applied regardless
        assert client.allowlists == {21: {1}}

    def test_single_failure_message(self, client):
        with pytest.raises(DependencyProcessingError, match="Failed to process 1 dependency for project ID 1"):
            asyncio.run(AllowlistReconciler(client).reconcile(["team/missing"], 1))

    def test_bounded_concurrency(self):
        client = FakeGitLabClient(delay=0.02)
        in_flight = []
        peak = []
        original = client.get_project_id

        def tracking_get_project_id(path):
            in_flight.append(path)
            peak.append(len(in_flight))
            try:
                return original(path)
            finally:
                in_flight.remove(path)

        client.get_project_id = tracking_get_project_id
        dependencies = [f"team/dep-{i}" for i in range(8)]
        for i, path in enumerate(dependencies):
            client.add_project(100 + i, path)

        asyncio.run(AllowlistReconciler(client, concurrency=2).reconcile(dependencies, 1))

        assert max(peak) <= 2
        assert client.count("allow_ci_job_token_access") == 8
