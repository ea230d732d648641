"""Tests for DependencyScanner."""

import asyncio
import json

import pytest

from conftest import FakeGitLabClient
from gl_token_scope.errors import DependencyProcessingError, GitLabApiError
from gl_token_scope.processors import ProcessorRegistry
from gl_token_scope.processors.base import FileProcessor
from gl_token_scope.scanner import DependencyScanner, scan_failure_error

GO_MOD = "module x\n\nrequire (\n\tgitlab.example.com/team/lib v1.0.0\n\tgitlab.example.com/team/common v1.0.0\n)\n"
COMPOSER_JSON = json.dumps({"repositories": {"lib": {"type": "vcs", "url": "https://gitlab.example.com/team/lib.git"}}})


def scan(client, project_id, monorepo=False, registry=None):
    return asyncio.run(DependencyScanner(client, registry).scan(project_id, monorepo))


class TestScan:
    def test_missing_project_returns_none(self, fake_client):
        assert scan(fake_client, 404) is None
        assert fake_client.count("find_dependency_files") == 0

    def test_other_project_errors_propagate(self, fake_client):
        fake_client.failing[("get_project", "1")] = GitLabApiError("boom", method="GET", endpoint="/projects/1", status_code=500)

        with pytest.raises(GitLabApiError):
            scan(fake_client, 1)

    def test_collects_unique_dependencies_across_files(self, fake_client):
        fake_client.add_project(1, "team/app", files={"go.mod": GO_MOD, "composer.json": COMPOSER_JSON})

        result = scan(fake_client, 1)

        assert result.project_name == "team/app"
        assert result.default_branch == "main"
        assert result.dependencies == ("team/lib", "team/common")
        assert result.failures == ()

    def test_same_project_from_different_manifests_deduplicated(self, fake_client):
        go_mod = "require (\n\tgitlab.example.com/team/lib.git v1.0.0\n)\n"
        fake_client.add_project(1, "team/app", files={"go.mod": go_mod, "composer.json": COMPOSER_JSON})

        assert scan(fake_client, 1).dependencies == ("team/lib",)

    def test_monorepo_includes_nested_manifests(self, fake_client):
        fake_client.add_project(1, "team/mono", files={"go.mod": GO_MOD, "web/composer.json": COMPOSER_JSON.replace("lib", "web-lib")})

        assert scan(fake_client, 1).dependencies == ("team/lib", "team/common")
        assert scan(fake_client, 1, monorepo=True).dependencies == ("team/lib", "team/common", "team/web-lib")

    def test_empty_content_contributes_nothing(self, fake_client):
        fake_client.add_project(1, "team/app", files={"go.mod": ""})

        result = scan(fake_client, 1)

        assert result.dependencies == ()
        assert result.failures == ()

    def test_failed_file_isolated(self, fake_client):
        fake_client.add_project(1, "team/app", files={"go.mod": GO_MOD, "composer.json": COMPOSER_JSON})
        fake_client.failing[("get_file_content", (1, "go.mod"))] = GitLabApiError(
            "forbidden", method="GET", endpoint="/files/go.mod", status_code=403
        )

        result = scan(fake_client, 1)

        assert result.dependencies == ("team/lib",)
        assert [failure.dependency for failure in result.failures] == ["go.mod"]

        error = scan_failure_error(result)
        assert isinstance(error, DependencyProcessingError)
        assert error.source_project_id == 1
        assert "go.mod: forbidden" in str(error)

    def test_tree_not_found_is_soft(self, fake_client):
        fake_client.add_project(1, "team/app")
        fake_client.failing[("find_dependency_files", 1)] = GitLabApiError(
            "missing", method="GET", endpoint="/tree", status_code=404
        )

        result = scan(fake_client, 1)

        assert result is not None
        assert result.dependencies == ()

    def test_empty_repository_skips_tree(self, fake_client):
        fake_client.add_project(1, "team/empty", default_branch=None)

        assert scan(fake_client, 1).dependencies == ()
        assert fake_client.count("find_dependency_files") == 0

    def test_processors_shared_within_scan(self, fake_client):
        created = []

        class CountingProcessor(FileProcessor):
            async def extract_dependencies(self, file_content, gitlab_url, project_id):
                return [file_content.strip()]

        def factory(resolver):
            created.append(resolver)
            return CountingProcessor()

        registry = ProcessorRegistry(with_defaults=False)
        registry.register("go.mod", factory)
        fake_client.add_project(1, "team/mono", files={"a/go.mod": "team/a", "b/go.mod": "team/b", "composer.json": "{}"})

        result = scan(fake_client, 1, monorepo=True, registry=registry)

        assert result.dependencies == ("team/a", "team/b")
        assert len(created) == 1
        # Unregistered manifests are never fetched
        assert fake_client.count("get_file_content") == 2

    def test_scan_result_is_immutable(self, fake_client):
        fake_client.add_project(1, "team/app", files={"go.mod": GO_MOD})
        result = scan(fake_client, 1)

        with pytest.raises(AttributeError):
            result.dependencies = ()


class TestScanFailureError:
    def test_no_failures(self, fake_client):
        fake_client.add_project(1, "team/app", files={})
        assert scan_failure_error(scan(fake_client, 1)) is None
