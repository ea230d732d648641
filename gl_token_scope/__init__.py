"""
gl-token-scope: Allowlist CI job token access between GitLab projects and their dependencies.

Scans a project's dependency manifests (go.mod, composer.json, composer.lock,
package-lock.json) for projects hosted on the same GitLab instance, then adds
the project to the CI/CD job token allowlist of each of those dependencies.
Runs against a single project or every project visible to the token, with a
dry-run mode that writes a YAML preview report.

Environment:
    GITLAB_TOKEN - GitLab Personal Access Token (required)
    GITLAB_URL   - GitLab instance URL (default: https://gitlab.com)
"""

from gl_token_scope.cli import main

__version__ = "0.1.0"
__all__ = ["main", "__version__"]
