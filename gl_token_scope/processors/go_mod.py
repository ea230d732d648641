"""Go module (go.mod) processor."""

from __future__ import annotations

from gl_token_scope.processors.base import FileProcessor, normalize_project_path, strip_scheme


class GoModProcessor(FileProcessor):
    """Extracts GitLab-hosted modules from the ``require ( ... )`` blocks of a go.mod file."""

    async def extract_dependencies(self, file_content: str, gitlab_url: str, project_id: int) -> list[str]:
        host = strip_scheme(gitlab_url)
        dependencies: list[str] = []
        in_require_block = False

        # Block scanning is deliberately loose: nesting and unterminated blocks are not validated
        for line in file_content.splitlines():
            if line.startswith("require ("):
                in_require_block = True
                continue
            if line.startswith(")"):
                in_require_block = False
                continue
            if not in_require_block:
                continue

            tokens = line.split()
            if not tokens:
                continue
            module = tokens[0]
            if host not in module:
                continue
            path = normalize_project_path(module.replace(f"{host}/", "", 1))
            if path is None:
                continue
            dependencies.append(path)

        return dependencies
