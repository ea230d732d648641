"""Base class and registry for dependency manifest processors."""

from __future__ import annotations

import logging
import posixpath
import urllib.parse
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from gl_token_scope.processors.resolver import ProjectReferenceResolver

ProcessorFactory = Callable[["ProjectReferenceResolver"], "FileProcessor"]


# ---------------------------------------------------------------------------
# Processor Base Class
# ---------------------------------------------------------------------------


class FileProcessor(ABC):
    """Extracts GitLab project paths referenced by one kind of dependency manifest."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("gl-token-scope")

    @abstractmethod
    async def extract_dependencies(self, file_content: str, gitlab_url: str, project_id: int) -> list[str]:
        """
        Return the ``path_with_namespace`` of every dependency hosted on ``gitlab_url``.

        Malformed input is reported against ``project_id`` and yields an empty list.
        """
        ...

    def _log(self, project_id: int, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, message, extra={"project_id": project_id})


# ---------------------------------------------------------------------------
# Processor Registry
# ---------------------------------------------------------------------------


class ProcessorRegistry:
    """
    Maps manifest basenames to processor factories.

    Example:
        registry = ProcessorRegistry()          # go.mod, composer.json, ...
        registry.register("Cargo.lock", lambda resolver: CargoProcessor())
        processor = registry.create("services/api/go.mod", resolver)
    """

    def __init__(self, with_defaults: bool = True) -> None:
        self._factories: dict[str, ProcessorFactory] = {}
        if with_defaults:
            register_default_processors(self)

    def register(self, filename: str, factory: ProcessorFactory) -> None:
        self._factories[filename] = factory

    def reset(self) -> None:
        """Drop custom registrations and restore the default processors."""
        self._factories.clear()
        register_default_processors(self)

    def supports(self, file_path: str) -> bool:
        return posixpath.basename(file_path) in self._factories

    def create(self, file_path: str, resolver: ProjectReferenceResolver) -> FileProcessor | None:
        factory = self._factories.get(posixpath.basename(file_path))
        if factory is None:
            logging.getLogger("gl-token-scope").debug(f"No processor available for file type: {file_path}")
            return None
        return factory(resolver)

    @property
    def supported_files(self) -> list[str]:
        return sorted(self._factories)


def register_default_processors(registry: ProcessorRegistry) -> None:
    from gl_token_scope.processors.composer import ComposerProcessor
    from gl_token_scope.processors.composer_lock import ComposerLockProcessor
    from gl_token_scope.processors.go_mod import GoModProcessor
    from gl_token_scope.processors.npm import NpmProcessor

    registry.register("go.mod", lambda resolver: GoModProcessor())
    registry.register("composer.json", lambda resolver: ComposerProcessor(resolver))
    registry.register("composer.lock", lambda resolver: ComposerLockProcessor(resolver))
    registry.register("package-lock.json", lambda resolver: NpmProcessor(resolver))


# ---------------------------------------------------------------------------
# URL helpers shared by processors
# ---------------------------------------------------------------------------


def strip_scheme(gitlab_url: str) -> str:
    """``https://gitlab.example.com/`` -> ``gitlab.example.com``"""
    url = gitlab_url.strip().rstrip("/")
    for scheme in ("https://", "http://"):
        if url.lower().startswith(scheme):
            return url[len(scheme) :]
    return url


def extract_host(url: str) -> str:
    """Lower-cased hostname of ``url``, tolerating a missing scheme."""
    parsed = urllib.parse.urlparse(url if "://" in url else f"https://{url}")
    return (parsed.hostname or "").lower()


def normalize_project_path(path: str) -> str | None:
    """
    Turn a URL path into a ``namespace/project`` path.

    Drops leading slashes, anything from a ``/-/`` marker on (archives, blobs),
    a trailing ``.git`` and URL encoding.
    """
    normalized = path.lstrip("/")
    marker = normalized.find("/-/")
    if marker != -1:
        normalized = normalized[:marker]
    normalized = normalized.rstrip("/")
    if normalized.lower().endswith(".git"):
        normalized = normalized[:-4]
    if not normalized:
        return None
    return urllib.parse.unquote(normalized)


def is_group_package_endpoint(path: str) -> bool:
    lowered = path.lower()
    return lowered.startswith("/api/v4/groups/") or lowered.startswith("/api/v4/group/")


def split_remote(url: str) -> tuple[str, str] | None:
    """
    Split an HTTP(S) or scp-like SSH remote into ``(host, path)``.

    ``https://gitlab.example.com/group/app.git`` -> ``("gitlab.example.com", "/group/app.git")``
    ``git@gitlab.example.com:group/app.git`` -> ``("gitlab.example.com", "group/app.git")``
    """
    url = url.strip()
    if "://" in url:
        parsed = urllib.parse.urlparse(url)
        if not parsed.hostname:
            return None
        return parsed.hostname.lower(), parsed.path

    user_host, sep, path = url.partition(":")
    if not sep or "@" not in user_host or not path:
        return None
    return user_host.rsplit("@", 1)[1].lower(), path


def extract_project_path(url: str, host: str) -> str | None:
    """Project path of a repository URL on ``host``; API URLs are not project paths."""
    remote = split_remote(url)
    if remote is None or remote[0] != host:
        return None
    normalized = normalize_project_path(remote[1])
    if not normalized or normalized.lower().startswith("api/v4/"):
        return None
    return normalized
