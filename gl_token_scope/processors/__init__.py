"""Dependency manifest processors for gl-token-scope."""

from gl_token_scope.processors.base import FileProcessor, ProcessorRegistry, register_default_processors
from gl_token_scope.processors.composer import ComposerProcessor
from gl_token_scope.processors.composer_lock import ComposerLockProcessor
from gl_token_scope.processors.go_mod import GoModProcessor
from gl_token_scope.processors.npm import NpmProcessor
from gl_token_scope.processors.resolver import ProjectReferenceResolver

__all__ = [
    "FileProcessor",
    "ProcessorRegistry",
    "register_default_processors",
    "ProjectReferenceResolver",
    "GoModProcessor",
    "ComposerProcessor",
    "ComposerLockProcessor",
    "NpmProcessor",
]
