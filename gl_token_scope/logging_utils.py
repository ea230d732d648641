"""Logging utilities for gl-token-scope."""

from __future__ import annotations

import json
import logging
import sys
import traceback

from gl_token_scope.errors import GitLabApiError

LOGGER_NAME = "gl-token-scope"

_debug_errors = False


class StructuredFormatter(logging.Formatter):
    """Formatter that can emit JSON lines when configured."""

    def __init__(self, json_mode: bool = False):
        super().__init__()
        self.json_mode = json_mode

    def format(self, record: logging.LogRecord) -> str:
        project_id = getattr(record, "project_id", None)
        if self.json_mode:
            payload = {"level": record.levelname, "message": record.getMessage()}
            if project_id is not None:
                payload["project_id"] = project_id
            return json.dumps(payload)
        prefix = f"[project {project_id}] " if project_id is not None else ""
        return f"[{record.levelname:<7}] {prefix}{record.getMessage()}"


def setup_logging(json_mode: bool = False, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter(json_mode=json_mode))
    logger.addHandler(handler)
    return logger


def set_debug_errors(enabled: bool) -> None:
    """Include full tracebacks in format_error() output."""
    global _debug_errors
    _debug_errors = enabled


def format_error(error: BaseException) -> str:
    """Render an exception as a stable, human-readable message."""
    if _debug_errors:
        return "".join(traceback.format_exception(type(error), error, error.__traceback__)).rstrip()
    if isinstance(error, GitLabApiError):
        return str(error)
    return str(error) or type(error).__name__
