"""Dry-run YAML report generation."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Iterable

from gl_token_scope.logging_utils import format_error
from gl_token_scope.models import ProjectReportEntry


def _quote(value: str) -> str:
    # A JSON string is a valid YAML double-quoted scalar
    return json.dumps(value)


def build_yaml_report(entries: Iterable[ProjectReportEntry]) -> str:
    """
    Render report entries as YAML mapping project names to dependency lists.

    Projects without dependencies are left out; an empty report is ``{}``.
    """
    blocks = []
    for entry in entries:
        if not entry.dependencies:
            continue
        lines = [f"{_quote(entry.project_name)}:"]
        lines.extend(f"  - {_quote(dependency)}" for dependency in entry.dependencies)
        blocks.append("\n".join(lines))

    if not blocks:
        return "{}\n"
    return "\n".join(blocks) + "\n"


def write_yaml_report(entries: Iterable[ProjectReportEntry], file_path: str | Path) -> None:
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_yaml_report(entries), encoding="utf-8")


class DryRunReporter:
    """
    Keeps a dry-run report file up to date as projects complete.

    Each update rewrites the whole file. Writes go through a single lock so
    concurrent appends land in order and never interleave. A write failure
    disables further writes but never fails the run.
    """

    def __init__(self, report_path: str | Path):
        self.report_path = Path(report_path)
        self.entries: list[ProjectReportEntry] = []
        self.ready = False
        self.logger = logging.getLogger("gl-token-scope")
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(write_yaml_report, [], self.report_path)
            except OSError as e:
                self.logger.error(f"Failed to initialize dry run report at {self.report_path}: {format_error(e)}")
                return
            self.ready = True
            self.logger.info(f"Dry run report initialized at {self.report_path}")

    async def append(self, entry: ProjectReportEntry) -> None:
        async with self._lock:
            self.entries.append(entry)
            if not self.ready:
                return
            snapshot = list(self.entries)
            try:
                await asyncio.to_thread(write_yaml_report, snapshot, self.report_path)
            except OSError as e:
                self.logger.error(f"Failed to update dry run report at {self.report_path}: {format_error(e)}")
                self.ready = False
                return
            self.logger.info(f"Dry run report updated with {entry.project_name}")

    async def finalize(self) -> None:
        async with self._lock:
            if not self.ready:
                self.logger.warning(
                    f"Dry run report could not be generated at {self.report_path} due to earlier errors."
                )
                return
            self.logger.info(f"Dry run report available at {self.report_path}")
