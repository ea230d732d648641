"""Terminal progress display for paginated listings."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TaskProgressColumn, TextColumn


class ProgressReporter:
    """
    Shows a spinner while the page total is unknown and a bar once GitLab
    reports ``x-total-pages``. When the console is not a terminal (CI logs),
    progress goes to the logger at DEBUG instead.

    Instances are callable as ``(current, total)`` so they can be passed
    straight to ``GitLabClient.paginate``; calls may come from a worker thread.
    """

    def __init__(self, label: str, console: Console | None = None):
        self.label = label
        self.console = console or Console(stderr=True)
        self.enabled = self.console.is_terminal
        self.current = 0
        self.total = 0
        self.logger = logging.getLogger("gl-token-scope")
        self._progress: Progress | None = None
        self._task: TaskID | None = None

    def __call__(self, current: int, total: int) -> None:
        self.update(current, total)

    def update(self, current: int, total: int = 0) -> None:
        self.current = current
        if total > 0:
            self.total = total

        if not self.enabled:
            suffix = f"{self.current}/{self.total}" if self.total else str(self.current)
            self.logger.debug(f"{self.label}: {suffix}")
            return

        if self._progress is None:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("page {task.completed:.0f}"),
                console=self.console,
            )
            self._progress.start()
            self._task = self._progress.add_task(self.label, total=None)
        self._progress.update(self._task, completed=self.current, total=self.total or None)

    def finish(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
