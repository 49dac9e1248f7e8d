"""Upload progress: the aggregate computation and a Rich display.

* **Aggregate** -- unweighted mean of per-file percentages, recomputed from
  scratch on every callback so it is safe in any interleaving
* **Per file** -- one bar per transfer, advanced in bytes
* **Status text** -- last file touched and failures
"""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from sdrive.models import PendingUpload


def aggregate_progress(uploads: Iterable[PendingUpload]) -> float:
    """Mean of each file's percentage complete, 0-100.

    Not byte-weighted: one 1 GB file at 0% and nine 1 KB files at 100%
    yields 90.0.
    """
    percents = [u.percent_complete for u in uploads]
    if not percents:
        return 0.0
    return sum(percents) / len(percents)


class UploadProgressTracker:
    """Rich progress display for one upload batch.

    Usage::

        tracker = UploadProgressTracker()
        with tracker:
            tracker.add_file("a.txt", 1024)
            tracker.file_progress("a.txt", 512, 33.3)
            tracker.file_uploaded("a.txt")

    The orchestrator drives it through the three ``file_*`` hooks and
    :meth:`overall`; nothing here reads upload state directly.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._overall_task: TaskID | None = None
        self._file_tasks: dict[str, TaskID] = {}
        self._stats: dict[str, int] = {"succeeded": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._overall_task = self._progress.add_task(
            "[green]Overall", total=100, status="negotiating..."
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # File-level events
    # ------------------------------------------------------------------

    def add_file(self, name: str, total_bytes: int) -> None:
        """Create a per-file bar once the file has a ticket."""
        self._file_tasks[name] = self._progress.add_task(
            f"[blue]{_truncate_name(name)}",
            total=max(total_bytes, 1),
            status="uploading",
        )

    def file_progress(self, name: str, bytes_transferred: int, overall_percent: float) -> None:
        task = self._file_tasks.get(name)
        if task is not None:
            self._progress.update(task, completed=bytes_transferred)
        self.overall(overall_percent)

    def file_uploaded(self, name: str) -> None:
        self._stats["succeeded"] += 1
        task = self._file_tasks.get(name)
        if task is not None:
            total = self._progress.tasks[task].total or 0
            self._progress.update(task, completed=total, status="[green]done[/green]")
        self._set_status(_truncate_name(name))

    def file_failed(self, name: str, error: str) -> None:
        self._stats["failed"] += 1
        task = self._file_tasks.get(name)
        if task is not None:
            self._progress.update(task, status=f"[red]FAIL[/red] {error}")
        self._set_status(f"[red]FAIL[/red] {_truncate_name(name)}")

    def overall(self, percent: float) -> None:
        if self._overall_task is not None:
            self._progress.update(self._overall_task, completed=percent)

    def _set_status(self, status: str) -> None:
        if self._overall_task is not None:
            self._progress.update(self._overall_task, status=status)

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate_name(name: str, max_len: int = 40) -> str:
    """Truncate a file name for display, keeping its tail."""
    if len(name) <= max_len:
        return name
    return "..." + name[-(max_len - 3) :]
