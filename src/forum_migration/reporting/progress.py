"""Rich progress display for migration runs.

One progress task is reused for every phase: a phase change updates its
description and resets its counters instead of creating a new bar, so the
display stays a single line.
"""

from datetime import datetime

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from forum_migration.reporting.colors import MigrationColors
from forum_migration.reporting.events import EventLevel, MigrationObserver, RunSummary


class RichProgressObserver(MigrationObserver):
    """Observer rendering the current phase as a rich progress bar.

    Usage:
        observer = RichProgressObserver()
        bus.subscribe(observer)
        with observer:
            await coordinator.run(flush=False)
    """

    def __init__(self, console: Console | None = None, enabled: bool = True):
        self.console = console or Console(stderr=True)
        self.enabled = enabled
        self.progress = Progress(
            SpinnerColumn(style=MigrationColors.SPINNER),
            TextColumn("[bold]{task.description}"),
            BarColumn(complete_style=MigrationColors.PROGRESS),
            TaskProgressColumn(),
            TextColumn("[{task.fields[color]}]{task.completed:.0f}/{task.total:.0f}"),
            TimeElapsedColumn(),
            console=self.console,
            disable=not enabled,
        )
        self._task: TaskID | None = None
        self.phases_seen = 0

    def __enter__(self) -> "RichProgressObserver":
        self.progress.start()
        return self

    def __exit__(self, *exc) -> None:
        self.progress.stop()

    def on_phase_changed(self, phase: str, timestamp: datetime) -> None:
        self.phases_seen += 1
        description = f"{self.phases_seen:>2}. {phase}"
        if self._task is None:
            self._task = self.progress.add_task(
                description, total=1, completed=0, color=MigrationColors.RESOURCE_COUNT
            )
        else:
            self.progress.update(self._task, description=description, total=1, completed=0)

    def on_progress(self, count: int, total: int, percentage: float) -> None:
        if self._task is None:
            return
        self.progress.update(self._task, total=max(total, 1), completed=count)

    def on_log(self, level: EventLevel, message: str, context: dict) -> None:
        if level is EventLevel.SUCCESS and self.enabled:
            self.progress.console.print(f"[{MigrationColors.SUCCESS}]✓[/] {message}")

    def on_run_complete(self, summary: RunSummary) -> None:
        if self._task is not None:
            self.progress.update(self._task, description="done", total=1, completed=1)
        if self.enabled:
            self.progress.console.print(
                f"[{MigrationColors.COMPLETE}]Migration complete:[/] "
                f"{summary.total_imported} imported, {summary.total_skipped} skipped"
            )

    def on_error(self, error: BaseException, phase: str | None) -> None:
        if self.enabled:
            self.progress.console.print(
                f"[{MigrationColors.ERROR}]Migration failed in {phase or 'unknown phase'}:[/] {error}"
            )
