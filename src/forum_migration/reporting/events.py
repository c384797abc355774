"""Migration event bus.

The coordinator, importers and resolver publish their lifecycle through an
``EventBus`` injected at construction. Observers subscribe to it by
implementing ``MigrationObserver``:

* ``phase_changed``: a new phase started;
* ``progress``: throttled item progress within the current phase;
* ``log``: leveled messages (warn, log, success, error);
* ``run_complete`` / ``error``: end of run.

Log events are routed by level: levels listed in ``console_levels`` are
mirrored to the console sink (structlog), levels in ``subscriber_levels``
reach the subscribed observers.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from forum_migration.client.exceptions import EventChannelError
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


class EventLevel(str, Enum):
    WARN = "warn"
    LOG = "log"
    SUCCESS = "success"
    ERROR = "error"


ALL_LEVELS = frozenset(level.value for level in EventLevel)


@dataclass
class SkippedItem:
    """An item a phase gave up on, kept for manual follow-up."""

    phase: str
    entity_type: str
    source_id: str | None
    reason: str


@dataclass
class PhaseStats:
    """Counters of one phase."""

    phase: str
    total: int = 0
    imported: int = 0
    already_imported: int = 0
    skipped: int = 0
    failed: int = 0
    counters: dict[str, int] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    status: str = "pending"

    def bump(self, counter: str, amount: int = 1) -> None:
        """Increment a policy-specific counter such as ``self_voted``."""
        self.counters[counter] = self.counters.get(counter, 0) + amount

    @property
    def duration_seconds(self) -> float:
        if not self.started_at or not self.finished_at:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "status": self.status,
            "total": self.total,
            "imported": self.imported,
            "already_imported": self.already_imported,
            "skipped": self.skipped,
            "failed": self.failed,
            "counters": dict(self.counters),
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class RunSummary:
    """Outcome of one run."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    flushed: bool = False
    resumed: bool = False
    phases: dict[str, PhaseStats] = field(default_factory=dict)
    skipped_phases: list[str] = field(default_factory=list)
    skipped_items: list[SkippedItem] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    success: bool = False

    def phase(self, name: str) -> PhaseStats:
        """Stats of a phase, created on first access."""
        if name not in self.phases:
            self.phases[name] = PhaseStats(phase=name)
        return self.phases[name]

    @property
    def total_imported(self) -> int:
        return sum(stats.imported for stats in self.phases.values())

    @property
    def total_skipped(self) -> int:
        return sum(stats.skipped for stats in self.phases.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "flushed": self.flushed,
            "resumed": self.resumed,
            "success": self.success,
            "total_imported": self.total_imported,
            "total_skipped": self.total_skipped,
            "phases": [stats.to_dict() for stats in self.phases.values()],
            "skipped_phases": list(self.skipped_phases),
            "skipped_items": [
                {
                    "phase": item.phase,
                    "entity_type": item.entity_type,
                    "source_id": item.source_id,
                    "reason": item.reason,
                }
                for item in self.skipped_items
            ],
            "errors": list(self.errors),
        }


class MigrationObserver:
    """Base observer; every hook is a no-op so subclasses override what they need."""

    def on_phase_changed(self, phase: str, timestamp: datetime) -> None:
        pass

    def on_progress(self, count: int, total: int, percentage: float) -> None:
        pass

    def on_log(self, level: EventLevel, message: str, context: dict[str, Any]) -> None:
        pass

    def on_run_complete(self, summary: RunSummary) -> None:
        pass

    def on_error(self, error: BaseException, phase: str | None) -> None:
        pass


class LoggingObserver(MigrationObserver):
    """Console sink mirroring events to structlog."""

    _LOG_METHODS = {
        EventLevel.WARN: "warning",
        EventLevel.LOG: "info",
        EventLevel.SUCCESS: "info",
        EventLevel.ERROR: "error",
    }

    def __init__(self, event_logger=None):
        self.logger = event_logger or get_logger("forum_migration.events")

    def on_phase_changed(self, phase: str, timestamp: datetime) -> None:
        self.logger.info("phase_changed", phase=phase, timestamp=timestamp.isoformat())

    def on_progress(self, count: int, total: int, percentage: float) -> None:
        self.logger.debug("progress", count=count, total=total, percentage=round(percentage, 2))

    def on_log(self, level: EventLevel, message: str, context: dict[str, Any]) -> None:
        method = getattr(self.logger, self._LOG_METHODS[level])
        method(message, event_level=level.value, **context)

    def on_run_complete(self, summary: RunSummary) -> None:
        self.logger.info(
            "run_complete",
            imported=summary.total_imported,
            skipped=summary.total_skipped,
            phases=len(summary.phases),
        )

    def on_error(self, error: BaseException, phase: str | None) -> None:
        self.logger.error("run_failed", phase=phase, error=str(error))


class EventBus:
    """Fans events out to a console sink and subscribed observers.

    Usage:
        bus = EventBus(progress_interval=0.1)
        bus.subscribe(RichProgressObserver())
        bus.phase_changed("import_accounts")
        bus.progress(10, 200)
        bus.warn("item_skipped", source_id="7", reason="missing container")
    """

    def __init__(
        self,
        observers: list[MigrationObserver] | None = None,
        progress_interval: float = 0.1,
        console_levels: list[str] | None = None,
        subscriber_levels: list[str] | None = None,
        console: MigrationObserver | None = None,
    ):
        self.observers: list[MigrationObserver] = list(observers or [])
        self.progress_interval = progress_interval
        self.console_levels = set(ALL_LEVELS if console_levels is None else console_levels)
        self.subscriber_levels = set(
            ALL_LEVELS if subscriber_levels is None else subscriber_levels
        )
        self.console = console or LoggingObserver()
        self.current_phase: str | None = None
        self._last_percentage = 0.0

    def subscribe(self, observer: MigrationObserver) -> None:
        self.observers.append(observer)

    def unsubscribe(self, observer: MigrationObserver) -> None:
        if observer in self.observers:
            self.observers.remove(observer)

    def _dispatch(self, hook: str, *args: Any, console: bool = True, subscribers: bool = True):
        targets: list[MigrationObserver] = []
        if console:
            targets.append(self.console)
        if subscribers:
            targets.extend(self.observers)

        for observer in targets:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                raise EventChannelError(
                    f"Observer {type(observer).__name__} failed in {hook}: {e}"
                ) from e

    def phase_changed(self, phase: str) -> None:
        """Announce a new phase; resets the progress throttle."""
        self.current_phase = phase
        self._last_percentage = 0.0
        self._dispatch("on_phase_changed", phase, datetime.now(UTC))

    def progress(self, count: int, total: int) -> bool:
        """Report progress, throttled.

        An event is emitted at 0%, at 100% and whenever the percentage has
        grown by at least ``progress_interval`` since the last emission.

        Returns:
            True if an event was emitted
        """
        percentage = 100.0 if total <= 0 else min(count / total * 100, 100.0)
        should_emit = (
            percentage == 0
            or percentage >= 100
            or percentage - self._last_percentage >= self.progress_interval
        )
        if not should_emit:
            return False

        self._last_percentage = percentage
        self._dispatch("on_progress", count, total, percentage)
        return True

    def emit(self, level: EventLevel | str, message: str, **context: Any) -> None:
        level = EventLevel(level)
        if self.current_phase and "phase" not in context:
            context["phase"] = self.current_phase
        self._dispatch(
            "on_log",
            level,
            message,
            context,
            console=level.value in self.console_levels,
            subscribers=level.value in self.subscriber_levels,
        )

    def warn(self, message: str, **context: Any) -> None:
        self.emit(EventLevel.WARN, message, **context)

    def log(self, message: str, **context: Any) -> None:
        self.emit(EventLevel.LOG, message, **context)

    def success(self, message: str, **context: Any) -> None:
        self.emit(EventLevel.SUCCESS, message, **context)

    def run_complete(self, summary: RunSummary) -> None:
        self._dispatch("on_run_complete", summary)

    def error(self, error: BaseException, phase: str | None = None) -> None:
        """Announce a fatal error. Observer failures here are logged, not raised."""
        for observer in [self.console, *self.observers]:
            try:
                observer.on_error(error, phase)
            except Exception as e:
                logger.warning(
                    "observer_error_hook_failed",
                    observer=type(observer).__name__,
                    error=str(e),
                )
