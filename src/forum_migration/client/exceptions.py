"""Custom exceptions for Forum Bridge.

This module defines exception classes for the error conditions that can occur
while reading the source export, writing to the target store, and tracking
migration state.
"""


class ForumMigrationError(Exception):
    """Base exception for all forum migration tool errors."""

    pass


class TargetStoreError(ForumMigrationError):
    """Base class for errors raised by a target store adapter."""

    def __init__(self, message: str, entity_type: str | None = None, details: dict | None = None):
        """Initialize target store error.

        Args:
            message: Error message
            entity_type: Entity type being written when the error occurred
            details: Adapter specific error payload
        """
        self.message = message
        self.entity_type = entity_type
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with entity type and details."""
        msg = self.message
        if self.entity_type:
            msg = f"[{self.entity_type}] {msg}"
        if self.details:
            msg = f"{msg}: {self.details}"
        return msg


class IntegrityViolationError(TargetStoreError):
    """Raised when a create collides with a unique secondary key.

    The conflict resolver inspects ``field`` and ``value`` to decide whether
    the existing owner of the key is reused, a new key is derived, or the
    item is skipped.
    """

    def __init__(
        self,
        message: str,
        field: str,
        value: str,
        entity_type: str | None = None,
        details: dict | None = None,
    ):
        """Initialize integrity violation error.

        Args:
            message: Error message
            field: Name of the unique field that collided (e.g. "email")
            value: The colliding value
            entity_type: Entity type being created
            details: Adapter specific error payload
        """
        self.field = field
        self.value = value
        super().__init__(message, entity_type, details)


class TransientStoreError(TargetStoreError):
    """Raised when a store or blob write failed but may succeed if retried."""

    pass


class NotFoundError(TargetStoreError):
    """Raised when a referenced target entity does not exist."""

    pass


class SourceProviderError(ForumMigrationError):
    """Raised when the source provider cannot count or fetch a batch."""

    pass


class StateError(ForumMigrationError):
    """Raised when state management errors occur."""

    pass


class CheckpointError(StateError):
    """Raised when checkpoint operations fail."""

    pass


class ConfigurationError(ForumMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class EnvironmentBackupError(ConfigurationError):
    """Raised when the environment snapshot cannot be read or written.

    Raised before any destructive phase so the pre-run configuration of the
    target is never lost.
    """

    pass


class MigrationError(ForumMigrationError):
    """Raised when migration operations fail."""

    pass


class TransformationError(MigrationError):
    """Raised when data transformation fails."""

    pass


class DependencyError(MigrationError):
    """Raised when entity dependencies cannot be resolved."""

    pass


class SkipItemError(MigrationError):
    """Raised inside an importer to skip the current item with a reason."""

    pass


class FatalMigrationError(ForumMigrationError):
    """Raised when the run cannot continue."""

    pass


class PhaseFailedError(FatalMigrationError):
    """Raised by the coordinator when a phase aborts the run."""

    def __init__(self, phase: str, cause: BaseException):
        """Initialize phase failure.

        Args:
            phase: Name of the failed phase
            cause: The exception that aborted the phase
        """
        self.phase = phase
        self.cause = cause
        super().__init__(f"Phase '{phase}' failed: {cause}")


class EventChannelError(FatalMigrationError):
    """Raised when an observer cannot accept progress events."""

    pass
