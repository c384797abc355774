"""Color definitions for console output.

This module provides centralized color palette using Rich color names
for consistent visual styling across the migration tool's console output.
"""


class MigrationColors:
    """Centralized color palette for Forum Bridge console output.

    Uses Rich library color names. All colors are terminal-safe and work in
    both light and dark terminals.

    Reference: https://rich.readthedocs.io/en/stable/appendix/colors.html
    """

    # Semantic colors for messages
    SUCCESS = "green"
    WARNING = "yellow"
    ERROR = "red"

    # Component-specific colors
    PROGRESS = "blue"
    SPINNER = "dark_slate_gray1"

    # Status colors
    COMPLETE = "green"
    FAILED = "red"
    SKIPPED = "dark_orange"

    # Data colors
    RESOURCE_COUNT = "bright_cyan"

    # UI elements
    HEADER = "bold bright_white"

    STATUS = {
        "completed": COMPLETE,
        "failed": FAILED,
        "skipped": SKIPPED,
        "running": WARNING,
    }
