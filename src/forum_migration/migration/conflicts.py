"""Conflict resolution for unique-key collisions during creation.

When the target rejects an account because its email is already taken,
the configured ``DuplicateKeyPolicy`` decides the outcome:

* ``merge``: reuse the account that already owns the address;
* ``suffix``: derive a new address with a ``+dupN`` marker and retry;
* ``skip``: give up on the item.

The policies are mutually exclusive.
"""

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from forum_migration.client.exceptions import IntegrityViolationError
from forum_migration.config import DuplicateKeyPolicy
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

DUPLICATE_MARKER = "dup"
_MARKER_PATTERN = re.compile(rf"^{DUPLICATE_MARKER}(\d+)$")

OwnerLookup = Callable[[str], Awaitable[str | None]]


class ResolutionAction(str, Enum):
    REUSE = "reuse"
    RETRY = "retry"
    SKIP = "skip"


@dataclass(frozen=True)
class ConflictResolution:
    """Decision for one failed create attempt. Never persisted."""

    action: ResolutionAction
    target_id: str | None = None
    candidate_key: str | None = None
    reason: str = ""


def increment_duplicate_key(key: str) -> str:
    """Derive the next candidate for a colliding email address.

    The local part gets a ``+dupN`` tag. An existing ``+dupN`` tag is
    incremented; any other ``+tag`` is kept in front of the marker.

    >>> increment_duplicate_key("foo@x")
    'foo+dup1@x'
    >>> increment_duplicate_key("foo+dup1@x")
    'foo+dup2@x'
    >>> increment_duplicate_key("foo+news@x")
    'foo+news+dup1@x'
    """
    local, at, domain = key.partition("@")
    tags = local.split("+")
    first = tags.pop(0)

    number = 1
    if tags:
        match = _MARKER_PATTERN.match(tags[-1])
        if match:
            number = int(match.group(1)) + 1
            tags.pop()

    tags.append(f"{DUPLICATE_MARKER}{number}")
    new_local = "+".join([first, *tags])
    return f"{new_local}{at}{domain}"


class ConflictResolver:
    """Applies the duplicate-key policy to integrity violations.

    Usage:
        resolver = ConflictResolver(DuplicateKeyPolicy.SUFFIX, max_attempts=50)
        resolution = await resolver.resolve(error, attempt, find_owner)
    """

    def __init__(self, policy: DuplicateKeyPolicy, max_attempts: int = 50):
        self.policy = DuplicateKeyPolicy(policy)
        self.max_attempts = max_attempts

    async def resolve(
        self,
        error: IntegrityViolationError,
        attempt: int,
        find_owner: OwnerLookup,
    ) -> ConflictResolution:
        """Decide what to do after a create failed on a unique key.

        Args:
            error: The violation raised by the target store
            attempt: Number of create attempts made so far for this item
            find_owner: Coroutine returning the target id that owns a key

        Returns:
            The resolution for this attempt
        """
        if self.policy is DuplicateKeyPolicy.MERGE:
            owner = await find_owner(error.value)
            if owner is None:
                return ConflictResolution(
                    ResolutionAction.SKIP,
                    reason=f"{error.field} '{error.value}' is taken but its owner was not found",
                )
            logger.info(
                "duplicate_key_merged",
                field=error.field,
                value=error.value,
                target_id=owner,
            )
            return ConflictResolution(ResolutionAction.REUSE, target_id=str(owner))

        if self.policy is DuplicateKeyPolicy.SUFFIX:
            if attempt >= self.max_attempts:
                return ConflictResolution(
                    ResolutionAction.SKIP,
                    reason=(
                        f"{error.field} '{error.value}' still collides after "
                        f"{attempt} attempts"
                    ),
                )
            candidate = increment_duplicate_key(error.value)
            logger.debug(
                "duplicate_key_suffixed",
                field=error.field,
                value=error.value,
                candidate=candidate,
            )
            return ConflictResolution(ResolutionAction.RETRY, candidate_key=candidate)

        return ConflictResolution(
            ResolutionAction.SKIP,
            reason=f"{error.field} '{error.value}' already exists",
        )
