"""Target environment handling around a run.

Before the first write the target's settings are snapshotted to a file and
replaced by relaxed values (maintenance mode, no post delays). The restore
phase writes the snapshot back and removes the file. A snapshot file that
survives a crash means the relaxed settings are still live, so it is reused
instead of being taken again.

Guest access phases open containers for writing during the import and close
them again afterwards.
"""

import asyncio
import json
from pathlib import Path
from typing import Any

from forum_migration.client.exceptions import EnvironmentBackupError, TargetStoreError
from forum_migration.client.target_store import GUESTS_GROUP, READ_PRIVILEGES
from forum_migration.migration.context import RunContext
from forum_migration.migration.cursor import BatchCursor
from forum_migration.migration.entities import EntityType, normalize_id
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

# Chat length cap the snapshot is saved with, so restoring it never leaves
# imported messages longer than the target accepts
SNAPSHOT_CHAT_MESSAGE_LENGTH = 1000


class EnvironmentManager:
    """Snapshot, override and restore the target settings.

    Usage:
        env = EnvironmentManager(ctx)
        env.preflight()
        await env.backup()
        await env.override()
        ...
        await env.restore()
    """

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.target = ctx.target
        self.backup_path: Path = ctx.environment_backup_path
        self.snapshot: dict[str, Any] | None = None

    def preflight(self) -> None:
        """Make sure the snapshot file can be read and written.

        Runs before any destructive phase: losing the pre-run settings is
        not recoverable.

        Raises:
            EnvironmentBackupError: If the file or its directory is unusable
        """
        if self.backup_path.exists():
            self._read_backup()
            return
        try:
            self.backup_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EnvironmentBackupError(
                f"Cannot create directory for {self.backup_path}: {e}"
            ) from e
        if not self.backup_path.parent.is_dir():
            raise EnvironmentBackupError(f"{self.backup_path.parent} is not a directory")

    def _read_backup(self) -> dict[str, Any]:
        try:
            data = json.loads(self.backup_path.read_text())
        except (OSError, ValueError) as e:
            raise EnvironmentBackupError(
                f"Cannot read environment snapshot {self.backup_path}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise EnvironmentBackupError(f"{self.backup_path} does not hold a settings object")
        return data

    async def backup(self) -> dict[str, Any]:
        """Take (or reuse) the snapshot of the target settings.

        Returns:
            The snapshot

        Raises:
            EnvironmentBackupError: If the snapshot cannot be persisted
        """
        if self.backup_path.exists():
            self.snapshot = self._read_backup()
            self.ctx.events.warn(
                "environment_snapshot_reused",
                path=str(self.backup_path),
            )
            return self.snapshot

        snapshot = dict(await self.target.get_config() or {})
        snapshot["maximumChatMessageLength"] = SNAPSHOT_CHAT_MESSAGE_LENGTH

        try:
            self.backup_path.parent.mkdir(parents=True, exist_ok=True)
            self.backup_path.write_text(json.dumps(snapshot, indent=2, default=str))
        except (OSError, TypeError) as e:
            raise EnvironmentBackupError(
                f"Cannot write environment snapshot {self.backup_path}: {e}"
            ) from e

        self.snapshot = snapshot
        logger.info("environment_snapshot_saved", path=str(self.backup_path), keys=len(snapshot))
        return snapshot

    def build_overrides(self) -> dict[str, Any]:
        """Snapshot values with the run's temporary settings applied on top."""
        values = dict(self.snapshot or {})
        values.update(self.ctx.run.environment_overrides)
        if self.ctx.run.auto_confirm_emails:
            values["requireEmailConfirmation"] = 0
        return values

    async def override(self) -> None:
        """Write the temporary settings used for the duration of the import."""
        if self.snapshot is None:
            self.snapshot = self._read_backup() if self.backup_path.exists() else {}
        await self.target.set_config(self.build_overrides())
        self.ctx.events.log("environment_overridden")

    async def restore(self) -> bool:
        """Write the snapshot back with maintenance mode off.

        A store failure is not fatal: the snapshot is logged so an operator
        can apply it by hand, and the file is kept.

        Returns:
            True if the snapshot was restored
        """
        if not self.backup_path.exists():
            self.ctx.events.warn(
                "environment_restore_skipped",
                reason=f"{self.backup_path} does not exist",
            )
            return False

        snapshot = self._read_backup()
        snapshot["maintenanceMode"] = 0

        try:
            await self.target.set_config(snapshot)
        except TargetStoreError as e:
            self.ctx.events.warn(
                "environment_restore_failed",
                error=str(e),
                snapshot=json.dumps(snapshot, default=str),
            )
            return False

        self.backup_path.unlink(missing_ok=True)
        self.snapshot = None
        self.ctx.events.success("environment_restored", keys=len(snapshot))
        return True

    async def _each_container(self, action) -> int:
        """Apply ``action(container_id)`` to every container in the target.

        A container the store refuses is reported and left as it is.

        Returns:
            Number of containers the action succeeded on
        """
        semaphore = asyncio.Semaphore(self.ctx.performance.each_limit)
        kind = EntityType.CONTAINER.value

        async def fetch(start: int, stop: int) -> list[dict[str, Any]]:
            return await self.target.fetch_range(kind, start, stop)

        async def apply_with_semaphore(container_id: str) -> bool:
            async with semaphore:
                try:
                    await action(container_id)
                except TargetStoreError as e:
                    self.ctx.events.warn(
                        "container_access_update_failed",
                        container_id=container_id,
                        error=str(e),
                    )
                    return False
                return True

        done = 0
        failed = 0
        async for batch in BatchCursor(fetch, self.ctx.performance.batch_size):
            ids = [normalize_id(container.get("id")) for container in batch]
            ids = [container_id for container_id in ids if container_id is not None]
            results = await asyncio.gather(
                *(apply_with_semaphore(container_id) for container_id in ids)
            )
            done += sum(results)
            failed += len(results) - sum(results)

        if failed:
            logger.warning("container_access_incomplete", updated=done, failed=failed)
        return done

    async def allow_guests_write(self) -> int:
        """Open every container to guests so guest-authored content can be created."""
        return await self._each_container(
            lambda container_id: self.target.grant_access(GUESTS_GROUP, container_id)
        )

    async def disallow_guests_write(self) -> int:
        return await self._each_container(
            lambda container_id: self.target.revoke_access(GUESTS_GROUP, container_id)
        )

    async def allow_guests_read(self) -> int:
        return await self._each_container(
            lambda container_id: self.target.grant_access(
                GUESTS_GROUP, container_id, READ_PRIVILEGES
            )
        )
