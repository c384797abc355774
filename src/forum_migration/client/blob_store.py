"""Blob persistence interface and the local directory adapter."""

import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from forum_migration.client.exceptions import TargetStoreError
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for storing avatars and attachments."""

    async def save_blob(self, name: str, folder: str, local_path: str | Path) -> dict[str, str]:
        """Persist a local file under ``folder/name``.

        Returns:
            Dict holding the public ``"url"`` of the stored blob
        """
        ...


class LocalBlobStore:
    """Copies blobs into a directory served by the target platform.

    Usage:
        store = LocalBlobStore("uploads", url_prefix="/assets/uploads")
        ret = await store.save_blob("1.png", "_imported_profiles", "/tmp/1.png")
        ret["url"]  # "/assets/uploads/_imported_profiles/1.png"
    """

    def __init__(self, upload_dir: str | Path, url_prefix: str = "/assets/uploads"):
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")

    async def save_blob(self, name: str, folder: str, local_path: str | Path) -> dict[str, str]:
        destination_dir = self.upload_dir / folder
        destination = destination_dir / name
        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, destination)
        except OSError as e:
            raise TargetStoreError(f"Failed to store blob {folder}/{name}: {e}") from e

        logger.debug("blob_saved", folder=folder, name=name, path=str(destination))
        return {"url": f"{self.url_prefix}/{folder}/{name}"}
