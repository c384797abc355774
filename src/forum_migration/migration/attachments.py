"""Binary payload materialization.

Avatars and attachments arrive from the source as raw bytes. They are
written to a scratch file, their type is sniffed, and the file is handed to
the blob store. The returned URL replaces the payload in the entity. A
failed write is logged and the entity proceeds without the blob.
"""

import mimetypes
from dataclasses import dataclass, field
from html import escape
from pathlib import Path
from typing import Any

from forum_migration.client.blob_store import BlobStore
from forum_migration.client.exceptions import TargetStoreError
from forum_migration.utils.logging import get_logger
from forum_migration.utils.retry import call_with_retry

logger = get_logger(__name__)

PROFILE_FOLDER = "_imported_profiles"
ATTACHMENT_FOLDER = "_imported_attachments"

UNKNOWN_MIME = "application/octet-stream"

_MAGIC_NUMBERS: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"%PDF-", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b", "application/gzip"),
)


def sniff_mime(data: bytes, filename: str | None = None) -> str:
    """Best guess of a payload's MIME type.

    Leading magic bytes win; the file name extension is the fallback.
    """
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    for magic, mime in _MAGIC_NUMBERS:
        if data.startswith(magic):
            return mime
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed
    return UNKNOWN_MIME


def safe_filename(value: Any) -> str:
    """Last path component of a source-supplied file name, "" when there is none."""
    if not value:
        return ""
    name = Path(str(value).replace("\\", "/")).name
    return "" if name in (".", "..") else name


def is_image(mime: str) -> bool:
    return mime.startswith("image/")


def image_tag(url: str) -> str:
    filename = url.rsplit("/", 1)[-1]
    return (
        f'\n<img class="imported-image-tag" style="display:block" '
        f'src="{escape(url)}" alt="{escape(filename)}" />'
    )


def anchor_tag(url: str) -> str:
    filename = url.rsplit("/", 1)[-1]
    return (
        f'\n<a download="{escape(filename)}" class="imported-anchor-tag" '
        f'href="{escape(url)}" target="_blank">{escape(filename)}</a>'
    )


@dataclass
class MaterializedAttachments:
    """URLs produced for one entity, split by kind."""

    images: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.images or self.files)

    def render(self) -> str:
        """Markup appended to the entity content."""
        return "".join(image_tag(url) for url in self.images) + "".join(
            anchor_tag(url) for url in self.files
        )


class BlobMaterializer:
    """Writes payloads through the blob store.

    Usage:
        materializer = BlobMaterializer(blob_store, tmp_dir)
        url = await materializer.save(data, "7.png", PROFILE_FOLDER)
    """

    def __init__(self, blob_store: BlobStore, tmp_dir: str | Path, retry_attempts: int = 3):
        self.blob_store = blob_store
        self.tmp_dir = Path(tmp_dir)
        self.retry_attempts = retry_attempts

    async def save(self, data: bytes | None, name: str, folder: str) -> tuple[str, str] | None:
        """Persist one payload.

        Args:
            data: Raw bytes (None or empty means nothing to store)
            name: Collision-resistant file name
            folder: Blob store folder

        Returns:
            ``(url, mime)``, or None if the payload could not be stored
        """
        name = safe_filename(name)
        if not name:
            logger.warning("blob_name_invalid", folder=folder)
            return None
        if not data:
            logger.warning("blob_empty", name=name, folder=folder)
            return None

        mime = sniff_mime(data, name)
        tmp_path = self.tmp_dir / folder / name
        try:
            tmp_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
        except OSError as e:
            logger.warning("blob_tmp_write_failed", name=name, path=str(tmp_path), error=str(e))
            return None

        try:
            ret = await call_with_retry(
                self.blob_store.save_blob,
                name,
                folder,
                tmp_path,
                max_attempts=self.retry_attempts,
            )
        except TargetStoreError as e:
            logger.warning("blob_save_failed", name=name, folder=folder, error=str(e))
            return None
        finally:
            tmp_path.unlink(missing_ok=True)

        url = (ret or {}).get("url")
        if not url:
            logger.warning("blob_save_returned_no_url", name=name, folder=folder)
            return None
        return url, mime

    async def save_attachments(
        self, blobs: list[dict[str, Any]] | None, prefix: str
    ) -> MaterializedAttachments:
        """Persist a list of ``{blob, filename, extension}`` attachments.

        File names are ``{prefix}_{index}_{filename}``, or
        ``{prefix}_{index}{extension}`` when the source has no file name.
        """
        result = MaterializedAttachments()
        for index, attachment in enumerate(blobs or []):
            if not isinstance(attachment, dict):
                continue
            filename = safe_filename(attachment.get("filename"))
            suffix = f"_{filename}" if filename else safe_filename(attachment.get("extension"))
            name = f"{prefix}_{index}{suffix}"

            saved = await self.save(attachment.get("blob"), name, ATTACHMENT_FOLDER)
            if saved is None:
                continue
            url, mime = saved
            if is_image(mime):
                result.images.append(url)
            else:
                result.files.append(url)
        return result
