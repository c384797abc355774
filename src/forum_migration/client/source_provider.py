"""Source provider interface and the JSON export adapter.

A source provider enumerates the external system's content per entity
type. The importers pull it in windows through the forward batch cursor,
so a provider only has to answer ``count`` and ``fetch_batch`` for a
stable ordering of its items.
"""

import base64
import binascii
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from forum_migration.client.exceptions import SourceProviderError
from forum_migration.utils.logging import get_logger

if TYPE_CHECKING:
    from forum_migration.migration.hooks import HookCapabilities
    from forum_migration.migration.ledger import EntityRecord

logger = get_logger(__name__)


@runtime_checkable
class SourceProvider(Protocol):
    """Protocol defining the interface for source providers."""

    async def count(self, entity_type: str) -> int:
        """Total number of source items of a type."""
        ...

    async def fetch_batch(self, entity_type: str, start: int, stop: int) -> list[dict[str, Any]]:
        """Fetch the items at positions start..stop (inclusive).

        Windows requested by one phase are monotonic and never overlap. An
        empty list ends the phase.
        """
        ...

    def supports_immediate_process(self, entity_type: str) -> bool:
        """Whether the provider has a post-import hook for a type."""
        ...

    async def immediate_process(
        self,
        entity_type: str,
        record: "EntityRecord",
        capabilities: "HookCapabilities",
    ) -> None:
        """Post-import hook called once per imported entity.

        Args:
            entity_type: Entity type of the record
            record: Ledger record (source snapshot and target id)
            capabilities: Target-side collaborators the hook may use
        """
        ...


class JsonExportSourceProvider:
    """Reads a directory of exported JSON files.

    Layout: ``<export_dir>/<entity_type>/<entity_type>_*.json``, each file
    holding a JSON list of source items. Files are read in name order.
    Binary fields are base64 strings and are decoded on fetch:
    ``_pictureBlob`` on accounts and ``_attachmentsBlobs[].blob`` on threads
    and posts.

    Usage:
        provider = JsonExportSourceProvider("exports")
        total = await provider.count("account")
        items = await provider.fetch_batch("account", 0, 499)
    """

    def __init__(self, export_dir: str | Path):
        self.export_dir = Path(export_dir)
        self._cache: dict[str, list[dict[str, Any]]] = {}

    def _load(self, entity_type: str) -> list[dict[str, Any]]:
        entity_type = str(getattr(entity_type, "value", entity_type))
        if entity_type in self._cache:
            return self._cache[entity_type]

        items: list[dict[str, Any]] = []
        type_dir = self.export_dir / entity_type
        if type_dir.is_dir():
            for json_file in sorted(type_dir.glob(f"{entity_type}_*.json")):
                try:
                    with open(json_file) as f:
                        data = json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    raise SourceProviderError(f"Failed to read {json_file}: {e}") from e

                if isinstance(data, list):
                    items.extend(data)
                else:
                    items.append(data)
        else:
            logger.debug("export_dir_missing", entity_type=entity_type, path=str(type_dir))

        self._cache[entity_type] = items
        return items

    async def count(self, entity_type: str) -> int:
        return len(self._load(entity_type))

    async def fetch_batch(self, entity_type: str, start: int, stop: int) -> list[dict[str, Any]]:
        items = self._load(entity_type)[start : stop + 1]
        return [_decode_blobs(item) for item in items]

    def supports_immediate_process(self, entity_type: str) -> bool:
        return False

    async def immediate_process(
        self,
        entity_type: str,
        record: "EntityRecord",
        capabilities: "HookCapabilities",
    ) -> None:
        return None


def _decode_blobs(item: dict[str, Any]) -> dict[str, Any]:
    """Copy of an item with its base64 blob fields decoded to bytes."""
    decoded = dict(item)

    if isinstance(decoded.get("_pictureBlob"), str):
        decoded["_pictureBlob"] = _b64(decoded["_pictureBlob"])

    blobs = decoded.get("_attachmentsBlobs")
    if isinstance(blobs, list):
        decoded["_attachmentsBlobs"] = [
            {**blob, "blob": _b64(blob["blob"])}
            if isinstance(blob, dict) and isinstance(blob.get("blob"), str)
            else blob
            for blob in blobs
        ]

    return decoded


def _b64(value: str) -> bytes | None:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        # Undecodable payloads are dropped; the importer proceeds without them
        logger.warning("blob_decode_failed", length=len(value))
        return None
