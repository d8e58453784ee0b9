"""
Bounded per-field edit history.

Each editor field (identified by a field key such as ``FUNDAMENTACAO`` or a
topic's decision text) keeps at most ``MAX_VERSIONS`` snapshots. Identical
consecutive saves are collapsed, so re-saving unchanged content never grows
the history.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..durable.base import DurableStore
from ..models import FieldVersionEntry, now_ms, strip_markup

logger = logging.getLogger(__name__)

MAX_VERSIONS = 10
PREVIEW_LENGTH = 100


def make_preview(content: str) -> str:
    """Plain-text preview of a field's HTML content."""
    return strip_markup(content)[:PREVIEW_LENGTH]


class FieldVersionHistory:
    """Version history of editor fields, stored in the durable store."""

    def __init__(
        self,
        store: DurableStore,
        max_versions: int = MAX_VERSIONS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize field history.

        Args:
            store: Durable store holding the field_versions domain
            max_versions: Versions kept per field key
            clock: Millisecond clock, injectable for tests
        """
        self.store = store
        self.max_versions = max_versions
        self.clock = clock

    async def save_version(self, field_key: str, content: str) -> int | None:
        """
        Record a version of a field.

        Skipped when the key or content is empty, or when the content equals
        the latest stored version.

        Returns:
            Id of the new version, or None when nothing was stored
        """
        if not field_key or not content:
            return None

        entry = FieldVersionEntry(
            field_key=field_key,
            content=content,
            timestamp=self.clock(),
            preview=make_preview(content),
        )
        version_id = await self.store.add_field_version(entry, self.max_versions)
        if version_id is not None:
            logger.debug(f"Saved version {version_id} of {field_key}")
        return version_id

    async def get_versions(self, field_key: str) -> list[FieldVersionEntry]:
        """Versions of a field, newest first."""
        if not field_key:
            return []
        return await self.store.list_field_versions(field_key)

    async def restore_version(
        self,
        version_id: int,
        current_content: str,
        field_key: str,
    ) -> str | None:
        """
        Return a historical version's content.

        The current content is saved as a version first so the restore can
        itself be undone.

        Returns:
            Historical content, or None if the version no longer exists
        """
        entry = await self.store.get_field_version(version_id)
        if entry is None:
            logger.info(f"Version {version_id} of {field_key} not found")
            return None

        # Read before saving: the save may evict the oldest version
        await self.save_version(field_key, current_content)
        return entry.content

    async def clear_versions(self, field_key: str | None = None) -> int:
        """Drop the history of one field, or of every field."""
        return await self.store.delete_field_versions(field_key)
