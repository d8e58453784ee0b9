"""
Quota-limited key/value slot.

A single small JSON file holding string values under string keys, with a hard
byte ceiling on the encoded file. It plays the role browser local storage
plays for a web client: always available, tiny, synchronous in spirit.

Writes are atomic, so a failed or rejected write always leaves the previous
contents intact.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ..exceptions import QuotaExceededError
from ..file_ops import read_text, write_text_atomic

logger = logging.getLogger(__name__)


def _encode(items: dict[str, str]) -> str:
    return json.dumps(items, ensure_ascii=False, separators=(",", ":"))


class SessionSlot:
    """String key/value slot stored in one JSON file under a byte quota."""

    def __init__(self, path: Path, quota_bytes: int):
        """
        Initialize slot.

        Args:
            path: JSON file backing the slot
            quota_bytes: Maximum encoded size of the whole file
        """
        self.path = Path(path)
        self.quota_bytes = quota_bytes

    async def _read_all(self) -> dict[str, str]:
        content = await read_text(self.path)
        if not content or not content.strip():
            return {}

        try:
            items = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Session slot {self.path} is not valid JSON, treating as empty: {e}")
            return {}
        if not isinstance(items, dict):
            logger.warning(f"Session slot {self.path} does not hold an object, treating as empty")
            return {}
        return {k: v for k, v in items.items() if isinstance(v, str)}

    async def get_item(self, key: str) -> str | None:
        """Stored value for ``key``, or None."""
        items = await self._read_all()
        return items.get(key)

    async def encoded_size_with(self, key: str, value: str) -> int:
        """Byte size the slot would have after setting ``key`` to ``value``."""
        items = await self._read_all()
        items[key] = value
        return len(_encode(items).encode("utf-8"))

    async def fits(self, key: str, value: str) -> bool:
        """True when setting ``key`` to ``value`` stays within the quota."""
        return await self.encoded_size_with(key, value) <= self.quota_bytes

    async def set_item(self, key: str, value: str) -> None:
        """
        Store a value.

        Raises:
            QuotaExceededError: If the resulting file would exceed the quota;
                the slot is left unchanged
            StorageIOError: If the file cannot be written
        """
        items = await self._read_all()
        items[key] = value
        encoded = _encode(items)
        size = len(encoded.encode("utf-8"))
        if size > self.quota_bytes:
            raise QuotaExceededError(key, size, self.quota_bytes)

        await write_text_atomic(self.path, encoded)

    async def remove_item(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""
        items = await self._read_all()
        if key not in items:
            return
        del items[key]
        await write_text_atomic(self.path, _encode(items))
