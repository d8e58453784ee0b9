"""
Bounded cache of binary-to-base64 conversions.

Exporting a project re-encodes every uploaded file. The same files are often
exported several times in a row, so the last few encodings are kept around.
"""

from __future__ import annotations

import base64
from collections import OrderedDict
from typing import Any, Protocol

DEFAULT_CAPACITY = 5

Fingerprint = tuple[str, int, int]


class ConvertibleBinary(Protocol):
    """Anything with a name, a size, a modification time and raw bytes."""

    name: str
    data: bytes
    modified_at: int

    @property
    def size(self) -> int: ...


class BinaryConversionCache:
    """
    FIFO cache for base64 encodings with a fixed capacity.

    Features:
    - Keyed by fingerprint (name, size, modified timestamp), not by content
    - Eviction removes the earliest-inserted key still tracked
    - Reads and value updates never change eviction order
    - Instance-local; never shared between open instances
    """

    def __init__(self, max_entries: int = DEFAULT_CAPACITY):
        """
        Initialize conversion cache.

        Args:
            max_entries: Maximum number of encodings to keep
        """
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")

        self.max_entries = max_entries
        self._cache: OrderedDict[Fingerprint, str] = OrderedDict()

    @staticmethod
    def fingerprint(obj: ConvertibleBinary) -> Fingerprint:
        """Cache key for a binary object."""
        return (obj.name, obj.size, obj.modified_at)

    def get(self, key: Fingerprint) -> str | None:
        """Get a cached encoding without touching eviction order."""
        return self._cache.get(key)

    def put(self, key: Fingerprint, value: str) -> None:
        """
        Store an encoding.

        Updating an existing key keeps its original insertion position. A new
        key at capacity first evicts the earliest-inserted key.
        """
        if key in self._cache:
            self._cache[key] = value
            return

        while len(self._cache) >= self.max_entries:
            self._cache.popitem(last=False)

        self._cache[key] = value

    def convert(self, obj: ConvertibleBinary) -> str:
        """Base64 text of ``obj.data``, served from cache when possible."""
        key = self.fingerprint(obj)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        encoded = base64.b64encode(obj.data).decode("ascii")
        self.put(key, encoded)
        return encoded

    def __contains__(self, key: object) -> bool:
        return key in self._cache

    def clear(self) -> None:
        """Drop every cached encoding."""
        self._cache.clear()

    def size(self) -> int:
        """Get current number of cached encodings."""
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with cache metrics
        """
        return {
            "size": len(self._cache),
            "max_entries": self.max_entries,
            "utilization": len(self._cache) / self.max_entries,
        }
