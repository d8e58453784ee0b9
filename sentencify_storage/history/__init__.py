"""Per-field edit history."""

from .field_versions import MAX_VERSIONS, FieldVersionHistory, make_preview

__all__ = ["FieldVersionHistory", "MAX_VERSIONS", "make_preview"]
