"""
Multi-instance synchronization.

Provides:
- SyncChannel: pub/sub over a table in the shared SQLite file
- CrossTabSyncBroker: throttled broadcasts and invalidate-and-reload
"""

from .broker import SYNC_ERROR, CrossTabSyncBroker, serialize_projection
from .channel import SyncChannel

__all__ = ["CrossTabSyncBroker", "SYNC_ERROR", "SyncChannel", "serialize_projection"]
