"""
Durable storage for large payloads and auxiliary project data.

Provides:
- DurableStore: abstract interface used by every collaborator
- SQLiteDurableStore: aiosqlite implementation (one file, one table per domain)
- Domain: the named partitions of the store
"""

from .base import CommitListener, DurableStore, SyncCallback, SyncMessage
from .schema import PROJECT_DOMAINS, Domain
from .sqlite import SQLiteDurableStore

__all__ = [
    "CommitListener",
    "Domain",
    "DurableStore",
    "PROJECT_DOMAINS",
    "SQLiteDurableStore",
    "SyncCallback",
    "SyncMessage",
]
