"""
Sentencify Storage

Local persistence and synchronization engine of the Sentencify decision
drafting assistant.

Provides:
- Two-tier session autosave (quota-limited slot + SQLite durable store)
- Portable project export/import with legacy-format migration
- Bounded per-field edit history
- Invalidate-and-reload sync between instances of the same project

Usage:

    >>> from sentencify_storage import PersistenceEngine, ProjectState, StorageConfig
    >>> state = ProjectState()
    >>> async with await PersistenceEngine.create(StorageConfig.from_env()) as engine:
    ...     await engine.restore(state.bind_callbacks())
    ...     state.processo_numero = "0001234-56.2024.5.00.0001"
    ...     await engine.autosave(state)
    ...     await engine.history.save_version("FUNDAMENTACAO", "<p>texto</p>")
    ...     path = await engine.export_to_file(state, Path("exports"))

Configuration:

    # Environment (SENTENCIFY_DATA_DIR, SENTENCIFY_DURABLE_STORE, ...)
    config = StorageConfig.from_env()

    # Or the storage section of a YAML settings file
    config = StorageConfig.from_yaml(Path("settings.yaml"))
"""

from .config import StorageConfig
from .conversion_cache import BinaryConversionCache
from .durable import PROJECT_DOMAINS, Domain, DurableStore, SQLiteDurableStore, SyncMessage
from .engine import PersistenceEngine

# Exceptions
from .exceptions import (
    MalformedSnapshotError,
    QuotaExceededError,
    SentencifyStorageError,
    StorageIOError,
    StoreUnavailableError,
    ValidationError,
)
from .history import FieldVersionHistory
from .logging_utils import configure_structured_logging
from .models import (
    BinaryBlobRecord,
    ChatHistoryEntry,
    FactsComparisonEntry,
    FactsSource,
    FieldVersionEntry,
    ReviewScope,
    SentenceReviewEntry,
    TextBlobRecord,
    TextCategory,
)
from .session import SessionAutosave, SessionSlot
from .snapshot import ProjectSnapshotCodec, RemoteSnapshotTransport, snapshot_filename
from .state import (
    DocumentRole,
    PastedText,
    ProcessingTracker,
    ProjectState,
    Proof,
    StateCallbacks,
    StoredFile,
)
from .sync import CrossTabSyncBroker

__all__ = [
    # Engine
    "PersistenceEngine",
    "StorageConfig",
    # Components
    "BinaryConversionCache",
    "CrossTabSyncBroker",
    "DurableStore",
    "FieldVersionHistory",
    "ProjectSnapshotCodec",
    "RemoteSnapshotTransport",
    "SQLiteDurableStore",
    "SessionAutosave",
    "SessionSlot",
    "snapshot_filename",
    # Domains and records
    "Domain",
    "PROJECT_DOMAINS",
    "SyncMessage",
    "BinaryBlobRecord",
    "ChatHistoryEntry",
    "FactsComparisonEntry",
    "FactsSource",
    "FieldVersionEntry",
    "ReviewScope",
    "SentenceReviewEntry",
    "TextBlobRecord",
    "TextCategory",
    # Project state
    "DocumentRole",
    "PastedText",
    "ProcessingTracker",
    "ProjectState",
    "Proof",
    "StateCallbacks",
    "StoredFile",
    # Logging
    "configure_structured_logging",
    # Exceptions
    "SentencifyStorageError",
    "QuotaExceededError",
    "StoreUnavailableError",
    "MalformedSnapshotError",
    "StorageIOError",
    "ValidationError",
]

__version__ = "0.1.0"
