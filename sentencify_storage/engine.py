"""
Persistence engine.

Wires every component of one open instance together:

    StorageConfig
      ├── SQLiteDurableStore      (shared by path with sibling instances)
      ├── SessionSlot             (quota-limited session document)
      ├── SessionAutosave         (two-tier autosave / restore / clear)
      ├── FieldVersionHistory     (per-field edit history)
      ├── ProjectSnapshotCodec    (export / import)
      └── CrossTabSyncBroker      (invalidate-and-reload across instances)

The engine owns the instance-local state (conversion cache, processing
tracker) and hands it to the collaborators that need it.

Example:
    >>> async with await PersistenceEngine.create(StorageConfig.from_env()) as engine:
    ...     await engine.restore(state.bind_callbacks())
    ...     await engine.autosave(state)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

from .config import StorageConfig
from .conversion_cache import BinaryConversionCache
from .durable.schema import Domain
from .durable.sqlite import SQLiteDurableStore
from .history.field_versions import FieldVersionHistory
from .logging_utils import StorageLoggerAdapter
from .resilience import RetryConfig
from .session.autosave import SessionAutosave
from .session.slot import SessionSlot
from .snapshot.codec import ProjectSnapshotCodec
from .snapshot.transport import (
    RemoteSnapshotTransport,
    read_snapshot_file,
    snapshot_filename,
    write_snapshot_file,
)
from .state import ProcessingTracker, ProjectState, StateCallbacks
from .sync.broker import CrossTabSyncBroker, Loader

logger = logging.getLogger(__name__)


class PersistenceEngine:
    """All persistence services of one open project instance."""

    def __init__(
        self,
        config: StorageConfig | None = None,
        instance_id: str | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ):
        """
        Initialize engine (does not open the durable store).

        Args:
            config: Engine configuration (default: from environment)
            instance_id: Unique id of this instance (generated when omitted)
            on_warning: User-facing warnings (quota exhaustion)
            on_error: User-facing messages for absorbed failures
        """
        self.config = config or StorageConfig.from_env()
        self.instance_id = instance_id or uuid.uuid4().hex
        self.log = StorageLoggerAdapter(logger, {"instance_id": self.instance_id})

        self.tracker = ProcessingTracker()
        self.cache = BinaryConversionCache()

        self.store = SQLiteDurableStore(
            self.config.durable_path,
            RetryConfig(
                max_retries=self.config.open_max_retries,
                backoff_base=self.config.open_backoff_ms / 1000,
            ),
        )
        self.slot = SessionSlot(self.config.session_path, self.config.quota_bytes)
        self.session = SessionAutosave(
            self.slot,
            self.store,
            self.config,
            cache=self.cache,
            tracker=self.tracker,
            on_warning=on_warning,
            on_error=on_error,
        )
        self.history = FieldVersionHistory(self.store)
        self.codec = ProjectSnapshotCodec(self.store, self.session, self.cache)
        self.broker = CrossTabSyncBroker(
            self.store,
            self.config,
            instance_id=self.instance_id,
            on_error=on_error,
        )
        self._initialized = False

    @classmethod
    async def create(
        cls,
        config: StorageConfig | None = None,
        instance_id: str | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> PersistenceEngine:
        """Create and initialize an engine."""
        engine = cls(config, instance_id, on_warning, on_error)
        await engine.initialize()
        return engine

    async def initialize(self) -> None:
        """Open the durable store (when enabled) and start cross-instance sync."""
        if self._initialized:
            return

        if self.config.durable_store_enabled:
            if not await self.store.open():
                self.log.warning("Running without durable store; session slot only")
            await self.broker.start()
        else:
            self.log.info("Durable store disabled by configuration")

        self._initialized = True
        self.log.info(f"Persistence engine ready (data dir {self.config.data_dir})")

    async def close(self) -> None:
        """Flush pending autosave, stop sync and close the store."""
        if not self._initialized:
            return

        await self.session.flush()
        await self.broker.stop()
        await self.store.close()
        self._initialized = False

    async def __aenter__(self) -> PersistenceEngine:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def durable_available(self) -> bool:
        return self.config.durable_store_enabled and self.store.available

    # =========================================================================
    # Session
    # =========================================================================

    async def autosave(self, state: ProjectState, immediate: bool = False) -> bool:
        """Save the session (deferred to idle unless ``immediate``)."""
        return await self.session.autosave(state, immediate=immediate)

    async def restore(self, callbacks: StateCallbacks) -> ProjectState | None:
        """Restore the saved session into ``callbacks``."""
        return await self.session.restore(callbacks)

    async def check_saved_session(self) -> dict[str, Any] | None:
        """``{saved_at, processo_numero}`` of the saved session, or None."""
        return await self.session.check_saved_session()

    async def reset_project(self, callbacks: StateCallbacks | None = None) -> list[str]:
        """Start a new project: drop the session and purge every project domain."""
        failed = await self.session.clear(callbacks)
        self.log.info("Project reset")
        return failed

    # =========================================================================
    # Export / import
    # =========================================================================

    async def export_snapshot(self, state: ProjectState) -> dict[str, Any]:
        """Portable snapshot of the project (never contains credentials)."""
        return await self.codec.build_snapshot(state)

    async def export_to_file(
        self,
        state: ProjectState,
        directory: Path,
        on: date | None = None,
    ) -> Path:
        """Write the snapshot to ``directory`` under its conventional file name."""
        snapshot = await self.export_snapshot(state)
        path = Path(directory) / snapshot_filename(state.processo_numero, on)
        return await write_snapshot_file(path, snapshot)

    async def export_to_remote(
        self,
        state: ProjectState,
        transport: RemoteSnapshotTransport,
        on: date | None = None,
    ) -> str:
        """Upload the snapshot. Returns the remote file name."""
        name = snapshot_filename(state.processo_numero, on)
        await transport.save(name, await self.export_snapshot(state))
        return name

    async def import_snapshot(
        self,
        document: Any,
        callbacks: StateCallbacks,
        current_ai_settings: dict[str, Any] | None = None,
    ) -> ProjectState:
        """
        Replace the project with ``document``.

        The credentials in ``current_ai_settings`` survive the import.

        Raises:
            MalformedSnapshotError: If the snapshot has no version
        """
        api_keys = (current_ai_settings or {}).get("apiKeys")
        return await self.codec.import_snapshot(document, callbacks, api_keys=api_keys)

    async def import_from_file(
        self,
        path: Path,
        callbacks: StateCallbacks,
        current_ai_settings: dict[str, Any] | None = None,
    ) -> ProjectState:
        """Import a snapshot file."""
        document = await read_snapshot_file(path)
        return await self.import_snapshot(document, callbacks, current_ai_settings)

    async def import_from_remote(
        self,
        name: str,
        transport: RemoteSnapshotTransport,
        callbacks: StateCallbacks,
        current_ai_settings: dict[str, Any] | None = None,
    ) -> ProjectState:
        """Download and import a snapshot."""
        document = await transport.load(name)
        return await self.import_snapshot(document, callbacks, current_ai_settings)

    # =========================================================================
    # Model library
    # =========================================================================

    async def load_models(self) -> list[dict[str, Any]]:
        """Current model library; the result becomes the sync watermark."""
        models = await self.store.load_models()
        self.broker.mark_saved(Domain.MODELS, models)
        return models

    async def save_models(self, models: list[dict[str, Any]]) -> int | None:
        """
        Replace the model library.

        Returns:
            Number of models stored, or None when ``models`` equals what was
            last loaded or saved (nothing written, nothing broadcast)
        """
        if not self.broker.should_persist(Domain.MODELS, models):
            return None
        saved = await self.store.save_models(models)
        self.broker.mark_saved(Domain.MODELS, models)
        return saved

    # =========================================================================
    # Sync
    # =========================================================================

    def watch(self, domain: Domain, apply: Callable[[Any], Any], loader: Loader | None = None) -> None:
        """
        Reload ``domain`` whenever a sibling instance commits to it.

        Args:
            domain: Domain to follow
            apply: Receives the reloaded data
            loader: Reload function (default: the store's listing for the domain)
        """
        self.broker.register(domain, loader or self._default_loader(domain), apply)

    def _default_loader(self, domain: Domain) -> Loader:
        loaders: dict[Domain, Loader] = {
            Domain.MODELS: self.store.load_models,
            Domain.CHAT_HISTORY: self.store.list_chats,
            Domain.FACTS_COMPARISON: self.store.list_comparisons,
            Domain.SENTENCE_REVIEW: self.store.list_reviews,
            Domain.TEXT_BLOBS: self.store.list_texts,
            Domain.BLOBS: self.store.list_blob_ids,
        }
        if domain not in loaders:
            raise ValueError(f"No default loader for domain {domain.value}; pass one")
        return loaders[domain]
