"""
Continuous session autosave and restore.

Autosave keeps two tiers in step: large bodies go to the durable store first,
then a reference-only session document replaces the one in the quota-limited
slot. Restore walks the opposite direction and hands each state slice back
through StateCallbacks.

Only one write runs at a time per instance. A non-immediate autosave waits
for the idle delay and is superseded by any later call; once a write has
started it always runs to completion.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections.abc import Callable, Hashable
from typing import Any

from ..config import StorageConfig
from ..conversion_cache import BinaryConversionCache
from ..durable.base import DurableStore
from ..durable.schema import PROJECT_DOMAINS
from ..exceptions import QuotaExceededError, StorageIOError
from ..models import TextCategory
from ..snapshot.migrations import migrate
from ..state import ProcessingTracker, ProjectState, StateCallbacks
from .document import SESSION_KEY, BodyMode, DocumentReader, SessionPlan, plan_session
from .slot import SessionSlot

logger = logging.getLogger(__name__)

QUOTA_WARNING = (
    "Armazenamento local cheio: a sessão não pôde ser salva automaticamente. "
    "Exporte o projeto para não perder o trabalho."
)
SAVE_ERROR = "Erro ao salvar sessão"


class SessionAutosave:
    """
    Two-tier session persistence for one open instance.

    Features:
    - Debounced idle writes, immediate writes for critical moments
    - Bodies written to the durable store only when changed
    - Lazy forward migration of legacy session documents on restore
    - Degraded slot-only mode when the durable store is off or unavailable
    """

    def __init__(
        self,
        slot: SessionSlot,
        store: DurableStore | None,
        config: StorageConfig,
        cache: BinaryConversionCache | None = None,
        tracker: ProcessingTracker | None = None,
        on_warning: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ):
        """
        Initialize autosave.

        Args:
            slot: Quota-limited slot holding the session document
            store: Durable store for large bodies (None when not configured)
            config: Engine configuration (idle delay, kill-switch)
            cache: Conversion cache cleared together with the project
            tracker: Processing tracker cleared together with the project
            on_warning: User-facing warnings such as quota exhaustion
            on_error: Failures absorbed instead of raised
        """
        self.slot = slot
        self.store = store
        self.config = config
        self.cache = cache
        self.tracker = tracker
        self.on_warning = on_warning
        self.on_error = on_error

        self._write_lock = asyncio.Lock()
        self._pending: asyncio.Task | None = None
        self._pending_state: ProjectState | None = None
        # Bumped by every clear; work started under an older value is stale
        self._generation = 0
        # (kind, category, id) -> change marker of what this instance last wrote
        self._written: dict[tuple[str, str, str], Hashable] = {}

    @property
    def durable_enabled(self) -> bool:
        """True when bodies can be kept in the durable store."""
        return (
            self.config.durable_store_enabled
            and self.store is not None
            and self.store.available
        )

    def _warn(self, message: str) -> None:
        if self.on_warning is not None:
            self.on_warning(message)

    def _error(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)

    # =========================================================================
    # Autosave
    # =========================================================================

    async def autosave(self, state: ProjectState, immediate: bool = False) -> bool:
        """
        Save the session.

        Args:
            state: Current project state (copied; later edits do not leak in)
            immediate: Write now instead of at the next idle moment

        Returns:
            True when the document was written by this call. A deferred save
            returns False; its outcome is reported through the callbacks.
        """
        snapshot = copy.deepcopy(state)
        self._cancel_pending()

        if immediate:
            return await self._write(snapshot)

        self._pending_state = snapshot
        self._pending = asyncio.create_task(self._deferred_write(snapshot))
        return False

    async def _deferred_write(self, state: ProjectState) -> None:
        await asyncio.sleep(self.config.autosave_idle_ms / 1000)
        # From here on the write is no longer cancellable
        self._pending = None
        self._pending_state = None
        try:
            await self._write(state)
        except Exception as e:
            # Nobody awaits this task
            logger.error(f"Deferred autosave failed: {e}", exc_info=True)
            self._error(f"{SAVE_ERROR}: {e}")

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._pending_state = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def flush(self) -> bool:
        """Write a pending deferred save now (before navigation or shutdown)."""
        state = self._pending_state
        self._cancel_pending()
        if state is None:
            # Wait for a write that may already be running
            async with self._write_lock:
                return False
        return await self._write(state)

    async def _write(self, state: ProjectState) -> bool:
        async with self._write_lock:
            generation = self._generation

            try:
                if self.durable_enabled:
                    plan = plan_session(state, BodyMode.REFERENCE)
                    await self._persist_bodies(plan)
                else:
                    plan = plan_session(state, BodyMode.INLINE)
                    if not await self.slot.fits(SESSION_KEY, json.dumps(plan.document)):
                        logger.info("Inline session does not fit the slot; dropping bodies")
                        plan = plan_session(state, BodyMode.DROPPED)

                if generation != self._generation:
                    logger.info("Autosave superseded by a project clear")
                    return False

                await self.slot.set_item(SESSION_KEY, json.dumps(plan.document))
            except QuotaExceededError as e:
                logger.warning(f"Autosave abandoned: {e.message}")
                self._warn(QUOTA_WARNING)
                return False
            except StorageIOError as e:
                logger.error(f"Autosave failed: {e.message}")
                self._error(f"{SAVE_ERROR}: {e.message}")
                return False

            if self.durable_enabled:
                await self._prune(plan)

            logger.debug(
                f"Session saved ({len(plan.texts)} texts, {len(plan.blobs)} blobs referenced)"
            )
            return True

    async def _persist_bodies(self, plan: SessionPlan) -> None:
        """Write changed text bodies and binaries before the document references them."""
        assert self.store is not None

        for text in plan.texts:
            key = ("text", text.category.value, text.id)
            marker = hash((text.text, text.name))
            if self._written.get(key) == marker:
                continue
            if await self.store.put_text(text):
                self._written[key] = marker

        for blob in plan.blobs:
            key = ("blob", "", blob.id)
            marker = plan.blob_markers.get(blob.id)
            if marker is not None and self._written.get(key) == marker:
                continue
            if await self.store.put_blob(blob):
                self._written[key] = marker

    async def _prune(self, plan: SessionPlan) -> None:
        """Delete bodies this instance wrote earlier that are no longer referenced."""
        assert self.store is not None

        referenced = {("text", t.category.value, t.id) for t in plan.texts}
        referenced |= {("blob", "", b.id) for b in plan.blobs}

        for key in [k for k in self._written if k not in referenced]:
            kind, category, record_id = key
            if kind == "text":
                await self.store.delete_text(TextCategory(category), record_id)
            else:
                await self.store.delete_blob(record_id)
            del self._written[key]

    # =========================================================================
    # Restore
    # =========================================================================

    async def _read_document(self) -> dict[str, Any] | None:
        try:
            raw = await self.slot.get_item(SESSION_KEY)
        except StorageIOError as e:
            logger.warning(f"Session slot unreadable: {e.message}")
            return None
        if raw is None:
            return None

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Saved session is corrupt: {e}")
            return None
        return document if isinstance(document, dict) else None

    async def check_saved_session(self) -> dict[str, Any] | None:
        """
        Cheap probe for a saved session.

        Returns:
            Dict with ``saved_at`` and ``processo_numero``, or None when there
            is no readable session
        """
        document = await self._read_document()
        if document is None:
            return None
        return {
            "saved_at": document.get("savedAt"),
            "processo_numero": document.get("processoNumero") or "",
        }

    async def restore(self, callbacks: StateCallbacks) -> ProjectState | None:
        """
        Restore the saved session into ``callbacks``.

        Ids that no longer resolve are treated as absent. A legacy document is
        re-persisted in the modern shape right after restoring.

        Returns:
            The restored state, or None when there was nothing to restore or
            a clear happened while restoring
        """
        generation = self._generation
        document = await self._read_document()
        if document is None:
            return None

        migrated, applied = migrate(document)
        reader = DocumentReader(self.store if self.durable_enabled else None)
        state = await reader.read(migrated)

        if generation != self._generation:
            logger.info("Restore superseded by a project clear; discarding result")
            return None

        if state.has_documents():
            state.active_tab = "upload"

        callbacks.apply(state)

        if self.durable_enabled and (applied or reader.found_inline):
            logger.info("Re-persisting legacy session in the reference shape")
            await self.autosave(state, immediate=True)
        elif self.durable_enabled:
            self._claim_restored(state)

        return state

    def _claim_restored(self, state: ProjectState) -> None:
        """Record restored bodies as written so a later autosave can prune them."""
        plan = plan_session(state, BodyMode.REFERENCE)
        for text in plan.texts:
            self._written[("text", text.category.value, text.id)] = hash((text.text, text.name))
        for blob in plan.blobs:
            self._written[("blob", "", blob.id)] = plan.blob_markers.get(blob.id)

    # =========================================================================
    # Clear
    # =========================================================================

    async def clear(self, callbacks: StateCallbacks | None = None) -> list[str]:
        """
        Remove the session and purge every project domain.

        Each domain is purged independently; a failing domain is logged and
        does not stop the others.

        Returns:
            Names of the domains that could not be purged
        """
        self._generation += 1
        self._cancel_pending()
        failed: list[str] = []

        async with self._write_lock:
            try:
                await self.slot.remove_item(SESSION_KEY)
            except StorageIOError as e:
                logger.error(f"Could not remove saved session: {e.message}")
                self._error(f"{SAVE_ERROR}: {e.message}")

            if self.store is not None and self.store.available:
                for domain in PROJECT_DOMAINS:
                    try:
                        cleared = await self.store.clear_domain(domain)
                    except Exception as e:
                        logger.warning(f"Purge of {domain.value} raised: {e}")
                        cleared = False
                    if not cleared:
                        failed.append(domain.value)

            self._written.clear()

        if failed:
            logger.warning(f"Partial cleanup: could not purge {', '.join(failed)}")

        if self.cache is not None:
            self.cache.clear()
        if self.tracker is not None:
            self.tracker.clear()
        if callbacks is not None:
            callbacks.apply(ProjectState())

        return failed
