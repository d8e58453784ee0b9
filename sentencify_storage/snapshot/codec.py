"""
Portable project snapshot.

A snapshot is one self-contained JSON document: case metadata, every text
body inline, every binary inlined as base64 and every auxiliary domain
flattened into a keyed map. Import is a full replace of the current project.

Wire format (top level):

    version, exportedAt, processoNumero, partesProcesso, tokenMetrics,
    aiSettings (never with apiKeys), anonymizationNames,
    extractedTopics, selectedTopics,
    pastedPeticaoTexts / pastedContestacaoTexts / pastedComplementaryTexts,
    extractedTexts {peticoes, contestacoes, complementares},
    uploadPdfs {peticoes, contestacoes, complementares: [{name, id, fileData}]},
    processingModes, proofs, proofTopicLinks, proofConclusions,
    factsComparison {"{topicTitle}_{source}": result},
    sentenceReviewCache {scope: result},
    chatHistory {topicTitle: {messages, includeMainDocs, includeComplementaryDocs}}
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from ..conversion_cache import BinaryConversionCache
from ..durable.base import DurableStore
from ..exceptions import MalformedSnapshotError
from ..models import ChatHistoryEntry, FactsComparisonEntry, ReviewScope
from ..session.document import DocumentReader, iso_now
from ..state import (
    PASTED_KEYS,
    PLURAL_KEYS,
    DocumentRole,
    PastedText,
    ProjectState,
    StateCallbacks,
    StoredFile,
)
from .migrations import migrate

if TYPE_CHECKING:
    from ..session.autosave import SessionAutosave

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "2.0"

# Fields of aiSettings that never leave the machine
CREDENTIAL_KEYS = ("apiKeys",)


def strip_credentials(ai_settings: dict[str, Any]) -> dict[str, Any]:
    """Copy of the AI settings without credential fields."""
    return {k: v for k, v in ai_settings.items() if k not in CREDENTIAL_KEYS}


def _assign_ids(state: ProjectState) -> int:
    """Give a fresh uuid4 to every entity lacking an id. Returns how many."""
    assigned = 0

    def ensure(item: Any) -> None:
        nonlocal assigned
        if not item.id:
            item.id = str(uuid.uuid4())
            assigned += 1

    for role in DocumentRole:
        for text in state.pasted_texts[role]:
            ensure(text)
        for text in state.extracted_texts[role]:
            ensure(text)
        for stored in state.uploaded_files[role]:
            ensure(stored)
    for proof in state.proofs:
        ensure(proof)
        for attachment in proof.attachments:
            ensure(attachment)
    return assigned


class ProjectSnapshotCodec:
    """Build and import portable project snapshots."""

    def __init__(
        self,
        store: DurableStore | None,
        autosave: SessionAutosave,
        cache: BinaryConversionCache,
    ):
        """
        Initialize codec.

        Args:
            store: Durable store holding the auxiliary domains
            autosave: Session autosave used to wipe and re-persist on import
            cache: Conversion cache for base64 encodings
        """
        self.store = store
        self.autosave = autosave
        self.cache = cache

    @property
    def _store_ready(self) -> bool:
        return self.store is not None and self.store.available

    # =========================================================================
    # Export
    # =========================================================================

    def _file_entry(self, stored: StoredFile) -> dict[str, Any]:
        return {
            "name": stored.name,
            "id": stored.id,
            "mimeType": stored.mime_type,
            "fileData": self.cache.convert(stored),
        }

    @staticmethod
    def _text_entry(text: PastedText) -> dict[str, Any]:
        return {"id": text.id, "name": text.name, "text": text.text}

    async def build_snapshot(self, state: ProjectState) -> dict[str, Any]:
        """
        Build the portable snapshot of ``state`` and the auxiliary domains.

        Credentials are always stripped from the AI settings.
        """
        snapshot: dict[str, Any] = {
            "version": SNAPSHOT_VERSION,
            "exportedAt": iso_now(),
            "processoNumero": state.processo_numero,
            "partesProcesso": state.partes_processo,
            "tokenMetrics": state.token_metrics,
            "aiSettings": strip_credentials(state.ai_settings),
            "anonymizationNames": state.anonymization_names,
            "extractedTopics": state.extracted_topics,
            "selectedTopics": state.selected_topics,
            "proofTopicLinks": state.proof_topic_links,
            "proofConclusions": state.proof_conclusions,
        }

        extracted: dict[str, list[dict[str, Any]]] = {}
        upload_pdfs: dict[str, list[dict[str, Any]]] = {}
        modes: dict[str, list[str]] = {}
        for role in DocumentRole:
            plural = PLURAL_KEYS[role]
            snapshot[PASTED_KEYS[role]] = [self._text_entry(t) for t in state.pasted_texts[role]]
            extracted[plural] = [self._text_entry(t) for t in state.extracted_texts[role]]
            upload_pdfs[plural] = [self._file_entry(f) for f in state.uploaded_files[role]]
            modes[plural] = list(state.processing_modes[role])
        snapshot["extractedTexts"] = extracted
        snapshot["uploadPdfs"] = upload_pdfs
        snapshot["processingModes"] = modes

        proofs = []
        for proof in state.proofs:
            entry: dict[str, Any] = {
                "id": proof.id,
                "name": proof.name,
                "type": proof.kind,
                "uploadDate": proof.upload_date,
                "attachments": [self._file_entry(a) for a in proof.attachments],
            }
            if proof.text:
                entry["text"] = proof.text
            if proof.file is not None:
                entry["mimeType"] = proof.file.mime_type
                entry["fileData"] = self.cache.convert(proof.file)
            proofs.append(entry)
        snapshot["proofs"] = proofs

        facts: dict[str, Any] = {}
        reviews: dict[str, str] = {}
        chats: dict[str, Any] = {}
        if self._store_ready:
            for comparison in await self.store.list_comparisons():
                facts[comparison.composite_key] = comparison.result
            for review in await self.store.list_reviews():
                reviews[review.scope.value] = review.result
            for chat in await self.store.list_chats():
                chats[chat.topic_title] = chat.to_export()
        snapshot["factsComparison"] = facts
        snapshot["sentenceReviewCache"] = reviews
        snapshot["chatHistory"] = chats

        logger.info(
            f"Snapshot built: {sum(len(v) for v in upload_pdfs.values())} uploads, "
            f"{len(proofs)} proofs, {len(facts)} comparisons, {len(chats)} chats"
        )
        return snapshot

    # =========================================================================
    # Import
    # =========================================================================

    async def import_snapshot(
        self,
        document: Any,
        callbacks: StateCallbacks,
        api_keys: dict[str, Any] | None = None,
    ) -> ProjectState:
        """
        Replace the current project with a snapshot.

        Args:
            document: Parsed snapshot
            callbacks: Receive every restored state slice
            api_keys: Credentials currently held, kept across the import

        Returns:
            The imported project state

        Raises:
            MalformedSnapshotError: If the snapshot has no version; nothing
                is modified in that case
        """
        if not isinstance(document, dict):
            raise MalformedSnapshotError("top level is not an object")
        if not document.get("version"):
            raise MalformedSnapshotError("missing version")

        migrated, applied = migrate(document)
        state = await DocumentReader(None).read(migrated)
        assigned = _assign_ids(state)
        state.active_tab = "upload"
        state.ai_settings = strip_credentials(state.ai_settings)
        if api_keys:
            state.ai_settings["apiKeys"] = dict(api_keys)

        # Full replace from here on
        failed = await self.autosave.clear()
        if failed:
            logger.warning(f"Import continues after partial cleanup: {failed}")

        if self._store_ready:
            await self._import_aux_domains(migrated)

        callbacks.apply(state)
        await self.autosave.autosave(state, immediate=True)

        logger.info(
            f"Snapshot imported (version {document.get('version')}, "
            f"migrations: {applied or 'none'}, ids assigned: {assigned})"
        )
        return state

    async def _import_aux_domains(self, document: dict[str, Any]) -> None:
        assert self.store is not None

        for key, result in (document.get("factsComparison") or {}).items():
            parsed = FactsComparisonEntry.split_composite_key(key)
            if parsed is None:
                logger.debug(f"Ignoring facts comparison with unknown key: {key}")
                continue
            topic_title, source = parsed
            await self.store.save_comparison(topic_title, source, result)

        for scope, result in (document.get("sentenceReviewCache") or {}).items():
            try:
                review_scope = ReviewScope(scope)
            except ValueError:
                logger.debug(f"Ignoring sentence review with unknown scope: {scope}")
                continue
            if isinstance(result, str) and result:
                await self.store.save_review(review_scope, result)

        for topic_title, value in (document.get("chatHistory") or {}).items():
            if not isinstance(value, dict) or not isinstance(value.get("messages"), list):
                continue
            await self.store.save_chat(
                ChatHistoryEntry(
                    topic_title=topic_title,
                    messages=value["messages"],
                    include_main_docs=value.get("includeMainDocs"),
                    include_complementary_docs=value.get("includeComplementaryDocs"),
                ),
                preserve_flags=False,
            )
