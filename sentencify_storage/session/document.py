"""
Session document shape.

The session document is the small JSON object kept in the quota-limited slot.
In its modern shape it carries only metadata and ids: every large text body
lives in the text_blobs domain and every binary in the blobs domain.

Reading is shared with snapshot import: any item may carry its body inline
(``text`` / ``fileData``) or by reference (``id`` only), so the same reader
accepts legacy session documents, degraded documents written while the
durable store was off, and full project snapshots.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..conversion_cache import BinaryConversionCache
from ..durable.base import DurableStore
from ..models import (
    BinaryBlobRecord,
    BlobCategory,
    TextBlobRecord,
    TextCategory,
    attachment_blob_id,
    blob_id,
)
from ..state import (
    DEFAULT_PROCESSING_MODE,
    PASTED_KEYS,
    PLURAL_KEYS,
    VALID_PROCESSING_MODES,
    DocumentRole,
    PastedText,
    ProjectState,
    Proof,
    StoredFile,
    empty_partes,
    empty_token_metrics,
)

logger = logging.getLogger(__name__)

SESSION_KEY = "sentencifySession"
SESSION_VERSION = "2.0"

FILE_ID_KEYS = {
    DocumentRole.PETICAO: "peticaoFileIds",
    DocumentRole.CONTESTACAO: "contestacaoFileIds",
    DocumentRole.COMPLEMENTAR: "complementaryFileIds",
}


def iso_now() -> str:
    return datetime.now(UTC).isoformat()


class BodyMode(Enum):
    """Where large bodies go when building a session document."""

    REFERENCE = "reference"  # bodies in the durable store, ids in the document
    INLINE = "inline"  # texts inline, binaries dropped
    DROPPED = "dropped"  # metadata only


@dataclass
class SessionPlan:
    """A session document plus the durable records it refers to."""

    document: dict[str, Any]
    texts: list[TextBlobRecord] = field(default_factory=list)
    blobs: list[BinaryBlobRecord] = field(default_factory=list)
    # Change markers per blob id, so unchanged binaries are not rewritten
    blob_markers: dict[str, Hashable] = field(default_factory=dict)


def plan_session(state: ProjectState, mode: BodyMode = BodyMode.REFERENCE) -> SessionPlan:
    """
    Build the session document for ``state``.

    Items without an id get a positional one (``peticao-0``, ``p1``...) so
    the document can reference their bodies.
    """
    plan = SessionPlan(
        document={
            "version": SESSION_VERSION,
            "savedAt": iso_now(),
            "processoNumero": state.processo_numero,
            "partesProcesso": state.partes_processo,
            "activeTab": state.active_tab,
            "tokenMetrics": state.token_metrics,
            "aiSettings": state.ai_settings,
            "anonymizationNames": state.anonymization_names,
            "extractedTopics": state.extracted_topics,
            "selectedTopics": state.selected_topics,
            "processingModes": {
                PLURAL_KEYS[role]: list(state.processing_modes[role]) for role in DocumentRole
            },
            "proofTopicLinks": state.proof_topic_links,
            "proofConclusions": state.proof_conclusions,
        }
    )

    def text_entry(item: PastedText, category: TextCategory, item_id: str) -> dict[str, Any]:
        entry: dict[str, Any] = {"id": item_id, "name": item.name}
        if mode is BodyMode.REFERENCE:
            plan.texts.append(
                TextBlobRecord(id=item_id, category=category, text=item.text, name=item.name)
            )
        elif mode is BodyMode.INLINE:
            entry["text"] = item.text
        return entry

    def add_blob(record_id: str, stored: StoredFile) -> None:
        plan.blobs.append(
            BinaryBlobRecord(
                id=record_id,
                payload=stored.data,
                mime_type=stored.mime_type,
                file_name=stored.name,
            )
        )
        plan.blob_markers[record_id] = BinaryConversionCache.fingerprint(stored)

    extracted: dict[str, list[dict[str, Any]]] = {}
    for role in DocumentRole:
        plan.document[PASTED_KEYS[role]] = [
            text_entry(item, TextCategory.PASTED, item.id or f"{role.value}-{i}")
            for i, item in enumerate(state.pasted_texts[role])
        ]
        extracted[PLURAL_KEYS[role]] = [
            text_entry(item, TextCategory.EXTRACTED, item.id or f"{role.value}-{i}")
            for i, item in enumerate(state.extracted_texts[role])
        ]

        file_ids: list[str] = []
        if mode is BodyMode.REFERENCE:
            for i, stored in enumerate(state.uploaded_files[role]):
                file_id = stored.id or f"{role.value}-{i}"
                add_blob(blob_id(BlobCategory.UPLOAD, file_id), stored)
                file_ids.append(file_id)
        plan.document[FILE_ID_KEYS[role]] = file_ids
    plan.document["extractedTexts"] = extracted

    proofs = []
    for i, proof in enumerate(state.proofs):
        proof_id = proof.id or f"p{i}"
        entry: dict[str, Any] = {
            "id": proof_id,
            "name": proof.name,
            "type": proof.kind,
            "uploadDate": proof.upload_date,
            "attachments": [],
        }
        if proof.text:
            text = text_entry(PastedText(proof.text, proof.name), TextCategory.PROOF, proof_id)
            if "text" in text:
                entry["text"] = text["text"]
        if proof.file is not None:
            entry["mimeType"] = proof.file.mime_type
            entry["size"] = proof.file.size
            if mode is BodyMode.REFERENCE:
                add_blob(blob_id(BlobCategory.PROOF, proof_id), proof.file)

        for j, attachment in enumerate(proof.attachments):
            attachment_id = attachment.id or f"a{j}"
            entry["attachments"].append(
                {"id": attachment_id, "name": attachment.name, "mimeType": attachment.mime_type}
            )
            if mode is BodyMode.REFERENCE:
                add_blob(attachment_blob_id(proof_id, attachment_id), attachment)
        proofs.append(entry)
    plan.document["proofs"] = proofs

    return plan


# =============================================================================
# Reading
# =============================================================================


def decode_file_data(data: Any) -> bytes | None:
    """Decode base64 file data (optionally a ``data:`` URL). None when invalid."""
    if not isinstance(data, str) or not data:
        return None
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded or None


class DocumentReader:
    """Rebuild a ProjectState from a session document or a snapshot.

    Tracks whether any body was found inline, which marks a legacy session
    document that must be re-persisted in the modern shape.
    """

    def __init__(self, store: DurableStore | None):
        self.store = store
        self.found_inline = False

    async def _text(
        self, item: Any, category: TextCategory, default_name: str = ""
    ) -> PastedText | None:
        if isinstance(item, str):
            self.found_inline = True
            return PastedText(text=item, name=default_name)
        if not isinstance(item, dict):
            return None

        item_id = item.get("id")
        name = item.get("name") or default_name
        if isinstance(item.get("text"), str):
            self.found_inline = True
            return PastedText(text=item["text"], name=name, id=item_id)

        if not item_id or self.store is None:
            return None
        record = await self.store.get_text(category, item_id)
        if record is None:
            logger.debug(f"Unresolved {category.value} text {item_id}")
            return None
        return PastedText(text=record.text, name=name or record.name, id=item_id)

    async def _file(self, item: dict[str, Any], record_id: str | None) -> StoredFile | None:
        """A file carried inline as ``fileData`` or referenced by blob id."""
        file_id = item.get("id")
        name = item.get("name") or ""
        mime_type = item.get("mimeType") or "application/pdf"

        if "fileData" in item:
            self.found_inline = True
            data = decode_file_data(item["fileData"])
            if data is None:
                logger.warning(f"Skipping file {name!r}: invalid base64 data")
                return None
            return StoredFile(name=name, data=data, id=file_id, mime_type=mime_type)

        if record_id is None or self.store is None:
            return None
        record = await self.store.get_blob(record_id)
        if record is None:
            logger.debug(f"Unresolved blob {record_id}")
            return None
        return StoredFile(
            name=name or record.file_name,
            data=record.payload,
            id=file_id,
            mime_type=record.mime_type or mime_type,
            modified_at=record.saved_at,
        )

    async def _uploaded_files(self, doc: dict[str, Any], role: DocumentRole) -> list[StoredFile]:
        files: list[StoredFile] = []

        inline = (doc.get("uploadPdfs") or {}).get(PLURAL_KEYS[role]) or []
        for item in inline:
            if isinstance(item, dict):
                stored = await self._file(item, None)
                if stored is not None:
                    files.append(stored)

        for file_id in doc.get(FILE_ID_KEYS[role]) or []:
            if not isinstance(file_id, str):
                continue
            stored = await self._file({"id": file_id}, blob_id(BlobCategory.UPLOAD, file_id))
            if stored is not None:
                files.append(stored)
        return files

    async def _proof(self, item: Any) -> Proof | None:
        if not isinstance(item, dict):
            return None

        proof_id = item.get("id")
        proof = Proof(
            name=item.get("name") or "",
            kind=item.get("type") or "pdf",
            id=proof_id,
            upload_date=item.get("uploadDate"),
        )

        text_ref = {"id": proof_id}
        if isinstance(item.get("text"), str):
            text_ref["text"] = item["text"]
        text = await self._text(text_ref, TextCategory.PROOF)
        if text is not None:
            proof.text = text.text

        proof.file = await self._file(
            {k: v for k, v in item.items() if k in ("id", "name", "mimeType", "fileData")},
            blob_id(BlobCategory.PROOF, proof_id) if proof_id else None,
        )

        for attachment in item.get("attachments") or []:
            if not isinstance(attachment, dict):
                continue
            attachment_id = attachment.get("id")
            record_id = (
                attachment_blob_id(proof_id, attachment_id)
                if proof_id and attachment_id
                else None
            )
            stored = await self._file(attachment, record_id)
            if stored is not None:
                proof.attachments.append(stored)

        return proof

    async def read(self, doc: dict[str, Any]) -> ProjectState:
        """Build a ProjectState from an already-migrated document."""
        state = ProjectState(
            processo_numero=doc.get("processoNumero") or "",
            partes_processo=doc.get("partesProcesso") or empty_partes(),
            active_tab=doc.get("activeTab") or "upload",
            token_metrics={**empty_token_metrics(), **(doc.get("tokenMetrics") or {})},
            ai_settings=doc.get("aiSettings") or {},
            anonymization_names=doc.get("anonymizationNames") or "",
            extracted_topics=doc.get("extractedTopics") or [],
            selected_topics=doc.get("selectedTopics") or [],
            proof_topic_links=doc.get("proofTopicLinks") or {},
            proof_conclusions=doc.get("proofConclusions") or {},
        )

        extracted = doc.get("extractedTexts") or {}
        modes = doc.get("processingModes") or {}
        for role in DocumentRole:
            for item in doc.get(PASTED_KEYS[role]) or []:
                text = await self._text(item, TextCategory.PASTED)
                if text is not None:
                    state.pasted_texts[role].append(text)

            for item in extracted.get(PLURAL_KEYS[role]) or []:
                text = await self._text(item, TextCategory.EXTRACTED)
                if text is not None:
                    state.extracted_texts[role].append(text)

            state.uploaded_files[role] = await self._uploaded_files(doc, role)
            state.processing_modes[role] = [
                mode if mode in VALID_PROCESSING_MODES else DEFAULT_PROCESSING_MODE
                for mode in modes.get(PLURAL_KEYS[role]) or []
            ]

        for item in doc.get("proofs") or []:
            proof = await self._proof(item)
            if proof is not None:
                state.proofs.append(proof)

        return state
