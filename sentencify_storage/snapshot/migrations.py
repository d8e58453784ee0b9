"""
Legacy document migrations.

Older releases wrote session documents and project snapshots in several
shapes over time. Each migration recognizes one legacy shape through a
structural predicate and rewrites it into the next shape. The chain is run
repeatedly until no migration applies, bounded by the chain length so a
misbehaving predicate can never loop forever.

Migrations are pure: they never mutate their input.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..state import (
    DEFAULT_PROCESSING_MODE,
    PASTED_KEYS,
    PLURAL_KEYS,
    VALID_PROCESSING_MODES,
    DocumentRole,
)

logger = logging.getLogger(__name__)

Document = dict[str, Any]

DEFAULT_NAMES = {
    DocumentRole.PETICAO: "Petição Inicial",
    DocumentRole.CONTESTACAO: "Contestação",
    DocumentRole.COMPLEMENTAR: "Documento Complementar",
}

SINGULAR_KEYS = {
    DocumentRole.PETICAO: "peticao",
    DocumentRole.CONTESTACAO: "contestacao",
    DocumentRole.COMPLEMENTAR: "complementar",
}

_SINGULAR_PASTED = {
    DocumentRole.PETICAO: "pastedPeticaoText",
    DocumentRole.CONTESTACAO: "pastedContestacaoText",
    DocumentRole.COMPLEMENTAR: "pastedComplementaryText",
}


@dataclass(frozen=True)
class Migration:
    """One step of the legacy-shape chain."""

    name: str
    applies: Callable[[Document], bool]
    apply: Callable[[Document], Document]


# =============================================================================
# Singular pasted text -> plural list
# =============================================================================


def _has_singular_pasted(doc: Document) -> bool:
    return any(key in doc for key in _SINGULAR_PASTED.values())


def _pluralize_pasted(doc: Document) -> Document:
    migrated = copy.deepcopy(doc)
    for role, singular in _SINGULAR_PASTED.items():
        if singular not in migrated:
            continue
        text = migrated.pop(singular)
        plural = PASTED_KEYS[role]
        if isinstance(text, str) and text and not migrated.get(plural):
            migrated[plural] = [{"text": text, "name": DEFAULT_NAMES[role]}]
    return migrated


# =============================================================================
# analyzedDocuments (singular and plural) -> uploadPdfs + extractedTexts
# =============================================================================


def _has_analyzed_documents(doc: Document) -> bool:
    return isinstance(doc.get("analyzedDocuments"), dict)


def _inline_pdf(value: Any, role: DocumentRole) -> dict[str, Any] | None:
    if isinstance(value, str) and value:
        return {"name": f"{DEFAULT_NAMES[role]}.pdf", "fileData": value}
    if isinstance(value, dict) and value.get("fileData"):
        return {**value, "name": value.get("name") or f"{DEFAULT_NAMES[role]}.pdf"}
    return None


def _inline_text(value: Any, role: DocumentRole) -> dict[str, Any] | None:
    if isinstance(value, str) and value:
        return {"text": value, "name": DEFAULT_NAMES[role]}
    if isinstance(value, dict) and isinstance(value.get("text"), str):
        return {**value, "name": value.get("name") or DEFAULT_NAMES[role]}
    return None


def _split_analyzed_documents(doc: Document) -> Document:
    """Move analyzed documents into uploadPdfs (binaries) and extractedTexts."""
    migrated = copy.deepcopy(doc)
    analyzed = migrated.pop("analyzedDocuments")
    upload_pdfs = migrated.setdefault("uploadPdfs", {})
    extracted = migrated.setdefault("extractedTexts", {})

    for role in DocumentRole:
        plural = PLURAL_KEYS[role]
        singular = SINGULAR_KEYS[role]
        pdfs: list[Any] = list(analyzed.get(plural) or [])
        texts: list[Any] = list(analyzed.get(f"{plural}Text") or [])

        if singular in analyzed:
            kind = analyzed.get(f"{singular}Type", "pdf")
            (texts if kind == "text" else pdfs).append(analyzed[singular])

        for value in pdfs:
            pdf = _inline_pdf(value, role)
            if pdf is not None:
                upload_pdfs.setdefault(plural, []).append(pdf)
        for value in texts:
            text = _inline_text(value, role)
            if text is not None:
                extracted.setdefault(plural, []).append(text)

    return migrated


# =============================================================================
# uploadPdfs singular -> plural
# =============================================================================


def _has_singular_upload_pdfs(doc: Document) -> bool:
    upload_pdfs = doc.get("uploadPdfs")
    return isinstance(upload_pdfs, dict) and any(
        key in upload_pdfs for key in SINGULAR_KEYS.values()
    )


def _pluralize_upload_pdfs(doc: Document) -> Document:
    migrated = copy.deepcopy(doc)
    upload_pdfs = migrated["uploadPdfs"]
    for role, singular in SINGULAR_KEYS.items():
        if singular not in upload_pdfs:
            continue
        value = upload_pdfs.pop(singular)
        pdf = _inline_pdf(value, role)
        if pdf is not None:
            upload_pdfs.setdefault(PLURAL_KEYS[role], []).append(pdf)
    return migrated


# =============================================================================
# proofFiles / proofTexts -> proofs
# =============================================================================


def _has_split_proofs(doc: Document) -> bool:
    return "proofFiles" in doc or "proofTexts" in doc


def _merge_proofs(doc: Document) -> Document:
    migrated = copy.deepcopy(doc)
    proofs = list(migrated.get("proofs") or [])
    for item in migrated.pop("proofFiles", None) or []:
        if isinstance(item, dict):
            proofs.append({**item, "type": item.get("type") or "pdf"})
    for item in migrated.pop("proofTexts", None) or []:
        if isinstance(item, dict):
            proofs.append({**item, "type": "text"})
    migrated["proofs"] = proofs
    return migrated


# =============================================================================
# Processing modes
# =============================================================================


def _mode_values(doc: Document) -> list[Any]:
    modes = doc.get("processingModes")
    if not isinstance(modes, dict):
        return []
    values: list[Any] = []
    for value in modes.values():
        values.extend(value if isinstance(value, list) else [value])
    return values


def _has_legacy_modes(doc: Document) -> bool:
    modes = doc.get("processingModes")
    if modes is not None and not isinstance(modes, dict):
        return True
    if isinstance(modes, dict) and any(not isinstance(v, list) for v in modes.values()):
        return True
    return any(mode not in VALID_PROCESSING_MODES for mode in _mode_values(doc))


def _normalize_modes(doc: Document) -> Document:
    """Map unknown processing modes (e.g. ``gemini-vision``) to ``pdfjs``."""
    migrated = copy.deepcopy(doc)
    modes = migrated.get("processingModes")
    if not isinstance(modes, dict):
        migrated["processingModes"] = {}
        return migrated

    migrated["processingModes"] = {
        key: [
            mode if mode in VALID_PROCESSING_MODES else DEFAULT_PROCESSING_MODE
            for mode in (value if isinstance(value, list) else [value])
        ]
        for key, value in modes.items()
    }
    return migrated


# =============================================================================
# Chat history stored as bare message lists
# =============================================================================


def _has_legacy_chats(doc: Document) -> bool:
    chats = doc.get("chatHistory")
    return isinstance(chats, dict) and any(isinstance(v, list) for v in chats.values())


def _wrap_chats(doc: Document) -> Document:
    migrated = copy.deepcopy(doc)
    migrated["chatHistory"] = {
        topic: {"messages": value} if isinstance(value, list) else value
        for topic, value in migrated["chatHistory"].items()
    }
    return migrated


MIGRATIONS: tuple[Migration, ...] = (
    Migration("singular-pasted-texts", _has_singular_pasted, _pluralize_pasted),
    Migration("analyzed-documents", _has_analyzed_documents, _split_analyzed_documents),
    Migration("singular-upload-pdfs", _has_singular_upload_pdfs, _pluralize_upload_pdfs),
    Migration("split-proofs", _has_split_proofs, _merge_proofs),
    Migration("legacy-processing-modes", _has_legacy_modes, _normalize_modes),
    Migration("legacy-chat-history", _has_legacy_chats, _wrap_chats),
)


def migrate(
    doc: Document,
    chain: tuple[Migration, ...] = MIGRATIONS,
) -> tuple[Document, list[str]]:
    """
    Run the migration chain to a fixed point.

    Args:
        doc: Session document or project snapshot (not mutated)
        chain: Ordered migrations

    Returns:
        Tuple of (migrated document, names of the migrations applied)
    """
    applied: list[str] = []
    current = doc

    for _ in range(len(chain) + 1):
        progressed = False
        for migration in chain:
            if migration.applies(current):
                current = migration.apply(current)
                applied.append(migration.name)
                progressed = True
        if not progressed:
            break
    else:
        logger.warning(f"Migration chain did not settle after {len(chain) + 1} passes: {applied}")

    if applied:
        logger.info(f"Migrated legacy document: {', '.join(applied)}")
    return current, applied
