"""
In-memory project state and the callback surface used to hand state back.

ProjectState is the projection the editing UI owns. The engine never holds
it for longer than one operation: autosave and export read it, restore and
import rebuild it slice by slice through StateCallbacks.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import now_ms


class DocumentRole(Enum):
    """Role of a case document."""

    PETICAO = "peticao"
    CONTESTACAO = "contestacao"
    COMPLEMENTAR = "complementar"


# Wire names used by both the session document and the project snapshot
PASTED_KEYS = {
    DocumentRole.PETICAO: "pastedPeticaoTexts",
    DocumentRole.CONTESTACAO: "pastedContestacaoTexts",
    DocumentRole.COMPLEMENTAR: "pastedComplementaryTexts",
}
PLURAL_KEYS = {
    DocumentRole.PETICAO: "peticoes",
    DocumentRole.CONTESTACAO: "contestacoes",
    DocumentRole.COMPLEMENTAR: "complementares",
}

VALID_PROCESSING_MODES = ("pdfjs", "tesseract", "pdf-puro", "claude-vision")
DEFAULT_PROCESSING_MODE = "pdfjs"


def empty_token_metrics() -> dict[str, Any]:
    return {
        "totalInput": 0,
        "totalOutput": 0,
        "totalCacheRead": 0,
        "totalCacheCreation": 0,
        "requestCount": 0,
        "lastUpdated": None,
    }


def empty_partes() -> dict[str, Any]:
    return {"reclamante": "", "reclamadas": []}


def _by_role(factory: Callable[[], Any]) -> dict[DocumentRole, Any]:
    return {role: factory() for role in DocumentRole}


@dataclass
class PastedText:
    """A text body pasted or extracted for a case document."""

    text: str
    name: str = ""
    id: str | None = None


@dataclass
class StoredFile:
    """A binary file held in memory by the UI."""

    name: str
    data: bytes
    id: str | None = None
    mime_type: str = "application/pdf"
    modified_at: int = field(default_factory=now_ms)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Proof:
    """A piece of evidence: an uploaded PDF or a typed text."""

    name: str
    kind: str = "pdf"  # "pdf" or "text"
    id: str | None = None
    text: str = ""
    file: StoredFile | None = None
    attachments: list[StoredFile] = field(default_factory=list)
    upload_date: str | None = None


@dataclass
class ProjectState:
    """Everything the editing UI considers one project."""

    processo_numero: str = ""
    partes_processo: dict[str, Any] = field(default_factory=empty_partes)
    active_tab: str = "upload"
    token_metrics: dict[str, Any] = field(default_factory=empty_token_metrics)
    ai_settings: dict[str, Any] = field(default_factory=dict)
    anonymization_names: str = ""

    extracted_topics: list[dict[str, Any]] = field(default_factory=list)
    selected_topics: list[dict[str, Any]] = field(default_factory=list)

    pasted_texts: dict[DocumentRole, list[PastedText]] = field(
        default_factory=lambda: _by_role(list)
    )
    extracted_texts: dict[DocumentRole, list[PastedText]] = field(
        default_factory=lambda: _by_role(list)
    )
    uploaded_files: dict[DocumentRole, list[StoredFile]] = field(
        default_factory=lambda: _by_role(list)
    )
    processing_modes: dict[DocumentRole, list[str]] = field(
        default_factory=lambda: _by_role(list)
    )

    proofs: list[Proof] = field(default_factory=list)
    proof_topic_links: dict[str, list[str]] = field(default_factory=dict)
    proof_conclusions: dict[str, str] = field(default_factory=dict)

    def has_documents(self) -> bool:
        return any(self.pasted_texts[role] or self.uploaded_files[role] for role in DocumentRole)

    def bind_callbacks(self, **overrides: Any) -> StateCallbacks:
        """Callbacks that write every restored slice back into this state."""

        def setter(name: str) -> Callable[[Any], None]:
            def _set(value: Any) -> None:
                setattr(self, name, value)

            return _set

        callbacks = StateCallbacks(
            **{slice_name: setter(attr) for slice_name, attr in _SLICE_ATTRS.items()}
        )
        for key, value in overrides.items():
            setattr(callbacks, key, value)
        return callbacks


@dataclass
class StateCallbacks:
    """One setter per logical state slice, plus user-facing notifications.

    Any setter left as None is skipped. ``on_warning`` receives user-facing
    messages such as a quota warning; ``on_error`` receives failures that
    were absorbed instead of raised.
    """

    set_processo_numero: Callable[[str], None] | None = None
    set_partes_processo: Callable[[dict[str, Any]], None] | None = None
    set_active_tab: Callable[[str], None] | None = None
    set_token_metrics: Callable[[dict[str, Any]], None] | None = None
    set_ai_settings: Callable[[dict[str, Any]], None] | None = None
    set_anonymization_names: Callable[[str], None] | None = None
    set_extracted_topics: Callable[[list[dict[str, Any]]], None] | None = None
    set_selected_topics: Callable[[list[dict[str, Any]]], None] | None = None
    set_pasted_texts: Callable[[dict[DocumentRole, list[PastedText]]], None] | None = None
    set_extracted_texts: Callable[[dict[DocumentRole, list[PastedText]]], None] | None = None
    set_uploaded_files: Callable[[dict[DocumentRole, list[StoredFile]]], None] | None = None
    set_processing_modes: Callable[[dict[DocumentRole, list[str]]], None] | None = None
    set_proofs: Callable[[list[Proof]], None] | None = None
    set_proof_topic_links: Callable[[dict[str, list[str]]], None] | None = None
    set_proof_conclusions: Callable[[dict[str, str]], None] | None = None

    on_warning: Callable[[str], None] | None = None
    on_error: Callable[[str], None] | None = None

    def apply(self, state: ProjectState) -> None:
        """Push every slice of ``state`` through the matching setter."""
        for slice_name, attr in _SLICE_ATTRS.items():
            setter = getattr(self, slice_name)
            if setter is not None:
                setter(copy.deepcopy(getattr(state, attr)))

    def warn(self, message: str) -> None:
        if self.on_warning is not None:
            self.on_warning(message)

    def error(self, message: str) -> None:
        if self.on_error is not None:
            self.on_error(message)


_SLICE_ATTRS = {
    "set_processo_numero": "processo_numero",
    "set_partes_processo": "partes_processo",
    "set_active_tab": "active_tab",
    "set_token_metrics": "token_metrics",
    "set_ai_settings": "ai_settings",
    "set_anonymization_names": "anonymization_names",
    "set_extracted_topics": "extracted_topics",
    "set_selected_topics": "selected_topics",
    "set_pasted_texts": "pasted_texts",
    "set_extracted_texts": "extracted_texts",
    "set_uploaded_files": "uploaded_files",
    "set_processing_modes": "processing_modes",
    "set_proofs": "proofs",
    "set_proof_topic_links": "proof_topic_links",
    "set_proof_conclusions": "proof_conclusions",
}


class ProcessingTracker:
    """Instance-local record of work currently in flight.

    Holds one id set per kind of work (``"proof-analysis"``,
    ``"extraction"``...). Owned by the engine and handed to whichever
    collaborator needs it; never shared between instances.
    """

    def __init__(self) -> None:
        self._active: dict[str, set[str]] = {}

    def start(self, kind: str, item_id: str) -> None:
        self._active.setdefault(kind, set()).add(item_id)

    def finish(self, kind: str, item_id: str) -> None:
        self._active.get(kind, set()).discard(item_id)

    def is_processing(self, kind: str, item_id: str) -> bool:
        return item_id in self._active.get(kind, set())

    def active(self, kind: str) -> frozenset[str]:
        return frozenset(self._active.get(kind, set()))

    def clear(self, kind: str | None = None) -> None:
        if kind is None:
            self._active.clear()
        else:
            self._active.pop(kind, None)
