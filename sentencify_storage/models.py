"""
Record types owned by the durable store.

Every record is a plain dataclass with ``to_dict``/``from_dict`` so that it can
be written to its domain table as JSON and flattened into the portable
project snapshot. Timestamps are epoch milliseconds.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .exceptions import ValidationError


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class BlobCategory(Enum):
    """Owner category encoded as the prefix of a binary blob id."""

    UPLOAD = "upload"
    PROOF = "proof"
    ATTACHMENT = "attachment"


class TextCategory(Enum):
    """Category of a large text body kept out of the session slot."""

    PASTED = "pasted"
    EXTRACTED = "extracted"
    PROOF = "proof"


class FactsSource(Enum):
    """Which material a facts comparison was computed against."""

    MINI_RELATORIO = "mini-relatorio"
    DOCUMENTOS_COMPLETOS = "documentos-completos"


class ReviewScope(Enum):
    """Scope of a sentence review."""

    DECISION_ONLY = "decisionOnly"
    DECISION_WITH_DOCS = "decisionWithDocs"


def blob_id(category: BlobCategory, owner_id: str) -> str:
    """Build a blob id: ``upload-{id}`` or ``proof-{id}``."""
    return f"{category.value}-{owner_id}"


def attachment_blob_id(proof_id: str, attachment_id: str) -> str:
    """Build an attachment blob id: ``attachment-{proofId}-{attachmentId}``."""
    return f"{BlobCategory.ATTACHMENT.value}-{proof_id}-{attachment_id}"


def blob_category_of(record_id: str) -> BlobCategory | None:
    """Recover the category from a blob id prefix."""
    prefix = record_id.split("-", 1)[0]
    try:
        return BlobCategory(prefix)
    except ValueError:
        return None


@dataclass
class BinaryBlobRecord:
    """A binary payload (uploaded PDF, proof file, attachment)."""

    id: str
    payload: bytes
    mime_type: str = "application/pdf"
    file_name: str = ""
    size_bytes: int = 0
    saved_at: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if not self.size_bytes:
            self.size_bytes = len(self.payload)

    @property
    def category(self) -> BlobCategory | None:
        return blob_category_of(self.id)


@dataclass
class TextBlobRecord:
    """A large pasted, extracted or proof text body."""

    id: str
    category: TextCategory
    text: str
    name: str = ""
    saved_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "text": self.text,
            "name": self.name,
            "savedAt": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TextBlobRecord:
        return cls(
            id=data["id"],
            category=TextCategory(data["category"]),
            text=data.get("text", ""),
            name=data.get("name", ""),
            saved_at=data.get("savedAt", now_ms()),
        )


@dataclass
class FactsComparisonEntry:
    """Cached facts comparison for one topic against one source."""

    topic_title: str
    source: FactsSource
    result: Any
    created_at: int = field(default_factory=now_ms)

    @property
    def composite_key(self) -> str:
        """Flattened snapshot key, e.g. ``HORAS EXTRAS_mini-relatorio``."""
        return f"{self.topic_title}_{self.source.value}"

    @staticmethod
    def split_composite_key(key: str) -> tuple[str, FactsSource] | None:
        """Split a flattened key on its last underscore.

        Returns None when the key has no underscore, an empty topic, or an
        unknown source.
        """
        topic_title, sep, source = key.rpartition("_")
        if not sep or not topic_title:
            return None
        try:
            return topic_title, FactsSource(source)
        except ValueError:
            return None


@dataclass
class SentenceReviewEntry:
    """Cached sentence review for one scope."""

    scope: ReviewScope
    result: str
    created_at: int = field(default_factory=now_ms)


@dataclass
class ChatHistoryEntry:
    """Assistant chat history for one topic."""

    topic_title: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    include_main_docs: bool | None = None
    include_complementary_docs: bool | None = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def to_export(self) -> dict[str, Any]:
        """Flattened snapshot value for this chat."""
        return {
            "messages": self.messages,
            "includeMainDocs": self.include_main_docs,
            "includeComplementaryDocs": self.include_complementary_docs,
        }


@dataclass
class FieldVersionEntry:
    """One stored version of an editor field."""

    field_key: str
    content: str
    timestamp: int
    preview: str = ""
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fieldKey": self.field_key,
            "content": self.content,
            "timestamp": self.timestamp,
            "preview": self.preview,
        }


# =============================================================================
# Model library (decision templates)
# =============================================================================

MODEL_TITLE_MAX = 500
MODEL_CONTENT_MAX = 500_000
MODEL_KEYWORDS_MAX = 1000

_MODEL_KNOWN_FIELDS = ("id", "title", "content", "category", "keywords", "createdAt", "updatedAt")


def _valid_iso(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat()
    except ValueError:
        return None


def _joined_keywords(keywords: str | list) -> str:
    """Keywords as stored: lists are joined with commas."""
    if isinstance(keywords, list):
        return ", ".join(str(k) for k in keywords)
    return keywords


def validate_model(model: dict[str, Any]) -> list[str]:
    """Validate a model library entry.

    Returns:
        List of error messages (empty when the model is valid)
    """
    if not isinstance(model, dict):
        return ["model must be an object"]

    errors: list[str] = []
    title = model.get("title")
    content = model.get("content")

    if not isinstance(title, str) or not title.strip():
        errors.append("title is required")
    if not isinstance(content, str) or not content.strip():
        errors.append("content is required")
    if model.get("id") is not None and not isinstance(model["id"], str):
        errors.append("id must be a string")
    if model.get("category") is not None and not isinstance(model["category"], str):
        errors.append("category must be a string")
    if model.get("keywords") is not None and not isinstance(model["keywords"], str | list):
        errors.append("keywords must be a string")
    for date_field in ("createdAt", "updatedAt"):
        if model.get(date_field) is not None and _valid_iso(model[date_field]) is None:
            errors.append(f"{date_field} must be an ISO date")

    if isinstance(title, str) and len(title) > MODEL_TITLE_MAX:
        errors.append(f"title too long (max {MODEL_TITLE_MAX} characters)")
    if isinstance(content, str) and len(content) > MODEL_CONTENT_MAX:
        errors.append(f"content too long (max {MODEL_CONTENT_MAX} characters)")
    keywords = model.get("keywords")
    if isinstance(keywords, str | list) and len(_joined_keywords(keywords)) > MODEL_KEYWORDS_MAX:
        errors.append(f"keywords too long (max {MODEL_KEYWORDS_MAX} characters)")

    return errors


def sanitize_model(model: dict[str, Any]) -> dict[str, Any]:
    """Normalize a model library entry.

    Trims text fields, joins keyword lists, normalizes ISO dates and keeps
    any extra fields untouched.

    Raises:
        ValidationError: If the model is not an object
    """
    if not isinstance(model, dict):
        raise ValidationError("model", "not an object")

    keywords = _joined_keywords(model.get("keywords") or "")

    sanitized: dict[str, Any] = {
        "title": (model.get("title") or "").strip(),
        "content": (model.get("content") or "").strip(),
        "category": (model.get("category") or "").strip(),
        "keywords": keywords.strip(),
    }
    if isinstance(model.get("id"), str) and model["id"]:
        sanitized["id"] = model["id"]
    for date_field in ("createdAt", "updatedAt"):
        normalized = _valid_iso(model.get(date_field))
        if normalized:
            sanitized[date_field] = normalized

    for key, value in model.items():
        if key not in _MODEL_KNOWN_FIELDS and value is not None:
            sanitized[key] = value

    return sanitized


_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def strip_markup(html: str) -> str:
    """Strip tags and collapse whitespace."""
    return _WS_RE.sub(" ", _TAG_RE.sub(" ", html or "")).strip()
