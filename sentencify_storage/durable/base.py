"""
Abstract interface of the durable store.

Callers (session autosave, snapshot codec, field history, sync broker) only
depend on this contract. Implementations must never raise on a failed read
or write: reads fall back to None/empty, writes become logged no-ops.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..models import (
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
from .schema import Domain


@dataclass
class SyncMessage:
    """Notification that another instance committed to a domain."""

    action: str
    timestamp: int
    domain: Domain | None = None
    instance_id: str | None = None


SyncCallback = Callable[[SyncMessage], Awaitable[None] | None]
CommitListener = Callable[[Domain, str], Awaitable[None] | None]


class DurableStore(ABC):
    """Embedded transactional store organized into domains."""

    @property
    @abstractmethod
    def available(self) -> bool:
        """False when the store failed to open; every call is then a no-op."""

    @abstractmethod
    async def open(self) -> bool:
        """Open the store. Returns availability; never raises."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""

    # Sync hooks -----------------------------------------------------------

    @abstractmethod
    def set_sync_callback(self, callback: SyncCallback | None) -> None:
        """Register (or clear) this instance's single sync callback slot."""

    @property
    @abstractmethod
    def sync_callback(self) -> SyncCallback | None:
        """Currently registered sync callback."""

    @abstractmethod
    def add_commit_listener(self, listener: CommitListener) -> None:
        """Be told about every committed write transaction."""

    @abstractmethod
    def remove_commit_listener(self, listener: CommitListener) -> None:
        """Stop receiving commit notifications."""

    # Domain maintenance ---------------------------------------------------

    @abstractmethod
    async def clear_domain(self, domain: Domain) -> bool:
        """Remove every record of a domain. Returns success."""

    @abstractmethod
    async def count(self, domain: Domain) -> int:
        """Number of records in a domain."""

    # Blobs ----------------------------------------------------------------

    @abstractmethod
    async def put_blob(self, record: BinaryBlobRecord) -> bool: ...

    @abstractmethod
    async def get_blob(self, record_id: str) -> BinaryBlobRecord | None: ...

    @abstractmethod
    async def delete_blob(self, record_id: str) -> bool: ...

    @abstractmethod
    async def list_blob_ids(self, prefix: str = "") -> list[str]: ...

    @abstractmethod
    async def delete_blobs_with_prefix(self, prefix: str) -> int: ...

    # Text blobs -----------------------------------------------------------

    @abstractmethod
    async def put_text(self, record: TextBlobRecord) -> bool: ...

    @abstractmethod
    async def get_text(self, category: TextCategory, record_id: str) -> TextBlobRecord | None: ...

    @abstractmethod
    async def delete_text(self, category: TextCategory, record_id: str) -> bool: ...

    @abstractmethod
    async def list_texts(self, category: TextCategory | None = None) -> list[TextBlobRecord]: ...

    # Facts comparison -----------------------------------------------------

    @abstractmethod
    async def save_comparison(self, topic_title: str, source: FactsSource, result: Any) -> bool: ...

    @abstractmethod
    async def get_comparison(self, topic_title: str, source: FactsSource) -> Any | None: ...

    @abstractmethod
    async def list_comparisons(self) -> list[FactsComparisonEntry]: ...

    @abstractmethod
    async def delete_comparison(self, topic_title: str, source: FactsSource | None = None) -> int: ...

    # Sentence review ------------------------------------------------------

    @abstractmethod
    async def save_review(self, scope: ReviewScope, result: str) -> bool: ...

    @abstractmethod
    async def get_review(self, scope: ReviewScope) -> str | None: ...

    @abstractmethod
    async def list_reviews(self) -> list[SentenceReviewEntry]: ...

    @abstractmethod
    async def delete_review(self, scope: ReviewScope | None = None) -> int: ...

    # Chat history ---------------------------------------------------------

    @abstractmethod
    async def save_chat(self, entry: ChatHistoryEntry, preserve_flags: bool = True) -> bool: ...

    @abstractmethod
    async def get_chat(self, topic_title: str) -> ChatHistoryEntry | None: ...

    @abstractmethod
    async def list_chats(self) -> list[ChatHistoryEntry]: ...

    @abstractmethod
    async def delete_chat(self, topic_title: str) -> bool: ...

    @abstractmethod
    async def set_include_main_docs(self, topic_title: str, value: bool) -> bool: ...

    @abstractmethod
    async def set_include_complementary_docs(self, topic_title: str, value: bool) -> bool: ...

    # Field versions -------------------------------------------------------

    @abstractmethod
    async def add_field_version(
        self, entry: FieldVersionEntry, max_versions: int
    ) -> int | None:
        """Insert a version unless it repeats the latest one.

        When ``max_versions`` entries already exist, the oldest are deleted
        down to ``max_versions - 1`` before the insert, in the same
        transaction. Returns the new id, or None when nothing was written.
        """

    @abstractmethod
    async def list_field_versions(self, field_key: str) -> list[FieldVersionEntry]: ...

    @abstractmethod
    async def get_field_version(self, version_id: int) -> FieldVersionEntry | None: ...

    @abstractmethod
    async def delete_field_versions(self, field_key: str | None = None) -> int: ...

    # Models ---------------------------------------------------------------

    @abstractmethod
    async def load_models(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def save_models(self, models: list[dict[str, Any]]) -> int:
        """Replace the whole library. Returns the number of models kept."""

    @abstractmethod
    async def delete_model(self, model_id: str) -> bool: ...
