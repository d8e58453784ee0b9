"""
SQLite durable store.

Uses aiosqlite so no call ever blocks the event loop. One SQLite file holds
every domain; independent instances of the same project open the same file
and rely on SQLite's own locking (WAL mode plus a busy timeout) for
cross-instance isolation.

Failure model:
- Open failure (after retries) marks the store unavailable. Reads then return
  empty results and writes are logged no-ops.
- Any sqlite error at a call site is logged and turned into the same empty
  result. One broken entry never takes down the caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import inspect
import json
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StoreUnavailableError
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
    blob_category_of,
    now_ms,
    sanitize_model,
    validate_model,
)
from ..resilience import RetryConfig, with_storage_retry
from .base import CommitListener, DurableStore, SyncCallback
from .schema import DOMAIN_SCHEMAS, SCHEMA_META_SQL, Domain

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


def _guarded(default: Callable[[], Any]) -> Callable:
    """Turn unavailability and sqlite errors into ``default()``."""

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        async def wrapper(self: SQLiteDurableStore, *args: Any, **kwargs: Any) -> Any:
            if not self.available:
                logger.debug(f"{fn.__name__} skipped: durable store unavailable")
                return default()
            try:
                return await fn(self, *args, **kwargs)
            except (aiosqlite.Error, ValueError, KeyError) as e:
                logger.warning(f"{fn.__name__} failed: {e}")
                return default()

        return wrapper

    return decorator


@dataclass
class _Tx:
    conn: aiosqlite.Connection
    notify: bool = True


class SQLiteDurableStore(DurableStore):
    """
    Durable store backed by a single SQLite file.

    Features:
    - Lazy, idempotent per-domain schema creation
    - Per-domain schema version in schema_meta
    - Serial transactions per instance (submission order preserved)
    - Commit listeners and a single sync callback slot for cross-instance sync
    """

    def __init__(self, path: str | Path, retry_config: RetryConfig | None = None):
        """
        Initialize the store (does not open it).

        Args:
            path: SQLite file path, or ":memory:"
            retry_config: Retry policy for opening the file
        """
        self.path = path
        self.retry_config = retry_config or RetryConfig()
        self.conn: aiosqlite.Connection | None = None
        self._available = False
        self._ready_domains: set[Domain] = set()
        self._lock = asyncio.Lock()
        self._sync_callback: SyncCallback | None = None
        self._commit_listeners: list[CommitListener] = []

    @classmethod
    async def create(
        cls,
        path: str | Path,
        retry_config: RetryConfig | None = None,
    ) -> SQLiteDurableStore:
        """Create and open a store."""
        store = cls(path, retry_config)
        await store.open()
        return store

    @property
    def available(self) -> bool:
        return self._available

    async def open(self) -> bool:
        """Open the SQLite file, retrying transient failures."""
        if self.conn is not None:
            return self._available

        try:
            self.conn = await with_storage_retry(
                self._connect,
                config=self.retry_config,
                context_msg=str(self.path),
            )
            self._available = True
            logger.info(f"Durable store opened: {self.path}")
        except Exception as e:
            error = StoreUnavailableError(str(self.path), e)
            logger.warning(f"{error.message}; continuing without durable storage ({e})")
            self.conn = None
            self._available = False

        return self._available

    async def _connect(self) -> aiosqlite.Connection:
        if str(self.path) != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(self.path), isolation_level=None)
        try:
            await conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.execute(SCHEMA_META_SQL)
        except Exception:
            await conn.close()
            raise
        return conn

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self.conn is not None:
            await self.conn.close()
            self.conn = None
        self._available = False
        self._ready_domains.clear()

    async def __aenter__(self) -> SQLiteDurableStore:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Sync hooks
    # =========================================================================

    def set_sync_callback(self, callback: SyncCallback | None) -> None:
        self._sync_callback = callback

    @property
    def sync_callback(self) -> SyncCallback | None:
        return self._sync_callback

    def add_commit_listener(self, listener: CommitListener) -> None:
        if listener not in self._commit_listeners:
            self._commit_listeners.append(listener)

    def remove_commit_listener(self, listener: CommitListener) -> None:
        if listener in self._commit_listeners:
            self._commit_listeners.remove(listener)

    async def _notify_commit(self, domain: Domain, action: str) -> None:
        for listener in list(self._commit_listeners):
            try:
                result = listener(domain, action)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Commit listener failed for {domain.value}/{action}: {e}")

    # =========================================================================
    # Schema and transactions
    # =========================================================================

    async def _ensure_domain(self, domain: Domain) -> None:
        """Create a domain's table and indices on first use."""
        if domain in self._ready_domains:
            return

        assert self.conn is not None
        version, statements = DOMAIN_SCHEMAS[domain]
        for statement in statements:
            await self.conn.execute(statement)

        await self.conn.execute(
            """
            INSERT INTO schema_meta (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (f"{domain.value}.version", str(version)),
        )
        self._ready_domains.add(domain)
        logger.debug(f"Domain ready: {domain.value} (schema v{version})")

    async def get_schema_version(self, domain: Domain) -> int:
        """Schema version recorded for a domain (0 when never created)."""
        if not self.available:
            return 0
        async with self._lock:
            async with self.conn.execute(
                "SELECT value FROM schema_meta WHERE key = ?", (f"{domain.value}.version",)
            ) as cursor:
                row = await cursor.fetchone()
                return int(row[0]) if row else 0

    @contextlib.asynccontextmanager
    async def _reading(self, domain: Domain) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            await self._ensure_domain(domain)
            yield self.conn

    @contextlib.asynccontextmanager
    async def _transaction(self, domain: Domain, action: str) -> AsyncIterator[_Tx]:
        """Serial write transaction; commit listeners run after COMMIT."""
        async with self._lock:
            await self._ensure_domain(domain)
            tx = _Tx(self.conn)
            await self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield tx
            except BaseException:
                with contextlib.suppress(aiosqlite.Error):
                    await self.conn.execute("ROLLBACK")
                raise
            await self.conn.execute("COMMIT")

        if tx.notify:
            await self._notify_commit(domain, action)

    # =========================================================================
    # Domain maintenance
    # =========================================================================

    @_guarded(lambda: False)
    async def clear_domain(self, domain: Domain) -> bool:
        async with self._transaction(domain, "clear") as tx:
            await tx.conn.execute(f"DELETE FROM {domain.value}")
        return True

    @_guarded(lambda: 0)
    async def count(self, domain: Domain) -> int:
        async with self._reading(domain) as conn:
            async with conn.execute(f"SELECT COUNT(*) FROM {domain.value}") as cursor:
                row = await cursor.fetchone()
                return int(row[0]) if row else 0

    # =========================================================================
    # Blobs
    # =========================================================================

    @_guarded(lambda: False)
    async def put_blob(self, record: BinaryBlobRecord) -> bool:
        category = blob_category_of(record.id)
        async with self._transaction(Domain.BLOBS, "put") as tx:
            await tx.conn.execute(
                """
                INSERT INTO blobs (id, category, payload, mime_type, file_name, size_bytes, saved_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    category = excluded.category,
                    payload = excluded.payload,
                    mime_type = excluded.mime_type,
                    file_name = excluded.file_name,
                    size_bytes = excluded.size_bytes,
                    saved_at = excluded.saved_at
                """,
                (
                    record.id,
                    category.value if category else None,
                    record.payload,
                    record.mime_type,
                    record.file_name,
                    record.size_bytes,
                    record.saved_at,
                ),
            )
        return True

    @_guarded(lambda: None)
    async def get_blob(self, record_id: str) -> BinaryBlobRecord | None:
        async with self._reading(Domain.BLOBS) as conn:
            async with conn.execute(
                """
                SELECT id, payload, mime_type, file_name, size_bytes, saved_at
                FROM blobs WHERE id = ?
                """,
                (record_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        return BinaryBlobRecord(
            id=row[0],
            payload=bytes(row[1]),
            mime_type=row[2] or "",
            file_name=row[3] or "",
            size_bytes=row[4],
            saved_at=row[5],
        )

    @_guarded(lambda: False)
    async def delete_blob(self, record_id: str) -> bool:
        async with self._transaction(Domain.BLOBS, "delete") as tx:
            cursor = await tx.conn.execute("DELETE FROM blobs WHERE id = ?", (record_id,))
            deleted = cursor.rowcount > 0
            tx.notify = deleted
        return deleted

    @_guarded(list)
    async def list_blob_ids(self, prefix: str = "") -> list[str]:
        async with self._reading(Domain.BLOBS) as conn:
            async with conn.execute(
                "SELECT id FROM blobs WHERE substr(id, 1, ?) = ? ORDER BY id",
                (len(prefix), prefix),
            ) as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    @_guarded(lambda: 0)
    async def delete_blobs_with_prefix(self, prefix: str) -> int:
        """Delete every blob whose id starts with ``prefix``.

        Used to drop all attachments of one proof:
        ``attachment-{proofId}-``.
        """
        async with self._transaction(Domain.BLOBS, "delete") as tx:
            cursor = await tx.conn.execute(
                "DELETE FROM blobs WHERE substr(id, 1, ?) = ?", (len(prefix), prefix)
            )
            deleted = cursor.rowcount
            tx.notify = deleted > 0
        return deleted

    # =========================================================================
    # Text blobs
    # =========================================================================

    @_guarded(lambda: False)
    async def put_text(self, record: TextBlobRecord) -> bool:
        async with self._transaction(Domain.TEXT_BLOBS, "put") as tx:
            await tx.conn.execute(
                """
                INSERT INTO text_blobs (category, id, text, name, saved_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (category, id) DO UPDATE SET
                    text = excluded.text,
                    name = excluded.name,
                    saved_at = excluded.saved_at
                """,
                (record.category.value, record.id, record.text, record.name, record.saved_at),
            )
        return True

    @_guarded(lambda: None)
    async def get_text(self, category: TextCategory, record_id: str) -> TextBlobRecord | None:
        async with self._reading(Domain.TEXT_BLOBS) as conn:
            async with conn.execute(
                "SELECT id, category, text, name, saved_at FROM text_blobs "
                "WHERE category = ? AND id = ?",
                (category.value, record_id),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        return TextBlobRecord(
            id=row[0], category=TextCategory(row[1]), text=row[2], name=row[3] or "", saved_at=row[4]
        )

    @_guarded(lambda: False)
    async def delete_text(self, category: TextCategory, record_id: str) -> bool:
        async with self._transaction(Domain.TEXT_BLOBS, "delete") as tx:
            cursor = await tx.conn.execute(
                "DELETE FROM text_blobs WHERE category = ? AND id = ?",
                (category.value, record_id),
            )
            deleted = cursor.rowcount > 0
            tx.notify = deleted
        return deleted

    @_guarded(list)
    async def list_texts(self, category: TextCategory | None = None) -> list[TextBlobRecord]:
        query = "SELECT id, category, text, name, saved_at FROM text_blobs"
        params: tuple[Any, ...] = ()
        if category is not None:
            query += " WHERE category = ?"
            params = (category.value,)
        query += " ORDER BY category, saved_at, id"

        async with self._reading(Domain.TEXT_BLOBS) as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [
            TextBlobRecord(
                id=row[0],
                category=TextCategory(row[1]),
                text=row[2],
                name=row[3] or "",
                saved_at=row[4],
            )
            for row in rows
        ]

    # =========================================================================
    # Facts comparison
    # =========================================================================

    @_guarded(lambda: False)
    async def save_comparison(self, topic_title: str, source: FactsSource, result: Any) -> bool:
        """Save a comparison, replacing any existing one for (topic, source)."""
        if not topic_title or result is None:
            return False

        async with self._transaction(Domain.FACTS_COMPARISON, "save") as tx:
            await tx.conn.execute(
                """
                INSERT INTO facts_comparison (topic_title, source, result_json, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (topic_title, source) DO UPDATE SET
                    result_json = excluded.result_json,
                    created_at = excluded.created_at
                """,
                (topic_title, source.value, json.dumps(result), now_ms()),
            )
        return True

    @_guarded(lambda: None)
    async def get_comparison(self, topic_title: str, source: FactsSource) -> Any | None:
        if not topic_title:
            return None

        async with self._reading(Domain.FACTS_COMPARISON) as conn:
            async with conn.execute(
                "SELECT result_json FROM facts_comparison WHERE topic_title = ? AND source = ?",
                (topic_title, source.value),
            ) as cursor:
                row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    @_guarded(list)
    async def list_comparisons(self) -> list[FactsComparisonEntry]:
        async with self._reading(Domain.FACTS_COMPARISON) as conn:
            async with conn.execute(
                "SELECT topic_title, source, result_json, created_at FROM facts_comparison "
                "ORDER BY id"
            ) as cursor:
                rows = await cursor.fetchall()

        entries = []
        for row in rows:
            try:
                source = FactsSource(row[1])
            except ValueError:
                logger.warning(f"Skipping facts comparison with unknown source: {row[1]}")
                continue
            entries.append(
                FactsComparisonEntry(
                    topic_title=row[0], source=source, result=json.loads(row[2]), created_at=row[3]
                )
            )
        return entries

    @_guarded(lambda: 0)
    async def delete_comparison(self, topic_title: str, source: FactsSource | None = None) -> int:
        """Delete a topic's comparisons, optionally only for one source."""
        if not topic_title:
            return 0

        query = "DELETE FROM facts_comparison WHERE topic_title = ?"
        params: tuple[Any, ...] = (topic_title,)
        if source is not None:
            query += " AND source = ?"
            params = (topic_title, source.value)

        async with self._transaction(Domain.FACTS_COMPARISON, "delete") as tx:
            cursor = await tx.conn.execute(query, params)
            deleted = cursor.rowcount
            tx.notify = deleted > 0
        return deleted

    # =========================================================================
    # Sentence review
    # =========================================================================

    @_guarded(lambda: False)
    async def save_review(self, scope: ReviewScope, result: str) -> bool:
        if not result:
            return False

        async with self._transaction(Domain.SENTENCE_REVIEW, "save") as tx:
            await tx.conn.execute(
                """
                INSERT INTO sentence_review (scope, result, created_at) VALUES (?, ?, ?)
                ON CONFLICT (scope) DO UPDATE SET
                    result = excluded.result,
                    created_at = excluded.created_at
                """,
                (scope.value, result, now_ms()),
            )
        return True

    @_guarded(lambda: None)
    async def get_review(self, scope: ReviewScope) -> str | None:
        async with self._reading(Domain.SENTENCE_REVIEW) as conn:
            async with conn.execute(
                "SELECT result FROM sentence_review WHERE scope = ?", (scope.value,)
            ) as cursor:
                row = await cursor.fetchone()
        return row[0] if row else None

    @_guarded(list)
    async def list_reviews(self) -> list[SentenceReviewEntry]:
        async with self._reading(Domain.SENTENCE_REVIEW) as conn:
            async with conn.execute(
                "SELECT scope, result, created_at FROM sentence_review ORDER BY id"
            ) as cursor:
                rows = await cursor.fetchall()

        entries = []
        for row in rows:
            try:
                entries.append(
                    SentenceReviewEntry(scope=ReviewScope(row[0]), result=row[1], created_at=row[2])
                )
            except ValueError:
                logger.warning(f"Skipping sentence review with unknown scope: {row[0]}")
        return entries

    @_guarded(lambda: 0)
    async def delete_review(self, scope: ReviewScope | None = None) -> int:
        query = "DELETE FROM sentence_review"
        params: tuple[Any, ...] = ()
        if scope is not None:
            query += " WHERE scope = ?"
            params = (scope.value,)

        async with self._transaction(Domain.SENTENCE_REVIEW, "delete") as tx:
            cursor = await tx.conn.execute(query, params)
            deleted = cursor.rowcount
            tx.notify = deleted > 0
        return deleted

    # =========================================================================
    # Chat history
    # =========================================================================

    @staticmethod
    def _flag(value: Any) -> bool | None:
        return None if value is None else bool(value)

    @staticmethod
    def _flag_column(value: bool | None) -> int | None:
        return None if value is None else int(value)

    def _chat_from_row(self, row: Any) -> ChatHistoryEntry:
        return ChatHistoryEntry(
            topic_title=row[0],
            messages=json.loads(row[1]),
            include_main_docs=self._flag(row[2]),
            include_complementary_docs=self._flag(row[3]),
            created_at=row[4],
            updated_at=row[5],
        )

    @_guarded(lambda: False)
    async def save_chat(self, entry: ChatHistoryEntry, preserve_flags: bool = True) -> bool:
        """Save a topic's chat, replacing the previous one.

        ``created_at`` of an existing chat is always kept. With
        ``preserve_flags`` the stored include-docs flags win over the entry's;
        import passes False so the snapshot's flags are restored as-is.
        """
        if not entry.topic_title or not entry.messages:
            return False

        async with self._transaction(Domain.CHAT_HISTORY, "save") as tx:
            async with tx.conn.execute(
                "SELECT include_main_docs, include_complementary_docs, created_at "
                "FROM chat_history WHERE topic_title = ?",
                (entry.topic_title,),
            ) as cursor:
                existing = await cursor.fetchone()

            include_main = entry.include_main_docs
            include_complementary = entry.include_complementary_docs
            created_at = entry.created_at
            if existing is not None:
                created_at = existing[2]
                if preserve_flags:
                    include_main = self._flag(existing[0])
                    include_complementary = self._flag(existing[1])

            await tx.conn.execute(
                """
                INSERT INTO chat_history (
                    topic_title, messages_json, include_main_docs,
                    include_complementary_docs, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (topic_title) DO UPDATE SET
                    messages_json = excluded.messages_json,
                    include_main_docs = excluded.include_main_docs,
                    include_complementary_docs = excluded.include_complementary_docs,
                    updated_at = excluded.updated_at
                """,
                (
                    entry.topic_title,
                    json.dumps(entry.messages),
                    self._flag_column(include_main),
                    self._flag_column(include_complementary),
                    created_at,
                    now_ms(),
                ),
            )
        return True

    @_guarded(lambda: None)
    async def get_chat(self, topic_title: str) -> ChatHistoryEntry | None:
        if not topic_title:
            return None

        async with self._reading(Domain.CHAT_HISTORY) as conn:
            async with conn.execute(
                "SELECT topic_title, messages_json, include_main_docs, "
                "include_complementary_docs, created_at, updated_at "
                "FROM chat_history WHERE topic_title = ?",
                (topic_title,),
            ) as cursor:
                row = await cursor.fetchone()
        return self._chat_from_row(row) if row else None

    @_guarded(list)
    async def list_chats(self) -> list[ChatHistoryEntry]:
        async with self._reading(Domain.CHAT_HISTORY) as conn:
            async with conn.execute(
                "SELECT topic_title, messages_json, include_main_docs, "
                "include_complementary_docs, created_at, updated_at "
                "FROM chat_history ORDER BY id"
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._chat_from_row(row) for row in rows]

    @_guarded(lambda: False)
    async def delete_chat(self, topic_title: str) -> bool:
        async with self._transaction(Domain.CHAT_HISTORY, "delete") as tx:
            cursor = await tx.conn.execute(
                "DELETE FROM chat_history WHERE topic_title = ?", (topic_title,)
            )
            deleted = cursor.rowcount > 0
            tx.notify = deleted
        return deleted

    _CHAT_FLAG_COLUMNS = ("include_main_docs", "include_complementary_docs")

    async def _set_chat_flag(self, topic_title: str, column: str, value: bool) -> bool:
        """Persist one chat toggle, creating an empty chat if needed."""
        assert column in self._CHAT_FLAG_COLUMNS
        if not topic_title:
            return False

        now = now_ms()
        async with self._transaction(Domain.CHAT_HISTORY, "settings") as tx:
            await tx.conn.execute(
                f"""
                INSERT INTO chat_history (
                    topic_title, messages_json, {column}, created_at, updated_at
                ) VALUES (?, '[]', ?, ?, ?)
                ON CONFLICT (topic_title) DO UPDATE SET
                    {column} = excluded.{column},
                    updated_at = excluded.updated_at
                """,
                (topic_title, int(value), now, now),
            )
        return True

    @_guarded(lambda: False)
    async def set_include_main_docs(self, topic_title: str, value: bool) -> bool:
        """Persist the include-main-documents toggle."""
        return await self._set_chat_flag(topic_title, "include_main_docs", value)

    async def get_include_main_docs(self, topic_title: str) -> bool:
        """Stored toggle for a topic; False when never set."""
        entry = await self.get_chat(topic_title)
        return bool(entry and entry.include_main_docs)

    @_guarded(lambda: False)
    async def set_include_complementary_docs(self, topic_title: str, value: bool) -> bool:
        """Persist the include-complementary-documents toggle."""
        return await self._set_chat_flag(topic_title, "include_complementary_docs", value)

    async def get_include_complementary_docs(self, topic_title: str) -> bool:
        entry = await self.get_chat(topic_title)
        return bool(entry and entry.include_complementary_docs)

    # =========================================================================
    # Field versions
    # =========================================================================

    @_guarded(lambda: None)
    async def add_field_version(self, entry: FieldVersionEntry, max_versions: int) -> int | None:
        async with self._transaction(Domain.FIELD_VERSIONS, "save") as tx:
            async with tx.conn.execute(
                "SELECT content FROM field_versions WHERE field_key = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT 1",
                (entry.field_key,),
            ) as cursor:
                latest = await cursor.fetchone()

            if latest is not None and latest[0] == entry.content:
                tx.notify = False
                return None

            async with tx.conn.execute(
                "SELECT id FROM field_versions WHERE field_key = ? ORDER BY timestamp ASC, id ASC",
                (entry.field_key,),
            ) as cursor:
                existing_ids = [row[0] for row in await cursor.fetchall()]

            excess = len(existing_ids) - (max_versions - 1)
            if excess > 0:
                await tx.conn.executemany(
                    "DELETE FROM field_versions WHERE id = ?",
                    [(version_id,) for version_id in existing_ids[:excess]],
                )

            cursor = await tx.conn.execute(
                "INSERT INTO field_versions (field_key, content, timestamp, preview) "
                "VALUES (?, ?, ?, ?)",
                (entry.field_key, entry.content, entry.timestamp, entry.preview),
            )
            new_id = cursor.lastrowid

        return new_id

    @_guarded(list)
    async def list_field_versions(self, field_key: str) -> list[FieldVersionEntry]:
        """Versions of one field, newest first."""
        async with self._reading(Domain.FIELD_VERSIONS) as conn:
            async with conn.execute(
                "SELECT id, field_key, content, timestamp, preview FROM field_versions "
                "WHERE field_key = ? ORDER BY timestamp DESC, id DESC",
                (field_key,),
            ) as cursor:
                rows = await cursor.fetchall()

        return [
            FieldVersionEntry(
                id=row[0], field_key=row[1], content=row[2], timestamp=row[3], preview=row[4] or ""
            )
            for row in rows
        ]

    @_guarded(lambda: None)
    async def get_field_version(self, version_id: int) -> FieldVersionEntry | None:
        async with self._reading(Domain.FIELD_VERSIONS) as conn:
            async with conn.execute(
                "SELECT id, field_key, content, timestamp, preview FROM field_versions WHERE id = ?",
                (version_id,),
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        return FieldVersionEntry(
            id=row[0], field_key=row[1], content=row[2], timestamp=row[3], preview=row[4] or ""
        )

    @_guarded(lambda: 0)
    async def delete_field_versions(self, field_key: str | None = None) -> int:
        query = "DELETE FROM field_versions"
        params: tuple[Any, ...] = ()
        if field_key is not None:
            query += " WHERE field_key = ?"
            params = (field_key,)

        async with self._transaction(Domain.FIELD_VERSIONS, "delete") as tx:
            cursor = await tx.conn.execute(query, params)
            deleted = cursor.rowcount
            tx.notify = deleted > 0
        return deleted

    # =========================================================================
    # Models
    # =========================================================================

    @_guarded(list)
    async def load_models(self) -> list[dict[str, Any]]:
        async with self._reading(Domain.MODELS) as conn:
            async with conn.execute(
                "SELECT data_json FROM models ORDER BY created_at, id"
            ) as cursor:
                rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    @_guarded(lambda: 0)
    async def save_models(self, models: list[dict[str, Any]]) -> int:
        """Replace the model library with the valid subset of ``models``."""
        validated: list[dict[str, Any]] = []
        rejected: list[tuple[Any, list[str]]] = []
        for model in models:
            errors = validate_model(model)
            if errors:
                rejected.append((model.get("id") if isinstance(model, dict) else None, errors))
                continue
            sanitized = sanitize_model(model)
            sanitized.setdefault("id", str(uuid.uuid4()))
            validated.append(sanitized)

        if rejected:
            logger.warning(f"{len(rejected)} models rejected by validation: {rejected}")

        async with self._transaction(Domain.MODELS, "save") as tx:
            await tx.conn.execute("DELETE FROM models")
            await tx.conn.executemany(
                "INSERT OR REPLACE INTO models (id, category, created_at, data_json) "
                "VALUES (?, ?, ?, ?)",
                [
                    (
                        model["id"],
                        model.get("category"),
                        model.get("createdAt"),
                        json.dumps(model),
                    )
                    for model in validated
                ],
            )
        return len(validated)

    @_guarded(lambda: False)
    async def delete_model(self, model_id: str) -> bool:
        async with self._transaction(Domain.MODELS, "delete") as tx:
            cursor = await tx.conn.execute("DELETE FROM models WHERE id = ?", (model_id,))
            deleted = cursor.rowcount > 0
            tx.notify = deleted
        return deleted
