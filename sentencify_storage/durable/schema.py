"""
Domain definitions for the durable store.

Each domain is one table (plus its indices) created lazily the first time the
domain is touched. Every domain carries its own schema version in
``schema_meta`` so that domains can evolve independently.
"""

from __future__ import annotations

from enum import Enum


class Domain(Enum):
    """Named partitions of the durable store."""

    BLOBS = "blobs"
    TEXT_BLOBS = "text_blobs"
    FACTS_COMPARISON = "facts_comparison"
    SENTENCE_REVIEW = "sentence_review"
    CHAT_HISTORY = "chat_history"
    FIELD_VERSIONS = "field_versions"
    MODELS = "models"


# Domains wiped on project reset and on import. The model library outlives
# individual projects.
PROJECT_DOMAINS: tuple[Domain, ...] = (
    Domain.BLOBS,
    Domain.TEXT_BLOBS,
    Domain.FACTS_COMPARISON,
    Domain.SENTENCE_REVIEW,
    Domain.CHAT_HISTORY,
    Domain.FIELD_VERSIONS,
)

SCHEMA_META_SQL = """
CREATE TABLE IF NOT EXISTS schema_meta (
    key TEXT PRIMARY KEY,
    value TEXT
)
"""

# (version, statements) per domain
DOMAIN_SCHEMAS: dict[Domain, tuple[int, tuple[str, ...]]] = {
    Domain.BLOBS: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS blobs (
                id TEXT NOT NULL PRIMARY KEY,
                category TEXT,
                payload BLOB NOT NULL,
                mime_type TEXT,
                file_name TEXT,
                size_bytes INTEGER NOT NULL DEFAULT 0,
                saved_at INTEGER NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_blobs_category ON blobs(category)",
        ),
    ),
    Domain.TEXT_BLOBS: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS text_blobs (
                category TEXT NOT NULL,
                id TEXT NOT NULL,
                text TEXT NOT NULL,
                name TEXT,
                saved_at INTEGER NOT NULL,
                PRIMARY KEY (category, id)
            )
            """,
        ),
    ),
    Domain.FACTS_COMPARISON: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS facts_comparison (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                topic_title TEXT NOT NULL,
                source TEXT NOT NULL,
                result_json TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                UNIQUE (topic_title, source)
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_facts_topic ON facts_comparison(topic_title)",
        ),
    ),
    Domain.SENTENCE_REVIEW: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS sentence_review (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scope TEXT NOT NULL UNIQUE,
                result TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
            """,
        ),
    ),
    Domain.CHAT_HISTORY: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS chat_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                topic_title TEXT NOT NULL UNIQUE,
                messages_json TEXT NOT NULL,
                include_main_docs INTEGER,
                include_complementary_docs INTEGER,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            )
            """,
        ),
    ),
    Domain.FIELD_VERSIONS: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS field_versions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                field_key TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                preview TEXT
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_field_versions_key "
            "ON field_versions(field_key, timestamp)",
        ),
    ),
    Domain.MODELS: (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS models (
                id TEXT NOT NULL PRIMARY KEY,
                category TEXT,
                created_at TEXT,
                data_json TEXT NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_models_category ON models(category)",
            "CREATE INDEX IF NOT EXISTS idx_models_created ON models(created_at)",
        ),
    ),
}
