"""Tests for the SQLite durable store."""

from pathlib import Path

import pytest

from sentencify_storage.durable import PROJECT_DOMAINS, Domain, SQLiteDurableStore
from sentencify_storage.models import (
    BinaryBlobRecord,
    ChatHistoryEntry,
    FactsSource,
    FieldVersionEntry,
    ReviewScope,
    TextBlobRecord,
    TextCategory,
)

from conftest import FAST_RETRY


class TestStoreLifecycle:
    """Tests for opening and closing the store."""

    @pytest.mark.asyncio
    async def test_open_creates_file(self, tmp_path: Path):
        """Opening creates the parent directory and the database file."""
        path = tmp_path / "nested" / "store.db"
        store = await SQLiteDurableStore.create(path, FAST_RETRY)
        try:
            assert store.available
            assert path.exists()
        finally:
            await store.close()
        assert not store.available

    @pytest.mark.asyncio
    async def test_unavailable_store_returns_defaults(self, tmp_path: Path):
        """A store that cannot open degrades to empty reads and no-op writes."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")

        store = await SQLiteDurableStore.create(blocker / "store.db", FAST_RETRY)
        assert not store.available

        assert await store.put_blob(BinaryBlobRecord(id="upload-1", payload=b"x")) is False
        assert await store.get_blob("upload-1") is None
        assert await store.list_texts() == []
        assert await store.load_models() == []
        assert await store.count(Domain.BLOBS) == 0
        assert await store.get_schema_version(Domain.BLOBS) == 0
        await store.close()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, tmp_path: Path):
        """The store opens on enter and closes on exit."""
        async with SQLiteDurableStore(tmp_path / "store.db", FAST_RETRY) as store:
            assert store.available
        assert store.conn is None

    @pytest.mark.asyncio
    async def test_domains_created_lazily(self, store: SQLiteDurableStore):
        """A domain records its schema version on first use."""
        assert await store.get_schema_version(Domain.TEXT_BLOBS) == 0

        await store.list_texts()

        assert await store.get_schema_version(Domain.TEXT_BLOBS) == 1


class TestBlobs:
    """Tests for binary blobs."""

    @pytest.mark.asyncio
    async def test_put_get(self, store: SQLiteDurableStore):
        record = BinaryBlobRecord(id="upload-abc", payload=b"%PDF-1.4", file_name="a.pdf")
        assert await store.put_blob(record)

        loaded = await store.get_blob("upload-abc")
        assert loaded is not None
        assert loaded.payload == b"%PDF-1.4"
        assert loaded.file_name == "a.pdf"
        assert loaded.size_bytes == 8
        assert loaded.mime_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_put_replaces(self, store: SQLiteDurableStore):
        """Putting the same id twice keeps the latest payload."""
        await store.put_blob(BinaryBlobRecord(id="proof-1", payload=b"old"))
        await store.put_blob(BinaryBlobRecord(id="proof-1", payload=b"newer"))

        loaded = await store.get_blob("proof-1")
        assert loaded.payload == b"newer"
        assert await store.count(Domain.BLOBS) == 1

    @pytest.mark.asyncio
    async def test_missing_blob(self, store: SQLiteDurableStore):
        assert await store.get_blob("upload-missing") is None
        assert await store.delete_blob("upload-missing") is False

    @pytest.mark.asyncio
    async def test_prefix_listing_and_delete(self, store: SQLiteDurableStore):
        """Attachments of one proof are found and removed by prefix."""
        for record_id in (
            "attachment-p1-a1",
            "attachment-p1-a2",
            "attachment-p10-a1",
            "proof-p1",
        ):
            await store.put_blob(BinaryBlobRecord(id=record_id, payload=b"x"))

        # The trailing dash keeps p10 out of p1's prefix
        assert await store.list_blob_ids("attachment-p1-") == [
            "attachment-p1-a1",
            "attachment-p1-a2",
        ]

        assert await store.delete_blobs_with_prefix("attachment-p1-") == 2
        assert await store.list_blob_ids() == ["attachment-p10-a1", "proof-p1"]

    @pytest.mark.asyncio
    async def test_prefix_is_literal(self, store: SQLiteDurableStore):
        """Wildcard characters in a prefix match only themselves."""
        await store.put_blob(BinaryBlobRecord(id="upload-a_b", payload=b"x"))
        await store.put_blob(BinaryBlobRecord(id="upload-axb", payload=b"x"))

        assert await store.list_blob_ids("upload-a_") == ["upload-a_b"]
        assert await store.list_blob_ids("upload-%") == []


class TestTextBlobs:
    """Tests for text bodies."""

    @pytest.mark.asyncio
    async def test_put_get(self, store: SQLiteDurableStore):
        await store.put_text(
            TextBlobRecord(id="pt-1", category=TextCategory.PASTED, text="Petição", name="Inicial")
        )

        loaded = await store.get_text(TextCategory.PASTED, "pt-1")
        assert loaded.text == "Petição"
        assert loaded.name == "Inicial"
        assert loaded.category == TextCategory.PASTED

    @pytest.mark.asyncio
    async def test_same_id_different_categories(self, store: SQLiteDurableStore):
        """The key is (category, id): the same id may live in two categories."""
        await store.put_text(TextBlobRecord(id="x", category=TextCategory.PASTED, text="colado"))
        await store.put_text(TextBlobRecord(id="x", category=TextCategory.EXTRACTED, text="extraído"))

        assert (await store.get_text(TextCategory.PASTED, "x")).text == "colado"
        assert (await store.get_text(TextCategory.EXTRACTED, "x")).text == "extraído"
        assert await store.get_text(TextCategory.PROOF, "x") is None
        assert len(await store.list_texts()) == 2
        assert len(await store.list_texts(TextCategory.PASTED)) == 1

    @pytest.mark.asyncio
    async def test_delete(self, store: SQLiteDurableStore):
        await store.put_text(TextBlobRecord(id="x", category=TextCategory.PROOF, text="prova"))

        assert await store.delete_text(TextCategory.PROOF, "x") is True
        assert await store.delete_text(TextCategory.PROOF, "x") is False
        assert await store.get_text(TextCategory.PROOF, "x") is None


class TestFactsComparison:
    """Tests for cached facts comparisons."""

    @pytest.mark.asyncio
    async def test_save_replaces_per_topic_and_source(self, store: SQLiteDurableStore):
        """Saving twice for one (topic, source) keeps only the latest result."""
        await store.save_comparison("HORAS EXTRAS", FactsSource.MINI_RELATORIO, {"v": 1})
        await store.save_comparison("HORAS EXTRAS", FactsSource.MINI_RELATORIO, {"v": 2})
        await store.save_comparison("HORAS EXTRAS", FactsSource.DOCUMENTOS_COMPLETOS, {"v": 3})

        assert await store.get_comparison("HORAS EXTRAS", FactsSource.MINI_RELATORIO) == {"v": 2}
        entries = await store.list_comparisons()
        assert len(entries) == 2
        assert {e.composite_key for e in entries} == {
            "HORAS EXTRAS_mini-relatorio",
            "HORAS EXTRAS_documentos-completos",
        }

    @pytest.mark.asyncio
    async def test_rejects_empty_input(self, store: SQLiteDurableStore):
        assert await store.save_comparison("", FactsSource.MINI_RELATORIO, {"v": 1}) is False
        assert await store.save_comparison("T", FactsSource.MINI_RELATORIO, None) is False
        assert await store.get_comparison("", FactsSource.MINI_RELATORIO) is None

    @pytest.mark.asyncio
    async def test_delete_by_source(self, store: SQLiteDurableStore):
        await store.save_comparison("T", FactsSource.MINI_RELATORIO, {"v": 1})
        await store.save_comparison("T", FactsSource.DOCUMENTOS_COMPLETOS, {"v": 2})

        assert await store.delete_comparison("T", FactsSource.MINI_RELATORIO) == 1
        assert await store.get_comparison("T", FactsSource.DOCUMENTOS_COMPLETOS) == {"v": 2}

        assert await store.delete_comparison("T") == 1
        assert await store.list_comparisons() == []


class TestSentenceReview:
    """Tests for cached sentence reviews."""

    @pytest.mark.asyncio
    async def test_one_result_per_scope(self, store: SQLiteDurableStore):
        await store.save_review(ReviewScope.DECISION_ONLY, "<p>primeira</p>")
        await store.save_review(ReviewScope.DECISION_ONLY, "<p>segunda</p>")
        await store.save_review(ReviewScope.DECISION_WITH_DOCS, "<p>com docs</p>")

        assert await store.get_review(ReviewScope.DECISION_ONLY) == "<p>segunda</p>"
        assert len(await store.list_reviews()) == 2

    @pytest.mark.asyncio
    async def test_empty_result_ignored(self, store: SQLiteDurableStore):
        assert await store.save_review(ReviewScope.DECISION_ONLY, "") is False
        assert await store.get_review(ReviewScope.DECISION_ONLY) is None

    @pytest.mark.asyncio
    async def test_delete_all(self, store: SQLiteDurableStore):
        await store.save_review(ReviewScope.DECISION_ONLY, "a")
        await store.save_review(ReviewScope.DECISION_WITH_DOCS, "b")

        assert await store.delete_review() == 2
        assert await store.list_reviews() == []


class TestChatHistory:
    """Tests for per-topic chat history."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, store: SQLiteDurableStore):
        messages = [{"role": "user", "content": "Olá"}]
        await store.save_chat(ChatHistoryEntry(topic_title="HORAS EXTRAS", messages=messages))

        chat = await store.get_chat("HORAS EXTRAS")
        assert chat.messages == messages
        assert chat.include_main_docs is None

    @pytest.mark.asyncio
    async def test_empty_messages_ignored(self, store: SQLiteDurableStore):
        assert await store.save_chat(ChatHistoryEntry(topic_title="T", messages=[])) is False
        assert await store.get_chat("T") is None

    @pytest.mark.asyncio
    async def test_save_preserves_created_and_flags(self, store: SQLiteDurableStore):
        """Re-saving keeps the original creation time and stored toggles."""
        await store.set_include_main_docs("T", True)
        first = await store.get_chat("T")

        await store.save_chat(
            ChatHistoryEntry(
                topic_title="T",
                messages=[{"role": "user", "content": "oi"}],
                include_main_docs=False,
                created_at=first.created_at + 99_999,
            )
        )

        chat = await store.get_chat("T")
        assert chat.created_at == first.created_at
        assert chat.include_main_docs is True
        assert await store.get_include_main_docs("T") is True

    @pytest.mark.asyncio
    async def test_save_without_preserving_flags(self, store: SQLiteDurableStore):
        await store.set_include_main_docs("T", True)

        await store.save_chat(
            ChatHistoryEntry(
                topic_title="T",
                messages=[{"role": "user", "content": "oi"}],
                include_main_docs=False,
                include_complementary_docs=True,
            ),
            preserve_flags=False,
        )

        chat = await store.get_chat("T")
        assert chat.include_main_docs is False
        assert chat.include_complementary_docs is True

    @pytest.mark.asyncio
    async def test_toggle_defaults_false(self, store: SQLiteDurableStore):
        assert await store.get_include_main_docs("never-set") is False
        assert await store.get_include_complementary_docs("never-set") is False

    @pytest.mark.asyncio
    async def test_complementary_toggle_on_existing_chat(self, store: SQLiteDurableStore):
        """The complementary toggle changes after the chat exists, keeping messages."""
        messages = [{"role": "user", "content": "oi"}]
        await store.save_chat(
            ChatHistoryEntry(topic_title="T", messages=messages, include_complementary_docs=False)
        )

        assert await store.set_include_complementary_docs("T", True) is True

        chat = await store.get_chat("T")
        assert chat.include_complementary_docs is True
        assert chat.messages == messages
        assert await store.get_include_complementary_docs("T") is True

    @pytest.mark.asyncio
    async def test_toggles_independent(self, store: SQLiteDurableStore):
        await store.set_include_main_docs("T", True)
        await store.set_include_complementary_docs("T", False)

        chat = await store.get_chat("T")
        assert chat.include_main_docs is True
        assert chat.include_complementary_docs is False

    @pytest.mark.asyncio
    async def test_complementary_toggle_preserved_by_save(self, store: SQLiteDurableStore):
        await store.set_include_complementary_docs("T", True)

        await store.save_chat(
            ChatHistoryEntry(
                topic_title="T",
                messages=[{"content": "x"}],
                include_complementary_docs=False,
            )
        )

        assert await store.get_include_complementary_docs("T") is True

    @pytest.mark.asyncio
    async def test_delete(self, store: SQLiteDurableStore):
        await store.save_chat(ChatHistoryEntry(topic_title="T", messages=[{"content": "x"}]))
        assert await store.delete_chat("T") is True
        assert await store.list_chats() == []


class TestFieldVersions:
    """Tests for the raw field version table."""

    @pytest.mark.asyncio
    async def test_consecutive_duplicate_skipped(self, store: SQLiteDurableStore):
        first = await store.add_field_version(FieldVersionEntry("F", "A", timestamp=1), 10)
        duplicate = await store.add_field_version(FieldVersionEntry("F", "A", timestamp=2), 10)

        assert first is not None
        assert duplicate is None
        assert len(await store.list_field_versions("F")) == 1

    @pytest.mark.asyncio
    async def test_bounded_per_field(self, store: SQLiteDurableStore):
        """Only the newest ``max_versions`` entries survive, per field."""
        for i in range(5):
            await store.add_field_version(FieldVersionEntry("F", f"v{i}", timestamp=i), 3)
        await store.add_field_version(FieldVersionEntry("G", "other", timestamp=1), 3)

        versions = await store.list_field_versions("F")
        assert [v.content for v in versions] == ["v4", "v3", "v2"]
        assert len(await store.list_field_versions("G")) == 1

    @pytest.mark.asyncio
    async def test_get_and_delete(self, store: SQLiteDurableStore):
        version_id = await store.add_field_version(FieldVersionEntry("F", "A", timestamp=1), 10)

        loaded = await store.get_field_version(version_id)
        assert loaded.content == "A"
        assert loaded.field_key == "F"

        assert await store.delete_field_versions("F") == 1
        assert await store.get_field_version(version_id) is None


class TestModels:
    """Tests for the model library."""

    @pytest.mark.asyncio
    async def test_save_replaces_library(self, store: SQLiteDurableStore):
        await store.save_models([{"id": "m1", "title": "Horas extras", "content": "<p>a</p>"}])
        await store.save_models([{"id": "m2", "title": "Férias", "content": "<p>b</p>"}])

        models = await store.load_models()
        assert [m["id"] for m in models] == ["m2"]

    @pytest.mark.asyncio
    async def test_invalid_models_rejected(self, store: SQLiteDurableStore):
        """Invalid entries are dropped; valid ones are sanitized and stored."""
        saved = await store.save_models(
            [
                {"title": "  Dano moral  ", "content": "<p>x</p>", "keywords": ["dano", "moral"]},
                {"title": "", "content": "sem título"},
                {"title": "Sem conteúdo"},
            ]
        )

        assert saved == 1
        models = await store.load_models()
        assert models[0]["title"] == "Dano moral"
        assert models[0]["keywords"] == "dano, moral"
        assert models[0]["id"]

    @pytest.mark.asyncio
    async def test_delete_model(self, store: SQLiteDurableStore):
        await store.save_models([{"id": "m1", "title": "T", "content": "C"}])
        assert await store.delete_model("m1") is True
        assert await store.load_models() == []


class TestClearAndListeners:
    """Tests for domain clearing and commit notifications."""

    @pytest.mark.asyncio
    async def test_clear_domain_is_scoped(self, store: SQLiteDurableStore):
        await store.put_text(TextBlobRecord(id="x", category=TextCategory.PASTED, text="t"))
        await store.save_models([{"id": "m1", "title": "T", "content": "C"}])

        assert await store.clear_domain(Domain.TEXT_BLOBS)

        assert await store.count(Domain.TEXT_BLOBS) == 0
        assert await store.count(Domain.MODELS) == 1

    def test_models_not_a_project_domain(self):
        """Clearing the project never touches the model library."""
        assert Domain.MODELS not in PROJECT_DOMAINS
        assert Domain.FIELD_VERSIONS in PROJECT_DOMAINS

    @pytest.mark.asyncio
    async def test_listeners_notified_after_commit(self, store: SQLiteDurableStore):
        events = []
        store.add_commit_listener(lambda domain, action: events.append((domain, action)))

        await store.put_text(TextBlobRecord(id="x", category=TextCategory.PASTED, text="t"))
        await store.delete_text(TextCategory.PASTED, "x")

        assert events == [(Domain.TEXT_BLOBS, "put"), (Domain.TEXT_BLOBS, "delete")]

    @pytest.mark.asyncio
    async def test_no_notification_without_change(self, store: SQLiteDurableStore):
        """Deletes that match nothing and duplicate versions do not notify."""
        await store.add_field_version(FieldVersionEntry("F", "A", timestamp=1), 10)

        events = []
        store.add_commit_listener(lambda domain, action: events.append(action))

        await store.delete_text(TextCategory.PASTED, "missing")
        await store.add_field_version(FieldVersionEntry("F", "A", timestamp=2), 10)

        assert events == []

    @pytest.mark.asyncio
    async def test_async_listener_and_failures(self, store: SQLiteDurableStore):
        """Async listeners are awaited; a failing listener does not break the write."""
        seen = []

        async def async_listener(domain, action):
            seen.append(domain)

        def broken_listener(domain, action):
            raise RuntimeError("listener bug")

        store.add_commit_listener(broken_listener)
        store.add_commit_listener(async_listener)

        assert await store.save_review(ReviewScope.DECISION_ONLY, "ok")
        assert seen == [Domain.SENTENCE_REVIEW]

        store.remove_commit_listener(async_listener)
        await store.save_review(ReviewScope.DECISION_ONLY, "again")
        assert seen == [Domain.SENTENCE_REVIEW]
