"""Tests for the legacy document migration chain."""

import copy

from sentencify_storage.snapshot.migrations import MIGRATIONS, Migration, migrate


class TestMigrationChain:
    """Tests for individual migrations and the fixed-point runner."""

    def test_modern_document_untouched(self):
        doc = {
            "version": "2.0",
            "pastedPeticaoTexts": [{"id": "a", "text": "x"}],
            "processingModes": {"peticoes": ["pdfjs"]},
            "proofs": [],
            "chatHistory": {"T": {"messages": []}},
        }

        migrated, applied = migrate(doc)

        assert applied == []
        assert migrated == doc

    def test_singular_pasted_texts(self):
        migrated, applied = migrate(
            {"pastedPeticaoText": "p", "pastedContestacaoText": "", "pastedComplementaryText": "c"}
        )

        assert applied == ["singular-pasted-texts"]
        assert migrated["pastedPeticaoTexts"] == [{"text": "p", "name": "Petição Inicial"}]
        assert "pastedContestacaoTexts" not in migrated
        assert migrated["pastedComplementaryTexts"] == [
            {"text": "c", "name": "Documento Complementar"}
        ]
        assert "pastedPeticaoText" not in migrated

    def test_singular_does_not_override_plural(self):
        migrated, _ = migrate(
            {"pastedPeticaoText": "old", "pastedPeticaoTexts": [{"text": "new"}]}
        )
        assert migrated["pastedPeticaoTexts"] == [{"text": "new"}]

    def test_analyzed_documents_plural(self):
        doc = {
            "analyzedDocuments": {
                "peticoes": ["QUJD", {"name": "p2.pdf", "fileData": "REVG"}],
                "peticoesText": [{"text": "extraído", "name": None}],
                "complementares": [{"name": "vazio.pdf"}],
            }
        }

        migrated, applied = migrate(doc)

        assert "analyzed-documents" in applied
        assert "analyzedDocuments" not in migrated
        assert migrated["uploadPdfs"]["peticoes"] == [
            {"name": "Petição Inicial.pdf", "fileData": "QUJD"},
            {"name": "p2.pdf", "fileData": "REVG"},
        ]
        assert migrated["extractedTexts"]["peticoes"] == [
            {"text": "extraído", "name": "Petição Inicial"}
        ]
        # Entries without data are dropped
        assert "complementares" not in migrated["uploadPdfs"]

    def test_analyzed_documents_singular_with_type(self):
        migrated, _ = migrate(
            {
                "analyzedDocuments": {
                    "peticao": "QUJD",
                    "contestacao": "texto da defesa",
                    "contestacaoType": "text",
                }
            }
        )

        assert migrated["uploadPdfs"]["peticoes"][0]["fileData"] == "QUJD"
        assert migrated["extractedTexts"]["contestacoes"] == [
            {"text": "texto da defesa", "name": "Contestação"}
        ]

    def test_singular_upload_pdfs(self):
        migrated, applied = migrate(
            {"uploadPdfs": {"peticao": "QUJD", "contestacoes": [{"fileData": "X"}]}}
        )

        assert applied == ["singular-upload-pdfs"]
        assert migrated["uploadPdfs"] == {
            "contestacoes": [{"fileData": "X"}],
            "peticoes": [{"name": "Petição Inicial.pdf", "fileData": "QUJD"}],
        }

    def test_split_proofs_merged(self):
        migrated, applied = migrate(
            {
                "proofs": [{"id": "0", "type": "pdf"}],
                "proofFiles": [{"id": "1", "name": "a.pdf"}],
                "proofTexts": [{"id": "2", "name": "dep", "text": "t"}],
            }
        )

        assert applied == ["split-proofs"]
        assert [(p["id"], p["type"]) for p in migrated["proofs"]] == [
            ("0", "pdf"),
            ("1", "pdf"),
            ("2", "text"),
        ]
        assert "proofFiles" not in migrated
        assert "proofTexts" not in migrated

    def test_legacy_processing_modes(self):
        migrated, applied = migrate(
            {"processingModes": {"peticoes": "gemini-vision", "contestacoes": ["tesseract"]}}
        )

        assert applied == ["legacy-processing-modes"]
        assert migrated["processingModes"] == {
            "peticoes": ["pdfjs"],
            "contestacoes": ["tesseract"],
        }

    def test_processing_modes_not_a_map(self):
        migrated, _ = migrate({"processingModes": "pdfjs"})
        assert migrated["processingModes"] == {}

    def test_legacy_chat_history(self):
        migrated, applied = migrate(
            {"chatHistory": {"A": [{"role": "user"}], "B": {"messages": [], "includeMainDocs": True}}}
        )

        assert applied == ["legacy-chat-history"]
        assert migrated["chatHistory"] == {
            "A": {"messages": [{"role": "user"}]},
            "B": {"messages": [], "includeMainDocs": True},
        }

    def test_migrations_are_pure(self):
        """The input document is never mutated."""
        doc = {
            "pastedPeticaoText": "p",
            "analyzedDocuments": {"peticao": "QUJD"},
            "proofFiles": [{"id": "1"}],
            "processingModes": {"peticoes": "x"},
            "chatHistory": {"A": []},
        }
        original = copy.deepcopy(doc)

        migrated, applied = migrate(doc)

        assert doc == original
        assert len(applied) == 5
        assert migrated is not doc

    def test_chain_reaches_fixed_point(self):
        """Running the chain again on migrated output applies nothing."""
        migrated, _ = migrate(
            {"pastedPeticaoText": "p", "uploadPdfs": {"peticao": "QUJD"}, "chatHistory": {"A": []}}
        )
        _, applied_again = migrate(migrated)
        assert applied_again == []

    def test_misbehaving_migration_is_bounded(self):
        """A migration whose predicate never turns false cannot loop forever."""
        calls = []

        def always(doc):
            return True

        def count(doc):
            calls.append(1)
            return dict(doc)

        chain = (Migration("forever", always, count),)

        _, applied = migrate({"a": 1}, chain)

        assert len(calls) == len(chain) + 1
        assert applied == ["forever"] * (len(chain) + 1)

    def test_default_chain_names_unique(self):
        names = [m.name for m in MIGRATIONS]
        assert len(names) == len(set(names))
