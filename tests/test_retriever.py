"""
Tests for similarity search.

Covers:
- Self-match ranks first with score ~1.0
- Scores stay within [0, 1] and are sorted
- Equal scores prefer the more recent document
- Lexical fallback when the embedding model is down or nothing clears the threshold
- Tier scope (Warm chunks vs Cold archive summaries)
- Context formatting and stats
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.knowledge.config import SearchConfig
from src.knowledge.embedder import Embedder, OpenAIEmbeddingModel
from src.knowledge.indexer import DocumentIndexer
from src.knowledge.models import ArchiveEntry, DocType, Document, MatchType, MemoryTier, TierScope
from src.knowledge.retriever import SimilaritySearch
from src.knowledge.store import Collections, InMemoryStore

from tests.fakes import FailingEmbeddingModel, HashingEmbeddingModel


NOTES = {
    "lisbon": "Lisbon trip: pastel de nata at Manteigaria, tram 28 to Alfama, fado at night.",
    "sourdough": "Sourdough starter feeding schedule: equal parts flour and water every twelve hours.",
    "python": "Python packaging notes: pyproject toml, setuptools, editable installs.",
    "garden": "Garden plan: tomatoes along the south fence, basil between the rows.",
}


class SearchTestBase:

    def setup_method(self):
        self.store = InMemoryStore()
        self.embedder = Embedder(HashingEmbeddingModel(), retry_base_delay=0)
        self.indexer = DocumentIndexer(self.store, self.embedder)
        self.search = SimilaritySearch(self.store, self.embedder, SearchConfig(top_k=5, min_score=0.05))

    def index(self, doc_id, content, created_at=None, title=None):
        doc = Document(id=doc_id, doc_type=DocType.NOTE, title=title or doc_id.title(), content=content)
        if created_at is not None:
            doc.created_at = created_at
        return self.indexer.index_document(doc)

    def index_notes(self):
        for doc_id, content in NOTES.items():
            self.index(doc_id, content)


class TestSemanticSearch(SearchTestBase):
    """Tests for cosine ranking."""

    def test_self_match_ranks_first(self):
        self.index_notes()

        results = self.search.search(NOTES["sourdough"])

        assert results[0].document_id == "sourdough"
        assert results[0].match_type == MatchType.SEMANTIC
        assert results[0].score == pytest.approx(1.0)

    def test_scores_bounded_and_sorted(self):
        self.index_notes()

        results = self.search.search("lisbon tram fado", top_k=10, min_score=0.0)
        semantic = [r for r in results if r.match_type == MatchType.SEMANTIC]

        assert all(0.0 <= r.score <= 1.0 for r in results)
        assert [r.score for r in semantic] == sorted((r.score for r in semantic), reverse=True)

    def test_top_k_respected(self):
        self.index_notes()
        assert len(self.search.search("notes plan schedule trip", top_k=2, min_score=0.0)) <= 2

    def test_explicit_top_k_is_honoured(self):
        self.index_notes()
        assert len(self.search.search("notes plan schedule trip", top_k=1, min_score=0.0)) == 1

    @pytest.mark.parametrize("top_k", [0, -3])
    def test_top_k_below_one_rejected(self, top_k):
        self.index_notes()
        with pytest.raises(ValueError):
            self.search.search("lisbon", top_k=top_k)

    def test_ties_prefer_recent_document(self):
        now = datetime(2026, 6, 1, tzinfo=timezone.utc)
        self.index("older", "Pasta carbonara recipe with guanciale.", created_at=now - timedelta(days=30))
        self.index("newer", "Pasta carbonara recipe with guanciale.", created_at=now)

        results = self.search.search("Pasta carbonara recipe with guanciale.", top_k=2)

        assert [r.document_id for r in results] == ["newer", "older"]
        assert results[0].score == results[1].score

    def test_blank_query_returns_nothing(self):
        self.index_notes()
        assert self.search.search("   ") == []

    def test_empty_index_returns_nothing(self):
        assert self.search.search("anything") == []

    def test_mismatched_dimensions_skipped(self):
        self.index_notes()
        self.store.put(Collections.CHUNKS, "legacy:0", {
            "id": "legacy:0",
            "document_id": "legacy",
            "chunk_index": 0,
            "content": "Legacy chunk embedded with an old model.",
            "embedding": [0.5, 0.5],
            "document_title": "Legacy",
            "document_created_at": None,
        })

        results = self.search.search(NOTES["garden"])

        assert results[0].document_id == "garden"


class TestLexicalFallback(SearchTestBase):
    """Tests for the lexical fallback."""

    def test_fallback_when_model_down(self):
        """Never empty while a chunk literally contains a query term."""
        self.index_notes()
        search = SimilaritySearch(
            self.store,
            Embedder(FailingEmbeddingModel(), max_retries=0, retry_base_delay=0),
        )

        results = search.search("what did I save about sourdough")

        assert results
        assert results[0].document_id == "sourdough"
        assert results[0].match_type == MatchType.LEXICAL
        assert 0.0 < results[0].score <= 1.0

    @patch("src.knowledge.embedder.time.sleep")
    def test_missing_key_falls_back_without_waiting(self, mock_sleep):
        self.index_notes()
        search = SimilaritySearch(self.store, Embedder(OpenAIEmbeddingModel(api_key=None), max_retries=3))

        results = search.search("lisbon")

        assert results[0].document_id == "lisbon"
        assert results[0].match_type == MatchType.LEXICAL
        mock_sleep.assert_not_called()

    def test_query_embedding_uses_search_retry_budget(self):
        self.index_notes()
        model = FailingEmbeddingModel()
        search = SimilaritySearch(
            self.store,
            Embedder(model, max_retries=5, retry_base_delay=0, retry_max_delay=0),
            SearchConfig(query_max_retries=1),
        )

        assert search.search("sourdough")
        assert model.calls == 2

    def test_fallback_when_nothing_clears_threshold(self):
        self.index_notes()

        results = self.search.search("basil", min_score=0.99)

        assert [r.document_id for r in results] == ["garden"]
        assert results[0].match_type == MatchType.LEXICAL

    def test_phrase_match_outranks_scattered_terms(self):
        self.index("scattered", "A starter for the garden and a sourdough loaf.")
        self.index("phrase", "My sourdough starter needs feeding.")
        search = SimilaritySearch(self.store, Embedder(FailingEmbeddingModel(), max_retries=0, retry_base_delay=0))

        results = search.search("sourdough starter")

        assert [r.document_id for r in results] == ["phrase", "scattered"]
        assert results[0].score == 1.0

    def test_fallback_is_case_insensitive(self):
        self.index("caps", "Meeting notes from the ACME kickoff.")
        search = SimilaritySearch(self.store, Embedder(FailingEmbeddingModel(), max_retries=0, retry_base_delay=0))

        results = search.search("acme")

        assert [r.document_id for r in results] == ["caps"]

    def test_lexical_fills_remaining_slots_without_duplicates(self):
        self.index_notes()

        results = self.search.search(NOTES["python"], top_k=4, min_score=0.9)
        ids = [r.chunk_id for r in results]

        assert results[0].document_id == "python"
        assert results[0].match_type == MatchType.SEMANTIC
        assert len(ids) == len(set(ids))


class TestTierScope(SearchTestBase):
    """Tests for Warm and Cold scoping."""

    def add_archive(self, summary: str):
        entry = ArchiveEntry(
            id="archive_2026-01_abc",
            period="2026-01",
            source_ids=["old1", "old2"],
            summary=summary,
            embedding=self.embedder.embed(summary),
            original_size=20000,
            compressed_size=len(summary),
        )
        self.store.put(Collections.ARCHIVES, entry.id, entry.to_record())

    def test_cold_scope_only_archives(self):
        self.index_notes()
        self.add_archive("January: planned a Lisbon trip and started baking sourdough.")

        results = self.search.search("Lisbon sourdough January", tier_scope=TierScope.COLD, min_score=0.0)

        assert results
        assert all(r.tier == MemoryTier.COLD for r in results)
        assert results[0].document_id is None
        assert results[0].document_title == "Archive 2026-01"

    def test_warm_scope_excludes_archives(self):
        self.index_notes()
        summary = "January: planned a Lisbon trip and started baking sourdough."
        self.add_archive(summary)

        results = self.search.search(summary, tier_scope="warm", min_score=0.0, top_k=10)

        assert all(r.tier == MemoryTier.WARM for r in results)

    def test_all_scope_includes_both(self):
        self.index_notes()
        summary = "January: planned a Lisbon trip and started baking sourdough."
        self.add_archive(summary)

        results = self.search.search(summary, top_k=10, min_score=0.0)

        assert results[0].tier == MemoryTier.COLD
        assert any(r.tier == MemoryTier.WARM for r in results)


class TestFormatting(SearchTestBase):

    def test_format_context(self):
        self.index_notes()
        results = self.search.search(NOTES["lisbon"], top_k=2)

        context = self.search.format_context(results)

        assert context.startswith("[Source 1] (warm, semantic, relevance: 1.00) Lisbon")
        assert NOTES["lisbon"] in context

    def test_format_context_respects_max_chars(self):
        self.index_notes()
        results = self.search.search("notes", top_k=4, min_score=0.0)

        context = self.search.format_context(results, max_chars=150)

        assert context.count("[Source") <= 1

    def test_format_empty(self):
        assert self.search.format_context([]) == ""

    def test_stats(self):
        self.index_notes()
        stats = self.search.stats()

        assert stats["total_documents"] == 4
        assert stats["processed_documents"] == 4
        assert stats["total_chunks"] == 4
        assert stats["archives"] == 0
        assert stats["average_chunks_per_document"] == 1.0
