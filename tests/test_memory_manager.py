"""
Tests for the Hot tier and the tiered memory manager.

Scenarios tested:
- Facts ranked by access count, ties broken by most recent access
- Hot memory reflects a new fact immediately (never cached)
- Interests and conversation excerpts
- Fact access tracking
- Tier lookup and recall across tiers
"""

from datetime import timedelta

from src.knowledge.config import TierConfig
from src.knowledge.embedder import Embedder
from src.knowledge.indexer import DocumentIndexer
from src.knowledge.models import (
    DocType,
    Document,
    Fact,
    Interest,
    MemoryTier,
    MemoryTierEntry,
    UserProfile,
)
from src.knowledge.retriever import SimilaritySearch
from src.knowledge.store import Collections, InMemoryStore
from src.memory.hot import HotMemoryBuilder, rank_facts
from src.memory.manager import TieredMemoryManager

from tests.fakes import FIXED_NOW, FixedClock, HashingEmbeddingModel


def make_fact(fact_id, access_count=0, last_accessed=None, status="active", subject=None, text=None):
    return Fact(
        id=fact_id,
        category="preference",
        subject=subject or f"subject {fact_id}",
        text=text or f"text {fact_id}",
        access_count=access_count,
        last_accessed=last_accessed,
        status=status,
    )


class TestRankFacts:
    """Tests for Hot tier fact ordering."""

    def test_orders_by_access_count(self):
        facts = [make_fact("a", 1), make_fact("b", 5), make_fact("c", 3), make_fact("d", 3)]
        ranked = rank_facts(facts, limit=10)
        assert [f.access_count for f in ranked] == [5, 3, 3, 1]

    def test_ties_prefer_recent_access(self):
        facts = [
            make_fact("older", 3, FIXED_NOW - timedelta(days=5)),
            make_fact("never", 3, None),
            make_fact("newer", 3, FIXED_NOW),
        ]
        assert [f.id for f in rank_facts(facts, limit=3)] == ["newer", "older", "never"]

    def test_limit_and_inactive(self):
        facts = [make_fact(str(i), i) for i in range(10)] + [make_fact("retired", 100, status="superseded")]
        ranked = rank_facts(facts, limit=3)
        assert [f.id for f in ranked] == ["9", "8", "7"]


class TestHotMemory:
    """Tests for Hot memory assembly."""

    def setup_method(self):
        self.store = InMemoryStore()
        self.clock = FixedClock()
        embedder = Embedder(HashingEmbeddingModel(), retry_base_delay=0)
        self.manager = TieredMemoryManager(
            self.store,
            SimilaritySearch(self.store, embedder),
            TierConfig(hot_facts=3, hot_interests=2, hot_conversations=2, excerpt_chars=40),
            clock=self.clock,
        )
        self.indexer = DocumentIndexer(self.store, embedder, clock=self.clock)

    def test_empty_memory_renders_placeholders(self):
        text = self.manager.build_hot_memory()

        assert "# USER PROFILE" in text
        assert "Name: User" in text
        assert "- (none yet)" in text
        assert "(no conversations yet)" in text

    def test_facts_in_access_order(self):
        for fact_id, count in (("a", 1), ("b", 5), ("c", 3), ("d", 0)):
            self.manager.save_fact(make_fact(fact_id, count, subject=f"S{fact_id}"))

        text = self.manager.build_hot_memory()
        lines = [l for l in text.splitlines() if l.startswith("- S")]

        assert lines == ["- Sb: text b", "- Sc: text c", "- Sa: text a"]

    def test_new_fact_visible_immediately(self):
        self.manager.build_hot_memory()
        self.manager.save_fact(make_fact("fresh", 50, subject="Allergy", text="allergic to peanuts"))

        assert "- Allergy: allergic to peanuts" in self.manager.build_hot_memory()

    def test_profile_and_interests(self):
        self.manager.save_profile(UserProfile(name="Sam", summary="Backend engineer in Porto.", days_active=42))
        self.manager.save_interest(Interest(id="i1", name="Baking", engagement_score=0.9))
        self.manager.save_interest(Interest(id="i2", name="Travel", engagement_score=0.4))
        self.manager.save_interest(Interest(id="i3", name="Chess", engagement_score=0.1))

        text = self.manager.build_hot_memory()

        assert "Name: Sam" in text
        assert "Days Together: 42" in text
        assert "Backend engineer in Porto." in text
        assert "- Baking (90% engagement)" in text
        assert "- Travel (40% engagement)" in text
        assert "Chess" not in text

    def test_recent_conversations(self):
        for i in range(3):
            doc = Document(
                id=f"conv{i}",
                doc_type=DocType.CONVERSATION,
                title=f"Chat {i}",
                content=f"Conversation {i} about   planning\nthe spring garden and seed orders for the year",
            )
            doc.created_at = FIXED_NOW - timedelta(days=10 - i)
            self.indexer.index_document(doc)

        snapshot = self.manager.hot.snapshot()

        assert [c.id for c in snapshot.conversations] == ["conv2", "conv1"]
        assert snapshot.conversations[0].date == (FIXED_NOW - timedelta(days=8)).date().isoformat()
        assert snapshot.conversations[0].excerpt.endswith("...")
        assert "  " not in snapshot.conversations[0].excerpt

    def test_builder_without_conversations_ignores_notes(self):
        self.indexer.index_document(Document(id="n1", doc_type=DocType.NOTE, title="Note", content="A note."))
        assert HotMemoryBuilder(self.store).snapshot().conversations == []


class TestFactAccess:

    def setup_method(self):
        self.store = InMemoryStore()
        self.clock = FixedClock()
        embedder = Embedder(HashingEmbeddingModel(), retry_base_delay=0)
        self.manager = TieredMemoryManager(self.store, SimilaritySearch(self.store, embedder), clock=self.clock)

    def test_record_access_increments_and_stamps(self):
        self.manager.save_fact(make_fact("f1", 2))

        updated = self.manager.record_fact_access("f1")

        fact = self.manager.get_facts()[0]
        assert updated == 1
        assert fact.access_count == 3
        assert fact.last_accessed == self.clock.now

    def test_record_access_ignores_unknown(self):
        self.manager.save_fact(make_fact("f1"))
        assert self.manager.record_fact_access(["f1", "missing"]) == 1

    def test_access_changes_hot_ranking(self):
        self.manager.save_fact(make_fact("a", 2, subject="Alpha"))
        self.manager.save_fact(make_fact("b", 2, subject="Beta"))

        self.clock.advance(minutes=5)
        self.manager.record_fact_access("b")

        ranked = rank_facts(self.manager.get_facts(), limit=2)
        assert [f.id for f in ranked] == ["b", "a"]

    def test_inactive_facts_hidden_by_default(self):
        self.manager.save_fact(make_fact("old", status="superseded"))
        assert self.manager.get_facts() == []
        assert len(self.manager.get_facts(include_inactive=True)) == 1


class TestTiersAndRecall:

    def setup_method(self):
        self.store = InMemoryStore()
        embedder = Embedder(HashingEmbeddingModel(), retry_base_delay=0)
        self.manager = TieredMemoryManager(self.store, SimilaritySearch(self.store, embedder))
        self.indexer = DocumentIndexer(self.store, embedder)

    def test_tier_of(self):
        self.manager.save_fact(make_fact("fact1"))
        self.store.put(
            Collections.TIERS, "doc_cold",
            MemoryTierEntry(content_id="doc_cold", tier=MemoryTier.COLD, archive_id="a").to_record(),
        )

        assert self.manager.tier_of("fact1") == MemoryTier.HOT
        assert self.manager.tier_of("doc_cold") == MemoryTier.COLD
        assert self.manager.tier_of("doc_warm") == MemoryTier.WARM

    def test_recall_spans_facts_and_documents(self):
        self.manager.save_fact(make_fact("f1", subject="Coffee", text="prefers oat milk in coffee"))
        self.manager.save_fact(make_fact("f2", subject="Pets", text="has a cat named Miso"))
        self.indexer.index_document(Document(
            id="cafe", doc_type=DocType.BOOKMARK, title="Cafe list",
            content="Coffee places in Porto worth a second visit.",
        ))

        recalled = self.manager.recall("coffee")

        assert [f.id for f in recalled["facts"]] == ["f1"]
        assert recalled["results"][0].document_id == "cafe"

    def test_search_delegates_with_scope(self):
        self.indexer.index_document(Document(id="w", doc_type=DocType.NOTE, title="W", content="Warm note text."))
        assert self.manager.search("Warm note text.", tier_scope="cold") == []
        assert self.manager.search("Warm note text.", tier_scope="warm")[0].document_id == "w"
