"""
Tiered Memory Manager
=====================

Front door to the three memory tiers:
- Hot: profile, top facts, top interests, latest conversations (always in context)
- Warm: chunk index of saved content, searched on demand
- Cold: archive summaries of aged content, searched on demand

Also owns fact access tracking, which drives the Hot tier ranking.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Union

from src.knowledge.config import TierConfig
from src.knowledge.models import (
    Fact,
    Interest,
    MemoryTier,
    MemoryTierEntry,
    SearchResult,
    TierScope,
    UserProfile,
    utcnow,
)
from src.knowledge.retriever import SimilaritySearch
from src.knowledge.store import Collections, KnowledgeStore

from .hot import PROFILE_KEY, HotMemoryBuilder

logger = logging.getLogger(__name__)


class TieredMemoryManager:
    """Hot tier assembly, tier-scoped search and fact bookkeeping."""

    def __init__(
        self,
        store: KnowledgeStore,
        search_engine: SimilaritySearch,
        config: Optional[TierConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.search_engine = search_engine
        self.config = config or TierConfig()
        self.clock = clock
        self.hot = HotMemoryBuilder(store, self.config)

    def build_hot_memory(self) -> str:
        """Hot tier as prompt text. Rebuilt on every call."""
        return self.hot.build()

    def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        tier_scope: Union[TierScope, str] = TierScope.ALL,
    ) -> List[SearchResult]:
        """Search Warm chunks and/or Cold summaries."""
        return self.search_engine.search(query, top_k=top_k, min_score=min_score, tier_scope=tier_scope)

    def tier_of(self, content_id: str) -> MemoryTier:
        """Current tier of a document or fact."""
        if self.store.get(Collections.FACTS, content_id) is not None:
            return MemoryTier.HOT
        record = self.store.get(Collections.TIERS, content_id)
        if record is None:
            return MemoryTier.WARM
        return MemoryTierEntry.from_record(record).tier

    # =========================================================================
    # FACTS, INTERESTS, PROFILE
    # =========================================================================

    def save_fact(self, fact: Fact) -> None:
        self.store.put(Collections.FACTS, fact.id, fact.to_record())

    def get_facts(self, include_inactive: bool = False) -> List[Fact]:
        facts = [Fact.from_record(r) for r in self.store.get_all(Collections.FACTS)]
        if include_inactive:
            return facts
        return [f for f in facts if f.status == "active"]

    def record_fact_access(self, fact_ids: Union[str, Iterable[str]]) -> int:
        """
        Count a use of each fact, stamping last_accessed from the clock.

        Returns:
            Number of facts updated (unknown ids are ignored)
        """
        if isinstance(fact_ids, str):
            fact_ids = [fact_ids]

        now = self.clock()
        updated = 0
        for fact_id in fact_ids:
            record = self.store.get(Collections.FACTS, fact_id)
            if record is None:
                logger.debug(f"Fact {fact_id} not found, access not recorded")
                continue
            fact = Fact.from_record(record)
            fact.access_count += 1
            fact.last_accessed = now
            self.store.put(Collections.FACTS, fact.id, fact.to_record())
            updated += 1
        return updated

    def save_interest(self, interest: Interest) -> None:
        self.store.put(Collections.INTERESTS, interest.id, interest.to_record())

    def save_profile(self, profile: UserProfile) -> None:
        self.store.put(Collections.PROFILE, PROFILE_KEY, profile.to_record())

    # =========================================================================
    # RECALL
    # =========================================================================

    def recall(
        self,
        topic: str,
        top_k: Optional[int] = None,
    ) -> Dict[str, list]:
        """
        Everything remembered about a topic, across all tiers.

        Returns:
            {"facts": [Fact], "results": [SearchResult]} where results span
            Warm chunks and Cold summaries
        """
        needle = topic.strip().lower()
        facts = []
        if needle:
            facts = [
                f for f in self.get_facts()
                if needle in f.text.lower() or needle in f.subject.lower() or needle in f.category.lower()
            ]
        facts.sort(key=lambda f: f.access_count, reverse=True)

        results = self.search(topic, top_k=top_k, tier_scope=TierScope.ALL)

        logger.info(f"Recall '{topic[:50]}': {len(facts)} facts, {len(results)} results")
        return {"facts": facts, "results": results}
