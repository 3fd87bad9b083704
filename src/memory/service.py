"""
Memory Service
==============

Facade wiring the memory subsystem together for the CLI, API and scheduler.

The embedding and summarization capabilities are built once here and
injected into every component that needs them.

Usage:
    service = MemoryService.from_settings()
    service.index_document(Document(id="n1", doc_type=DocType.NOTE, title="Trip", content="..."))
    context = service.answer_context("what did I save about Lisbon?")
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from src.ai.llm_client import get_llm_client
from src.cache.redis_lock import JobLock
from src.knowledge.chunker import TextChunker
from src.knowledge.config import Settings, get_settings
from src.knowledge.embedder import Embedder
from src.knowledge.errors import ModelUnavailable
from src.knowledge.indexer import DocumentIndexer
from src.knowledge.models import Document, IndexResult, SearchResult, TierScope, utcnow
from src.knowledge.retriever import SimilaritySearch
from src.knowledge.store import KnowledgeStore, create_store
from src.routing.pre_router import PreRouter, PreRouteResult
from src.routing.query_router import QueryRouter, RetrievalPlan, RoutedContext

from .consolidation import ConsolidationJob, ConsolidationPlan, ConsolidationResult, Summarizer
from .manager import TieredMemoryManager

logger = logging.getLogger(__name__)


@dataclass
class AnswerContext:
    """Result of the full request pipeline: pre-route, then route and retrieve."""
    pre_route: PreRouteResult
    routed: Optional[RoutedContext] = None

    @property
    def handled(self) -> bool:
        return self.pre_route.handled

    def to_dict(self) -> Dict[str, Any]:
        data = {"handled": self.handled, "answer": self.pre_route.answer, "category": self.pre_route.category}
        if self.routed is not None:
            data.update(self.routed.to_dict())
        return data


class MemoryService:
    """Single entry point to indexing, search, routing and consolidation."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        summarizer: Optional[Summarizer] = None,
        settings: Optional[Settings] = None,
        lock: Optional[JobLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.embedder = embedder
        self.clock = clock

        self.indexer = DocumentIndexer(
            store,
            embedder,
            TextChunker(self.settings.chunking),
            clock,
            stale_processing_after=timedelta(minutes=self.settings.indexing.stale_processing_minutes),
        )
        self.search_engine = SimilaritySearch(store, embedder, self.settings.search)
        self.memory = TieredMemoryManager(store, self.search_engine, self.settings.tiers, clock)
        self.pre_router = PreRouter(clock)
        self.router = QueryRouter(self.memory)

        self.consolidation: Optional[ConsolidationJob] = None
        if summarizer is not None:
            self.consolidation = ConsolidationJob(
                store,
                embedder,
                summarizer,
                config=self.settings.tiers,
                lock=lock or JobLock("consolidation", redis_url=self.settings.store.redis_url),
                clock=clock,
                locks=self.indexer.locks,
            )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MemoryService":
        """Build the store, embedder and summarizer described by settings."""
        settings = settings or get_settings()

        store = create_store(settings.store)
        embedder = Embedder.from_config(settings.embedding)

        summarizer = None
        try:
            llm = get_llm_client(provider=settings.summarizer.provider, model=settings.summarizer.model)
            summarizer = Summarizer(
                llm,
                max_tokens=settings.summarizer.max_tokens,
                max_input_chars=settings.tiers.max_summary_input_chars,
            )
        except ModelUnavailable as e:
            logger.warning(f"Summarization unavailable, Cold tier consolidation disabled: {e}")

        logger.info(
            f"Memory service ready (store={settings.store.backend}, "
            f"embedding={settings.embedding.model}/{settings.embedding.dimensions})"
        )
        return cls(store, embedder, summarizer, settings)

    # =========================================================================
    # INDEXING & SEARCH
    # =========================================================================

    def index_document(self, document: Document) -> IndexResult:
        return self.indexer.index_document(document)

    def remove_document(self, document_id: str) -> bool:
        return self.indexer.remove_document(document_id)

    def reindex_pending(self) -> List[IndexResult]:
        return self.indexer.reindex_pending()

    def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        tier_scope: Union[TierScope, str] = TierScope.ALL,
    ) -> List[SearchResult]:
        return self.memory.search(query, top_k=top_k, min_score=min_score, tier_scope=tier_scope)

    # =========================================================================
    # MEMORY TIERS
    # =========================================================================

    def build_hot_memory(self) -> str:
        return self.memory.build_hot_memory()

    def recall(self, topic: str, top_k: Optional[int] = None) -> Dict[str, list]:
        return self.memory.recall(topic, top_k=top_k)

    def record_fact_access(self, fact_ids: Union[str, Iterable[str]]) -> int:
        return self.memory.record_fact_access(fact_ids)

    def _require_consolidation(self) -> ConsolidationJob:
        if self.consolidation is None:
            raise ModelUnavailable("No summarization capability configured", capability="summarization")
        return self.consolidation

    def run_consolidation(self) -> ConsolidationResult:
        return self._require_consolidation().run()

    def plan_consolidation(self) -> ConsolidationPlan:
        return self._require_consolidation().plan()

    def commit_consolidation(self, token: str) -> ConsolidationResult:
        return self._require_consolidation().commit(token)

    # =========================================================================
    # ROUTING
    # =========================================================================

    def check_trivial(self, query: str) -> PreRouteResult:
        return self.pre_router.check_trivial(query)

    def route(self, query: str) -> RetrievalPlan:
        return self.router.route(query)

    def answer_context(self, query: str) -> AnswerContext:
        """
        Full request pipeline: trivial answer if possible, else Hot memory plus retrieval.

        Raises:
            StoreUnavailable: If the store cannot be read
        """
        pre_route = self.check_trivial(query)
        if pre_route.handled:
            return AnswerContext(pre_route=pre_route)
        return AnswerContext(pre_route=pre_route, routed=self.router.assemble_context(query))

    def stats(self) -> Dict[str, Any]:
        return {
            "search": self.search_engine.stats(),
            "indexing": self.indexer.stats,
            "embedding": self.embedder.stats,
            "consolidation_enabled": self.consolidation is not None,
        }

    def close(self) -> None:
        if self.consolidation is not None:
            self.consolidation.lock.close()
        self.store.close()
