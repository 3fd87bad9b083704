"""
Similarity Search
=================

Ranks stored vectors against a query:
1. Embed the query
2. Cosine similarity against every candidate in the requested tier scope
   (Warm chunks, Cold archive summaries)
3. Lexical fallback fills any slots semantic scoring left empty

The caller is never told "no results" while some chunk literally contains
the query or one of its terms.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

import numpy as np

from .config import SearchConfig
from .embedder import Embedder
from .errors import ModelUnavailable, NoResultsAboveThreshold
from .models import MatchType, MemoryTier, SearchResult, TierScope
from .store import Collections, KnowledgeStore

logger = logging.getLogger(__name__)

TERM_PATTERN = re.compile(r"\w+")

STOPWORDS = frozenset({
    "a", "an", "and", "are", "about", "did", "do", "for", "from", "have",
    "how", "i", "in", "is", "it", "me", "my", "of", "on", "or", "the",
    "this", "that", "to", "was", "what", "when", "where", "who", "with",
    "you", "your",
})


@dataclass
class _Candidate:
    id: str
    document_id: Optional[str]
    content: str
    embedding: Optional[List[float]]
    tier: MemoryTier
    title: Optional[str]
    created_at: Optional[datetime]

    @property
    def recency(self) -> float:
        return self.created_at.timestamp() if self.created_at else 0.0


class SimilaritySearch:
    """
    Searches the Warm chunk index and the Cold archive.

    Scores are cosine similarities of L2-normalised vectors, clamped to [0, 1].
    Equal scores prefer the more recently added document.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        config: Optional[SearchConfig] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or SearchConfig()

    def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        tier_scope: Union[TierScope, str] = TierScope.ALL,
    ) -> List[SearchResult]:
        """
        Search for relevant chunks.

        Args:
            query: Search query text
            top_k: Number of results to return
            min_score: Similarity threshold in [0, 1]
            tier_scope: Which tiers to consult (warm, cold or all)

        Returns:
            List of SearchResult, semantic hits first, then lexical fill

        Raises:
            ValueError: If top_k is below 1
            StoreUnavailable: If candidates cannot be loaded
        """
        top_k = self.config.top_k if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")
        min_score = self.config.min_score if min_score is None else min_score
        tier_scope = TierScope(tier_scope)

        query = query.strip()
        if not query:
            return []

        candidates = self._load_candidates(tier_scope)
        if not candidates:
            logger.info("No candidates in scope %s", tier_scope.value)
            return []

        results: List[SearchResult] = []
        try:
            results = self._semantic(query, candidates, top_k, min_score)
        except ModelUnavailable as e:
            logger.warning(f"Semantic search unavailable, using lexical fallback: {e}")
        except NoResultsAboveThreshold as e:
            logger.info(f"{e}; using lexical fallback")

        if len(results) < top_k:
            seen = {r.chunk_id for r in results}
            lexical = [r for r in self._lexical(query, candidates) if r.chunk_id not in seen]
            results.extend(lexical[:top_k - len(results)])

        logger.info(f"Search returned {len(results)} results for query: {query[:50]}")
        return results

    def _load_candidates(self, tier_scope: TierScope) -> List[_Candidate]:
        candidates: List[_Candidate] = []

        if tier_scope.includes_warm:
            for record in self.store.get_all(Collections.CHUNKS):
                created = record.get("document_created_at")
                candidates.append(_Candidate(
                    id=record["id"],
                    document_id=record["document_id"],
                    content=record["content"],
                    embedding=record.get("embedding"),
                    tier=MemoryTier.WARM,
                    title=record.get("document_title"),
                    created_at=datetime.fromisoformat(created) if created else None,
                ))

        if tier_scope.includes_cold:
            for record in self.store.get_all(Collections.ARCHIVES):
                candidates.append(_Candidate(
                    id=record["id"],
                    document_id=None,
                    content=record["summary"],
                    embedding=record.get("embedding"),
                    tier=MemoryTier.COLD,
                    title=f"Archive {record['period']}",
                    created_at=datetime.fromisoformat(record["created_at"]),
                ))

        return candidates

    def _semantic(
        self,
        query: str,
        candidates: List[_Candidate],
        top_k: int,
        min_score: float,
    ) -> List[SearchResult]:
        """Cosine ranking. Raises NoResultsAboveThreshold when nothing clears min_score."""
        query_vector = np.asarray(
            self.embedder.embed(query, max_retries=self.config.query_max_retries),
            dtype=np.float64,
        )
        query_norm = np.linalg.norm(query_vector)
        if query_norm == 0:
            raise ModelUnavailable("Embedding model returned a zero query vector")

        dims = self.embedder.dimensions
        scorable = [c for c in candidates if c.embedding and len(c.embedding) == dims]
        skipped = len(candidates) - len(scorable)
        if skipped:
            logger.warning(f"Skipped {skipped} candidates without a {dims}-dim embedding")
        if not scorable:
            raise NoResultsAboveThreshold(query, min_score)

        matrix = np.asarray([c.embedding for c in scorable], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = np.inf
        scores = np.clip(matrix @ query_vector / (norms * query_norm), 0.0, 1.0)

        order = sorted(
            range(len(scorable)),
            key=lambda i: (-scores[i], -scorable[i].recency, scorable[i].id),
        )

        results = []
        for i in order:
            if scores[i] < min_score:
                break
            results.append(self._to_result(scorable[i], float(scores[i]), MatchType.SEMANTIC))
            if len(results) >= top_k:
                break

        if not results:
            raise NoResultsAboveThreshold(query, min_score)
        return results

    def _lexical(self, query: str, candidates: List[_Candidate]) -> List[SearchResult]:
        """Case-insensitive phrase and term matching, ranked by match count then recency."""
        phrase = query.lower()
        words = list(dict.fromkeys(TERM_PATTERN.findall(phrase)))
        terms = [w for w in words if w not in STOPWORDS] or words

        ranked = []
        for candidate in candidates:
            text = candidate.content.lower()
            phrase_hits = text.count(phrase)
            matched = [t for t in terms if t in text]
            if not phrase_hits and not matched:
                continue

            occurrences = sum(text.count(t) for t in matched)
            score = 1.0 if phrase_hits else len(matched) / len(terms)
            ranked.append((phrase_hits, len(matched), occurrences, candidate.recency, candidate, score))

        ranked.sort(key=lambda r: (-r[0], -r[1], -r[2], -r[3], r[4].id))
        return [self._to_result(r[4], r[5], MatchType.LEXICAL) for r in ranked]

    @staticmethod
    def _to_result(candidate: _Candidate, score: float, match_type: MatchType) -> SearchResult:
        return SearchResult(
            chunk_id=candidate.id,
            document_id=candidate.document_id,
            content=candidate.content,
            score=score,
            tier=candidate.tier,
            match_type=match_type,
            document_title=candidate.title,
            document_created_at=candidate.created_at,
        )

    def format_context(self, results: List[SearchResult], max_chars: Optional[int] = None) -> str:
        """
        Format search results as context for the language model.

        Args:
            results: Search results to format
            max_chars: Approximate max characters of context

        Returns:
            Formatted context string
        """
        if not results:
            return ""

        max_chars = max_chars or self.config.context_max_chars
        context_parts = []
        total = 0

        for i, result in enumerate(results, 1):
            part = (
                f"[Source {i}] ({result.tier.value}, {result.match_type.value}, "
                f"relevance: {result.score:.2f}) {result.document_title or ''}\n"
                f"---\n"
                f"{result.content}\n"
            )
            if total + len(part) > max_chars:
                break
            context_parts.append(part)
            total += len(part)

        return "\n".join(context_parts)

    def stats(self) -> dict:
        """Counts of searchable content."""
        documents = self.store.get_all(Collections.DOCUMENTS)
        chunks = self.store.count(Collections.CHUNKS)
        return {
            "total_documents": len(documents),
            "processed_documents": sum(1 for d in documents if d["status"] == "processed"),
            "total_chunks": chunks,
            "archives": self.store.count(Collections.ARCHIVES),
            "average_chunks_per_document": round(chunks / len(documents), 2) if documents else 0.0,
        }
