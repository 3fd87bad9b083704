"""
Query Router
============

Pattern-based retrieval planning:
- none:     answer from Hot memory alone (small talk, "what do you know about me")
- local:    search the personal corpus (Warm chunks, Cold summaries)
- external: real-time or current-events lookup (performed by the caller)
- hybrid:   both, merged

A local plan whose search finds nothing above the similarity threshold is
escalated to hybrid instead of answering empty-handed.

Also scores query complexity to pick a cheap or a strong model.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from src.knowledge.models import MatchType, SearchResult, TierScope
from src.memory.manager import TieredMemoryManager

logger = logging.getLogger(__name__)


class RetrievalMode(str, Enum):
    LOCAL = "local"
    EXTERNAL = "external"
    HYBRID = "hybrid"
    NONE = "none"


SELF_KNOWLEDGE_PATTERNS = [
    re.compile(p) for p in (
        r"\bwhat do you (know|remember) about me\b",
        r"\bwho am i\b",
        r"\btell me about (me|myself)\b",
        r"\bwhat have you learned about me\b",
    )
]

CONVERSATIONAL_PATTERN = re.compile(
    r"^(hi|hey|hello|thanks|thank you|ok|okay|bye|goodbye|see you|good (morning|afternoon|evening))\b"
)

EXTERNAL_PATTERNS = [
    re.compile(p) for p in (
        r"\bweather\b",
        r"\bforecast\b",
        r"\bnews\b",
        r"\bheadlines?\b",
        r"\b(latest|breaking)\b",
        r"\bcurrent (events|price|prices|score|affairs)\b",
        r"\bright now\b",
        r"\btoday'?s (price|score|game|match)",
        r"\bstock (price|market)\b",
        r"\bwho (is|are) (the )?(current )?(president|prime minister|ceo)\b",
        r"\b(search|look up|google)( it| this)? (on )?(the )?(web|internet|online)\b",
    )
]

PERSONAL_PATTERNS = [
    re.compile(p) for p in (
        r"\bmy\b",
        r"\bmine\b",
        r"\bi (saved|wrote|noted|bookmarked|uploaded|read|mentioned|said|shared)\b",
        r"\b(did|have|had) i\b",
        r"\b(you|we) (discussed|talked about)\b",
        r"\bi told you\b",
    )
]

ARCHIVE_PATTERN = re.compile(r"\b(months ago|years? ago|last year|long ago|back in \d{4}|archived?)\b")
RECENT_PATTERN = re.compile(r"\b(this week|yesterday|lately|recently|last few days)\b")

COMPLEXITY_PATTERNS = [
    # (pattern, points, reason)
    (re.compile(r"^(hello|hi|hey|good morning|good afternoon|good evening)$"), -5, "Simple greeting"),
    (re.compile(r"^(thanks?|thank you|bye|goodbye|see you)$"), -5, "Simple acknowledgment"),
    (re.compile(r"^(yes|no|ok|okay|sure|alright)$"), -5, "Simple response"),
    (re.compile(r"^(what|show|list|get|find|search)\s"), -2, "Simple retrieval command"),
    (re.compile(r"^how many"), -2, "Simple count query"),
    (re.compile(r"documents?|facts?|notes?"), -1, "Basic data access"),
    (re.compile(r"analy[sz]e|compare|evaluate|assess"), 3, "Requires analysis"),
    (re.compile(r"organi[sz]e|categori[sz]e|structure|plan"), 3, "Requires organization"),
    (re.compile(r"create.*plan|study plan|learning path"), 4, "Multi-step planning"),
    (re.compile(r"why|explain|understand|reason"), 2, "Requires reasoning"),
    (re.compile(r"best|recommend|suggest|should"), 2, "Requires judgment"),
    (re.compile(r"help me (with|prepare|understand)"), 2, "Complex assistance"),
]


@dataclass
class QueryComplexity:
    level: str  # instant | simple | medium | complex
    score: int
    confidence: float
    reasons: List[str] = field(default_factory=list)

    @property
    def recommended_model(self) -> str:
        return "sonnet" if self.level == "complex" else "haiku"


@dataclass
class RetrievalPlan:
    """Which sources to consult for a query, and why."""
    mode: RetrievalMode
    tier_scope: TierScope = TierScope.ALL
    reason: str = ""
    escalated: bool = False

    @property
    def needs_local(self) -> bool:
        return self.mode in (RetrievalMode.LOCAL, RetrievalMode.HYBRID)

    @property
    def needs_external(self) -> bool:
        return self.mode in (RetrievalMode.EXTERNAL, RetrievalMode.HYBRID)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "tier_scope": self.tier_scope.value,
            "reason": self.reason,
            "escalated": self.escalated,
        }


@dataclass
class RoutedContext:
    """Hot memory plus whatever local retrieval the plan called for."""
    query: str
    plan: RetrievalPlan
    hot_memory: str
    results: List[SearchResult] = field(default_factory=list)
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "plan": self.plan.to_dict(),
            "hot_memory": self.hot_memory,
            "results": [r.to_dict() for r in self.results],
            "context": self.context,
        }


class QueryRouter:
    """Keyword classification of queries into retrieval plans."""

    def __init__(self, memory: Optional[TieredMemoryManager] = None):
        self.memory = memory

    def route(self, query: str) -> RetrievalPlan:
        """Classify a query. Pure pattern matching: no model or store access."""
        normalized = " ".join(query.lower().split())

        if not normalized:
            return RetrievalPlan(RetrievalMode.NONE, reason="Empty query")

        if any(p.search(normalized) for p in SELF_KNOWLEDGE_PATTERNS):
            return RetrievalPlan(RetrievalMode.NONE, reason="Self-knowledge question, Hot memory is enough")

        if CONVERSATIONAL_PATTERN.match(normalized) and len(normalized.split()) <= 3:
            return RetrievalPlan(RetrievalMode.NONE, reason="Conversational")

        external = any(p.search(normalized) for p in EXTERNAL_PATTERNS)
        personal = any(p.search(normalized) for p in PERSONAL_PATTERNS)
        tier_scope = self._tier_scope(normalized)

        if external and personal:
            return RetrievalPlan(RetrievalMode.HYBRID, tier_scope, "Personal reference with real-time facts")
        if external:
            return RetrievalPlan(RetrievalMode.EXTERNAL, tier_scope, "Current events or real-time facts")
        if personal:
            return RetrievalPlan(RetrievalMode.LOCAL, tier_scope, "Personal reference")
        return RetrievalPlan(RetrievalMode.LOCAL, tier_scope, "Default to personal corpus")

    @staticmethod
    def _tier_scope(normalized: str) -> TierScope:
        if RECENT_PATTERN.search(normalized) and not ARCHIVE_PATTERN.search(normalized):
            return TierScope.WARM
        return TierScope.ALL

    def assemble_context(self, query: str) -> RoutedContext:
        """
        Build Hot memory and run the plan's local retrieval.

        Raises:
            RuntimeError: If the router was built without a memory manager
            StoreUnavailable: If the store cannot be read
        """
        if self.memory is None:
            raise RuntimeError("QueryRouter needs a TieredMemoryManager to assemble context")

        plan = self.route(query)
        hot_memory = self.memory.build_hot_memory()

        results: List[SearchResult] = []
        if plan.needs_local:
            results = self.memory.search(query, tier_scope=plan.tier_scope)
            semantic_hits = [r for r in results if r.match_type == MatchType.SEMANTIC]
            if plan.mode == RetrievalMode.LOCAL and not semantic_hits:
                plan = replace(
                    plan,
                    mode=RetrievalMode.HYBRID,
                    reason=f"{plan.reason}; nothing above threshold locally",
                    escalated=True,
                )
                logger.info(f"Escalated to hybrid: {query[:50]}")

        context = self.memory.search_engine.format_context(results) if results else ""
        logger.info(f"Routed '{query[:50]}' as {plan.mode.value} ({len(results)} results)")
        return RoutedContext(query=query, plan=plan, hot_memory=hot_memory, results=results, context=context)

    def analyze_complexity(self, query: str) -> QueryComplexity:
        """Score how demanding a query is, to choose the answering model."""
        normalized = query.strip().lower()
        score = 0
        reasons = []

        if " and " in normalized or ", then" in normalized or "; " in normalized:
            score += 2
            reasons.append("Multi-part request")

        if len(normalized.split()) > 20:
            score += 1
            reasons.append("Detailed query")

        for pattern, points, reason in COMPLEXITY_PATTERNS:
            if pattern.search(normalized):
                score += points
                reasons.append(reason)

        if score <= -3:
            level = "instant"
        elif score <= 0:
            level = "simple"
        elif score <= 3:
            level = "medium"
        else:
            level = "complex"

        confidence = min(0.95, 0.6 + abs(score) * 0.1)
        return QueryComplexity(level=level, score=score, confidence=round(confidence, 2), reasons=reasons)
