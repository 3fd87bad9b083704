"""
Routing Module
==============

Decides how much work a query needs:
- PreRouter: direct answers for trivial queries (no retrieval, no model call)
- QueryRouter: retrieval plan (none / local / external / hybrid) and context assembly
"""

from .pre_router import PreRouter, PreRouteResult, evaluate_arithmetic
from .query_router import QueryRouter, RetrievalPlan, RetrievalMode, RoutedContext, QueryComplexity

__all__ = [
    "PreRouter",
    "PreRouteResult",
    "evaluate_arithmetic",
    "QueryRouter",
    "RetrievalPlan",
    "RetrievalMode",
    "RoutedContext",
    "QueryComplexity",
]
