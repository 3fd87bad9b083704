"""
Knowledge Errors
================

Error taxonomy for the memory and retrieval subsystem.

Only StoreUnavailable is meant to abort a user request. Everything else
degrades retrieval quality (lexical fallback, hybrid routing, per-batch
job failure) instead of surfacing a fatal error.
"""

from typing import Optional


class KnowledgeError(Exception):
    """Base class for memory subsystem errors."""


class ModelUnavailable(KnowledgeError):
    """
    Embedding or summarization capability is down or misbehaving.

    `retryable` is False for failures that another attempt cannot fix,
    such as a missing API key or a model with the wrong dimensionality.
    """

    def __init__(self, message: str, capability: str = "embedding", retryable: bool = True):
        super().__init__(message)
        self.capability = capability
        self.retryable = retryable


class PartialIndexFailure(KnowledgeError):
    """Some chunks of a document were embedded and some were not."""

    def __init__(self, document_id: str, embedded: int, expected: int, reason: Optional[str] = None):
        message = f"Document {document_id}: embedded {embedded}/{expected} chunks"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.document_id = document_id
        self.embedded = embedded
        self.expected = expected


class StoreUnavailable(KnowledgeError):
    """Persistence layer is unreachable. No partial write is assumed durable."""


class NoResultsAboveThreshold(KnowledgeError):
    """
    Semantic scoring found nothing above the similarity threshold.

    Not an error for callers: it is raised and caught internally to trigger
    the lexical fallback and hybrid routing.
    """

    def __init__(self, query: str, min_score: float):
        super().__init__(f"No results above {min_score:.2f} for query: {query[:50]}")
        self.query = query
        self.min_score = min_score


class StalePlanError(KnowledgeError):
    """A consolidation commit token no longer matches the current plan."""
