"""
Knowledge Module
================

Warm tier of the personal memory: saved notes, bookmarks, files and
conversations, chunked and embedded for similarity search.

Architecture:
- Chunker: paragraph/sentence-aware overlapping spans with exact offsets
- Embedder: injected embedding capability (OpenAI text-embedding-3-small, 384 dims)
- Indexer: all-or-nothing chunk replacement per document
- SimilaritySearch: cosine ranking over Warm chunks and Cold archives, lexical fallback
"""

from .chunker import TextChunker, ChunkSpan
from .embedder import Embedder, EmbeddingModel, OpenAIEmbeddingModel
from .indexer import DocumentIndexer, DocumentLocks
from .retriever import SimilaritySearch
from .store import Collections, KnowledgeStore, InMemoryStore, PostgresStore, create_store
from .errors import (
    KnowledgeError,
    ModelUnavailable,
    PartialIndexFailure,
    StoreUnavailable,
    NoResultsAboveThreshold,
    StalePlanError,
)
from .models import (
    Document,
    Chunk,
    Fact,
    Interest,
    UserProfile,
    SearchResult,
    IndexResult,
    DocType,
    MemoryTier,
    TierScope,
    ProcessingStatus,
)

__all__ = [
    "TextChunker",
    "ChunkSpan",
    "Embedder",
    "EmbeddingModel",
    "OpenAIEmbeddingModel",
    "DocumentIndexer",
    "DocumentLocks",
    "SimilaritySearch",
    "Collections",
    "KnowledgeStore",
    "InMemoryStore",
    "PostgresStore",
    "create_store",
    "KnowledgeError",
    "ModelUnavailable",
    "PartialIndexFailure",
    "StoreUnavailable",
    "NoResultsAboveThreshold",
    "StalePlanError",
    "Document",
    "Chunk",
    "Fact",
    "Interest",
    "UserProfile",
    "SearchResult",
    "IndexResult",
    "DocType",
    "MemoryTier",
    "TierScope",
    "ProcessingStatus",
]
