"""
Knowledge Data Models
=====================

Dataclasses for documents, chunks, facts and the memory tiers.

Every persisted model round-trips through ``to_record()`` / ``from_record()``
so the store only ever sees JSON-compatible dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DocType(str, Enum):
    """Kinds of saved content."""
    NOTE = "note"
    BOOKMARK = "bookmark"
    FILE = "file"
    CONVERSATION = "conversation"


class ProcessingStatus(str, Enum):
    """Indexing state of a document."""
    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class MemoryTier(str, Enum):
    """Where a piece of content currently lives."""
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class TierScope(str, Enum):
    """Which searchable tiers a query is allowed to consult."""
    WARM = "warm"
    COLD = "cold"
    ALL = "all"

    @property
    def includes_warm(self) -> bool:
        return self in (TierScope.WARM, TierScope.ALL)

    @property
    def includes_cold(self) -> bool:
        return self in (TierScope.COLD, TierScope.ALL)


class MatchType(str, Enum):
    SEMANTIC = "semantic"
    LEXICAL = "lexical"


@dataclass
class Document:
    """A saved note, bookmark, file or conversation."""
    id: str
    doc_type: DocType
    title: str
    content: str
    created_at: datetime = field(default_factory=utcnow)

    # Written back by the indexer
    status: ProcessingStatus = ProcessingStatus.UNPROCESSED
    chunk_count: int = 0
    processing_started_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processing_error: Optional[str] = None

    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.doc_type, str):
            self.doc_type = DocType(self.doc_type)
        if isinstance(self.status, str):
            self.status = ProcessingStatus(self.status)
        self.created_at = _parse_dt(self.created_at)
        self.processed_at = _parse_dt(self.processed_at)
        self.processing_started_at = _parse_dt(self.processing_started_at)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "doc_type": self.doc_type.value,
            "title": self.title,
            "content": self.content,
            "created_at": _iso(self.created_at),
            "status": self.status.value,
            "chunk_count": self.chunk_count,
            "processing_started_at": _iso(self.processing_started_at),
            "processed_at": _iso(self.processed_at),
            "processing_error": self.processing_error,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Document":
        return cls(**record)


@dataclass
class Chunk:
    """An embedded span of a document."""
    document_id: str
    chunk_index: int
    content: str
    start_offset: int
    end_offset: int
    overlap: int
    content_hash: str
    embedding: List[float]

    # Copied from the document for ranking and display
    document_title: str = ""
    doc_type: DocType = DocType.NOTE
    document_created_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if isinstance(self.doc_type, str):
            self.doc_type = DocType(self.doc_type)
        self.document_created_at = _parse_dt(self.document_created_at)
        self.created_at = _parse_dt(self.created_at)

    @property
    def id(self) -> str:
        return f"{self.document_id}:{self.chunk_index}"

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "overlap": self.overlap,
            "content_hash": self.content_hash,
            "embedding": list(self.embedding),
            "document_title": self.document_title,
            "doc_type": self.doc_type.value,
            "document_created_at": _iso(self.document_created_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Chunk":
        data = dict(record)
        data.pop("id", None)
        return cls(**data)


@dataclass
class Fact:
    """A short statement about the user, ranked into Hot memory by access count."""
    id: str
    category: str
    subject: str
    text: str
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    status: str = "active"
    confidence: float = 1.0
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.last_accessed = _parse_dt(self.last_accessed)
        self.created_at = _parse_dt(self.created_at)

    @property
    def tags(self) -> List[str]:
        return [self.category, self.subject]

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "subject": self.subject,
            "text": self.text,
            "access_count": self.access_count,
            "last_accessed": _iso(self.last_accessed),
            "status": self.status,
            "confidence": self.confidence,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Fact":
        return cls(**record)


@dataclass
class Interest:
    """A topic the user engages with."""
    id: str
    name: str
    engagement_score: float = 0.0
    content_count: int = 0
    last_activity: Optional[datetime] = None

    def __post_init__(self):
        self.last_activity = _parse_dt(self.last_activity)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "engagement_score": self.engagement_score,
            "content_count": self.content_count,
            "last_activity": _iso(self.last_activity),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Interest":
        return cls(**record)


@dataclass
class UserProfile:
    name: str = "User"
    summary: str = ""
    days_active: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {"name": self.name, "summary": self.summary, "days_active": self.days_active}

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "UserProfile":
        return cls(**record)


@dataclass
class MemoryTierEntry:
    """Tier placement of one content item. No entry means Warm."""
    content_id: str
    tier: MemoryTier
    archive_id: Optional[str] = None
    compression_ratio: Optional[float] = None
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if isinstance(self.tier, str):
            self.tier = MemoryTier(self.tier)
        self.updated_at = _parse_dt(self.updated_at)

    def to_record(self) -> Dict[str, Any]:
        return {
            "content_id": self.content_id,
            "tier": self.tier.value,
            "archive_id": self.archive_id,
            "compression_ratio": self.compression_ratio,
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MemoryTierEntry":
        return cls(**record)


@dataclass
class ArchiveEntry:
    """Compressed summary of a batch of aged content (Cold tier payload)."""
    id: str
    period: str
    source_ids: List[str]
    summary: str
    embedding: List[float]
    original_size: int
    compressed_size: int
    source_titles: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.created_at = _parse_dt(self.created_at)

    @property
    def compression_ratio(self) -> float:
        if self.compressed_size == 0:
            return 0.0
        return round(self.original_size / self.compressed_size, 2)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "period": self.period,
            "source_ids": list(self.source_ids),
            "summary": self.summary,
            "embedding": list(self.embedding),
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "source_titles": list(self.source_titles),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ArchiveEntry":
        return cls(**record)


@dataclass
class CompressionJobRecord:
    """Audit record of one consolidation run. Written once, never updated."""
    id: str
    ran_at: datetime
    items_archived: int
    batches_completed: int
    batches_failed: int
    archive_size: int
    errors: List[str] = field(default_factory=list)
    interrupted: bool = False

    def __post_init__(self):
        self.ran_at = _parse_dt(self.ran_at)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ran_at": _iso(self.ran_at),
            "items_archived": self.items_archived,
            "batches_completed": self.batches_completed,
            "batches_failed": self.batches_failed,
            "archive_size": self.archive_size,
            "errors": list(self.errors),
            "interrupted": self.interrupted,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CompressionJobRecord":
        return cls(**record)


@dataclass
class SearchResult:
    """A ranked hit from the Warm chunk index or the Cold archive."""
    chunk_id: str
    document_id: Optional[str]
    content: str
    score: float
    tier: MemoryTier = MemoryTier.WARM
    match_type: MatchType = MatchType.SEMANTIC
    document_title: Optional[str] = None
    document_created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "content": self.content,
            "score": round(self.score, 4),
            "tier": self.tier.value,
            "match_type": self.match_type.value,
            "document_title": self.document_title,
        }


@dataclass
class IndexResult:
    """Outcome of indexing one document."""
    document_id: str
    status: ProcessingStatus
    chunk_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ProcessingStatus.PROCESSED
