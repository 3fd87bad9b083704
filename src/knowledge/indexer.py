"""
Document Indexer
================

Pipeline for turning a saved document into searchable chunks.

Flow:
1. Mark document `processing`
2. Chunk the text
3. Generate embeddings (batched)
4. Atomically replace the document's chunk set, mark `processed`

Any embedding failure discards the document's chunks and marks it `failed`
with the reason kept for a later retry. Re-indexing is idempotent: chunk ids,
ordinals and spans depend only on the current text.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional
from datetime import datetime, timedelta

from .chunker import TextChunker, hash_content
from .embedder import Embedder
from .errors import ModelUnavailable, PartialIndexFailure
from .models import Chunk, Document, IndexResult, ProcessingStatus, utcnow
from .store import Collections, KnowledgeStore

logger = logging.getLogger(__name__)


class DocumentLocks:
    """
    Per-document locks shared by indexing and consolidation.

    A lock lives only while some thread holds or waits on it, so the
    registry does not grow with every document ever indexed.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, document_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(document_id, threading.Lock())
            self._users[document_id] = self._users.get(document_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[document_id] -= 1
                if not self._users[document_id]:
                    del self._users[document_id]
                    del self._locks[document_id]

    def is_held(self, document_id: str) -> bool:
        with self._guard:
            return document_id in self._locks

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class DocumentIndexer:
    """
    Indexing pipeline for the Warm tier.

    Handles:
    - Chunking and embedding
    - All-or-nothing chunk replacement
    - Per-document serialization (different documents index concurrently)
    - Processing status write-back
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: Embedder,
        chunker: Optional[TextChunker] = None,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[DocumentLocks] = None,
        stale_processing_after: timedelta = timedelta(minutes=30),
    ):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.clock = clock
        self.locks = locks or DocumentLocks()
        self.stale_processing_after = stale_processing_after

        self._documents_indexed = 0
        self._documents_failed = 0
        self._chunks_written = 0

    def index_document(self, document: Document) -> IndexResult:
        """
        Index a single document, replacing any previous chunk set.

        Args:
            document: Document to index (its record is upserted with the new status)

        Returns:
            IndexResult with final status and chunk count

        Raises:
            StoreUnavailable: If persistence fails (no partial write is assumed durable)
        """
        with self.locks.hold(document.id):
            return self._index_locked(document)

    def _index_locked(self, document: Document) -> IndexResult:
        started = time.monotonic()
        document.processing_started_at = self.clock()
        self._save_status(document, ProcessingStatus.PROCESSING)

        spans = self.chunker.chunk(document.content)

        if not spans:
            self.store.replace_document_chunks(document.id, [])
            logger.info(f"Document {document.id} has no text; processed with 0 chunks")
            return self._finish(document, [], started)

        try:
            vectors = self.embedder.embed_batch([span.text for span in spans])
            if len(vectors) != len(spans):
                raise PartialIndexFailure(document.id, len(vectors), len(spans))
        except (ModelUnavailable, PartialIndexFailure) as e:
            return self._fail(document, e)

        now = self.clock()
        chunks = [
            Chunk(
                document_id=document.id,
                chunk_index=span.index,
                content=span.text,
                start_offset=span.start,
                end_offset=span.end,
                overlap=span.overlap,
                content_hash=hash_content(span.text),
                embedding=vector,
                document_title=document.title,
                doc_type=document.doc_type,
                document_created_at=document.created_at,
                created_at=now,
            )
            for span, vector in zip(spans, vectors)
        ]

        self.store.replace_document_chunks(document.id, [c.to_record() for c in chunks])
        return self._finish(document, chunks, started)

    def _finish(self, document: Document, chunks: List[Chunk], started: float) -> IndexResult:
        # Re-saved content is live again in the Warm tier
        self.store.delete(Collections.TIERS, document.id)

        document.chunk_count = len(chunks)
        document.processed_at = self.clock()
        self._save_status(document, ProcessingStatus.PROCESSED)

        self._documents_indexed += 1
        self._chunks_written += len(chunks)
        logger.info(
            f"Indexed document {document.id} ({document.doc_type.value}): "
            f"{len(chunks)} chunks in {time.monotonic() - started:.2f}s",
            extra={"document_id": document.id, "duration": time.monotonic() - started},
        )
        return IndexResult(document.id, ProcessingStatus.PROCESSED, len(chunks))

    def _fail(self, document: Document, error: Exception) -> IndexResult:
        purged = self.store.delete_document_chunks(document.id)
        document.chunk_count = 0
        self._save_status(document, ProcessingStatus.FAILED, error=str(error))

        self._documents_failed += 1
        logger.warning(
            f"Indexing failed for document {document.id}, purged {purged} chunks: {error}",
            extra={"document_id": document.id},
        )
        return IndexResult(document.id, ProcessingStatus.FAILED, 0, str(error))

    def _save_status(
        self,
        document: Document,
        status: ProcessingStatus,
        error: Optional[str] = None,
    ) -> None:
        document.status = status
        document.processing_error = error
        self.store.put(Collections.DOCUMENTS, document.id, document.to_record())

    def index_many(self, documents: List[Document]) -> List[IndexResult]:
        """Index several documents one after another."""
        return [self.index_document(doc) for doc in documents]

    def reindex_pending(self) -> List[IndexResult]:
        """
        Retry every document that is failed, was never processed, or was
        left in `processing` by a run that died.

        A `processing` document counts as abandoned once no indexing of it is
        in progress here and it started more than `stale_processing_after` ago.

        Returns:
            One IndexResult per retried document
        """
        pending = [
            doc for doc in (Document.from_record(r) for r in self.store.get_all(Collections.DOCUMENTS))
            if doc.status in (ProcessingStatus.FAILED, ProcessingStatus.UNPROCESSED) or self._is_abandoned(doc)
        ]
        if pending:
            logger.info(f"Retrying {len(pending)} pending documents")
        return self.index_many(pending)

    def _is_abandoned(self, document: Document) -> bool:
        if document.status != ProcessingStatus.PROCESSING or self.locks.is_held(document.id):
            return False
        started = document.processing_started_at
        return started is None or self.clock() - started > self.stale_processing_after

    def remove_document(self, document_id: str) -> bool:
        """Delete a document with its chunks and tier placement."""
        with self.locks.hold(document_id):
            purged = self.store.delete_document_chunks(document_id)
            self.store.delete(Collections.TIERS, document_id)
            existed = self.store.delete(Collections.DOCUMENTS, document_id)

        logger.info(f"Removed document {document_id} ({purged} chunks)")
        return existed

    def get_status(self, document_id: str) -> Optional[Document]:
        """Current stored state of a document, or None."""
        record = self.store.get(Collections.DOCUMENTS, document_id)
        return Document.from_record(record) if record else None

    @property
    def stats(self) -> Dict[str, int]:
        """Get indexing statistics."""
        return {
            "documents_indexed": self._documents_indexed,
            "documents_failed": self._documents_failed,
            "chunks_written": self._chunks_written,
            "embedding_requests": self.embedder.stats["requests"],
        }
