"""
Knowledge Store
===============

Key-value persistence by collection, with a secondary index of chunks by
owning document.

Two backends:
- InMemoryStore: thread-safe dicts, for development and tests
- PostgresStore: one JSONB table, psycopg2 connection pool

Replacing a document's chunk set is atomic in both: readers see either
the old set or the new one, never a mix.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import Json

from .config import StoreConfig
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


class Collections:
    """Collection names used by the memory subsystem."""
    DOCUMENTS = "documents"
    CHUNKS = "chunks"
    FACTS = "facts"
    INTERESTS = "interests"
    PROFILE = "profile"
    TIERS = "tiers"
    ARCHIVES = "archives"
    JOBS = "compression_jobs"


class KnowledgeStore(ABC):
    """Persistence contract consumed by the indexer, search engine and tier manager."""

    @abstractmethod
    def put(self, collection: str, key: str, record: Record) -> None:
        """Insert or overwrite a record."""

    @abstractmethod
    def append(self, collection: str, key: str, record: Record) -> None:
        """Insert a record that must not already exist (append-only logs)."""

    @abstractmethod
    def get(self, collection: str, key: str) -> Optional[Record]:
        """Fetch one record, or None."""

    @abstractmethod
    def get_all(self, collection: str) -> List[Record]:
        """Fetch every record of a collection."""

    @abstractmethod
    def delete(self, collection: str, key: str) -> bool:
        """Delete one record. Returns True if it existed."""

    @abstractmethod
    def get_chunks_by_document(self, document_id: str) -> List[Record]:
        """Chunks owned by a document, ordered by chunk_index."""

    @abstractmethod
    def replace_document_chunks(self, document_id: str, chunks: List[Record]) -> None:
        """Atomically swap a document's chunk set for a new one."""

    def delete_document_chunks(self, document_id: str) -> int:
        """Purge a document's chunks. Returns how many were removed."""
        existing = len(self.get_chunks_by_document(document_id))
        self.replace_document_chunks(document_id, [])
        return existing

    def count(self, collection: str) -> int:
        return len(self.get_all(collection))

    def close(self) -> None:
        """Release backend resources."""


class InMemoryStore(KnowledgeStore):
    """Dict-backed store. Records are deep-copied in and out."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Record]] = {}
        self._chunks_by_doc: Dict[str, Set[str]] = {}
        self._lock = threading.RLock()

    def put(self, collection: str, key: str, record: Record) -> None:
        with self._lock:
            if collection == Collections.CHUNKS:
                self._index_chunk(key, record)
            self._data.setdefault(collection, {})[key] = copy.deepcopy(record)

    def append(self, collection: str, key: str, record: Record) -> None:
        with self._lock:
            if key in self._data.get(collection, {}):
                raise ValueError(f"{collection}/{key} already exists")
            self.put(collection, key, record)

    def get(self, collection: str, key: str) -> Optional[Record]:
        with self._lock:
            record = self._data.get(collection, {}).get(key)
            return copy.deepcopy(record) if record is not None else None

    def get_all(self, collection: str) -> List[Record]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._data.get(collection, {}).values()]

    def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            record = self._data.get(collection, {}).pop(key, None)
            if record is None:
                return False
            if collection == Collections.CHUNKS:
                self._chunks_by_doc.get(record.get("document_id"), set()).discard(key)
            return True

    def get_chunks_by_document(self, document_id: str) -> List[Record]:
        with self._lock:
            chunks = self._data.get(Collections.CHUNKS, {})
            records = [copy.deepcopy(chunks[k]) for k in self._chunks_by_doc.get(document_id, ())]
        return sorted(records, key=lambda r: r["chunk_index"])

    def replace_document_chunks(self, document_id: str, chunks: List[Record]) -> None:
        with self._lock:
            table = self._data.setdefault(Collections.CHUNKS, {})
            for key in self._chunks_by_doc.pop(document_id, set()):
                table.pop(key, None)
            for record in chunks:
                self.put(Collections.CHUNKS, record["id"], record)

    def _index_chunk(self, key: str, record: Record) -> None:
        previous = self._data.get(Collections.CHUNKS, {}).get(key)
        if previous is not None:
            self._chunks_by_doc.get(previous.get("document_id"), set()).discard(key)
        self._chunks_by_doc.setdefault(record["document_id"], set()).add(key)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS knowledge_records (
    collection  TEXT NOT NULL,
    key         TEXT NOT NULL,
    document_id TEXT,
    payload     JSONB NOT NULL,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (collection, key)
);
CREATE INDEX IF NOT EXISTS idx_knowledge_records_document
    ON knowledge_records (collection, document_id);
"""


class PostgresStore(KnowledgeStore):
    """
    PostgreSQL-backed store.

    All collections share one table; chunks carry their document_id in an
    indexed column so a document's chunk set can be swapped in one transaction.
    """

    def __init__(self, config: Optional[StoreConfig] = None, init_schema: bool = True):
        self.config = config or StoreConfig()
        try:
            self._pool = pg_pool.ThreadedConnectionPool(
                self.config.pool_min_size,
                self.config.pool_max_size,
                **self.config.connection_dict,
            )
        except psycopg2.Error as e:
            raise StoreUnavailable(f"Failed to create DB pool: {e}") from e

        logger.info(f"DB pool created ({self.config.pool_min_size}-{self.config.pool_max_size} connections)")
        if init_schema:
            self.init_schema()

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        """Pooled connection that commits on success and rolls back on error."""
        try:
            conn = self._pool.getconn()
        except (pg_pool.PoolError, psycopg2.OperationalError) as e:
            raise StoreUnavailable(f"No database connection available: {e}") from e

        try:
            yield conn
            conn.commit()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            conn.rollback()
            raise StoreUnavailable(f"Database unavailable: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def init_schema(self) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        logger.info("Knowledge schema initialized")

    def put(self, collection: str, key: str, record: Record) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO knowledge_records (collection, key, document_id, payload)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (collection, key) DO UPDATE SET
                        document_id = EXCLUDED.document_id,
                        payload = EXCLUDED.payload,
                        updated_at = NOW()
                """, (collection, key, record.get("document_id"), Json(record)))

    def append(self, collection: str, key: str, record: Record) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO knowledge_records (collection, key, document_id, payload)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (collection, key) DO NOTHING
                """, (collection, key, record.get("document_id"), Json(record)))
                if cur.rowcount == 0:
                    raise ValueError(f"{collection}/{key} already exists")

    def get(self, collection: str, key: str) -> Optional[Record]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT payload FROM knowledge_records WHERE collection = %s AND key = %s",
                    (collection, key),
                )
                row = cur.fetchone()
        return row[0] if row else None

    def get_all(self, collection: str) -> List[Record]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT payload FROM knowledge_records WHERE collection = %s ORDER BY key",
                    (collection,),
                )
                rows = cur.fetchall()
        return [row[0] for row in rows]

    def delete(self, collection: str, key: str) -> bool:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM knowledge_records WHERE collection = %s AND key = %s",
                    (collection, key),
                )
                return cur.rowcount > 0

    def get_chunks_by_document(self, document_id: str) -> List[Record]:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT payload FROM knowledge_records
                    WHERE collection = %s AND document_id = %s
                    ORDER BY (payload->>'chunk_index')::int
                """, (Collections.CHUNKS, document_id))
                rows = cur.fetchall()
        return [row[0] for row in rows]

    def replace_document_chunks(self, document_id: str, chunks: List[Record]) -> None:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM knowledge_records WHERE collection = %s AND document_id = %s",
                    (Collections.CHUNKS, document_id),
                )
                for record in chunks:
                    cur.execute("""
                        INSERT INTO knowledge_records (collection, key, document_id, payload)
                        VALUES (%s, %s, %s, %s)
                    """, (Collections.CHUNKS, record["id"], document_id, Json(record)))

    def count(self, collection: str) -> int:
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM knowledge_records WHERE collection = %s", (collection,))
                return cur.fetchone()[0]

    def close(self) -> None:
        self._pool.closeall()
        logger.info("DB pool closed")


def create_store(config: Optional[StoreConfig] = None) -> KnowledgeStore:
    """Build the store backend selected by MEMORY_STORE."""
    config = config or StoreConfig()
    if config.backend == "postgres":
        return PostgresStore(config)
    return InMemoryStore()
