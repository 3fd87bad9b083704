"""
Tests for the in-memory knowledge store.
"""

import threading

import pytest

from src.knowledge.store import Collections, InMemoryStore, create_store
from src.knowledge.config import StoreConfig


def chunk_record(document_id: str, index: int, content: str = "text") -> dict:
    return {
        "id": f"{document_id}:{index}",
        "document_id": document_id,
        "chunk_index": index,
        "content": content,
    }


class TestInMemoryStore:

    def setup_method(self):
        self.store = InMemoryStore()

    def test_put_get(self):
        self.store.put(Collections.FACTS, "f1", {"id": "f1", "text": "likes tea"})
        assert self.store.get(Collections.FACTS, "f1") == {"id": "f1", "text": "likes tea"}
        assert self.store.get(Collections.FACTS, "missing") is None

    def test_records_are_copied(self):
        """Mutating a returned record does not change the stored one."""
        self.store.put(Collections.FACTS, "f1", {"id": "f1", "tags": ["a"]})
        record = self.store.get(Collections.FACTS, "f1")
        record["tags"].append("b")

        assert self.store.get(Collections.FACTS, "f1")["tags"] == ["a"]

    def test_append_rejects_existing_key(self):
        self.store.append(Collections.JOBS, "job1", {"id": "job1"})
        with pytest.raises(ValueError):
            self.store.append(Collections.JOBS, "job1", {"id": "job1", "changed": True})
        assert self.store.get(Collections.JOBS, "job1") == {"id": "job1"}

    def test_delete(self):
        self.store.put(Collections.FACTS, "f1", {"id": "f1"})
        assert self.store.delete(Collections.FACTS, "f1") is True
        assert self.store.delete(Collections.FACTS, "f1") is False
        assert self.store.count(Collections.FACTS) == 0

    def test_chunks_by_document_are_ordered(self):
        self.store.replace_document_chunks("d1", [chunk_record("d1", 2), chunk_record("d1", 0), chunk_record("d1", 1)])
        self.store.replace_document_chunks("d2", [chunk_record("d2", 0)])

        chunks = self.store.get_chunks_by_document("d1")
        assert [c["chunk_index"] for c in chunks] == [0, 1, 2]
        assert self.store.count(Collections.CHUNKS) == 4

    def test_replace_removes_stale_chunks(self):
        self.store.replace_document_chunks("d1", [chunk_record("d1", i) for i in range(5)])
        self.store.replace_document_chunks("d1", [chunk_record("d1", i, "new") for i in range(2)])

        chunks = self.store.get_chunks_by_document("d1")
        assert len(chunks) == 2
        assert all(c["content"] == "new" for c in chunks)
        assert self.store.count(Collections.CHUNKS) == 2

    def test_delete_document_chunks(self):
        self.store.replace_document_chunks("d1", [chunk_record("d1", i) for i in range(3)])
        assert self.store.delete_document_chunks("d1") == 3
        assert self.store.get_chunks_by_document("d1") == []

    def test_concurrent_replace_never_mixes_sets(self):
        """Readers see one complete chunk set, never a blend of two."""
        old = [chunk_record("d1", i, "old") for i in range(20)]
        new = [chunk_record("d1", i, "new") for i in range(20)]
        self.store.replace_document_chunks("d1", old)

        mixed = []

        def writer():
            for i in range(200):
                self.store.replace_document_chunks("d1", new if i % 2 else old)

        def reader():
            for _ in range(200):
                contents = {c["content"] for c in self.store.get_chunks_by_document("d1")}
                if len(contents) > 1:
                    mixed.append(contents)

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert mixed == []


class TestCreateStore:

    def test_memory_backend(self):
        store = create_store(StoreConfig(backend="memory"))
        assert isinstance(store, InMemoryStore)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError):
            StoreConfig(backend="sqlite")
