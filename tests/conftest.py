"""
Shared fixtures for the memory test suite.
"""

import pytest

from src.cache.redis_lock import JobLock
from src.knowledge.config import Settings
from src.knowledge.embedder import Embedder
from src.knowledge.store import InMemoryStore
from src.memory.consolidation import Summarizer
from src.memory.service import MemoryService

from tests.fakes import FailingEmbeddingModel, FakeLLMClient, FixedClock, HashingEmbeddingModel


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embedding_model():
    return HashingEmbeddingModel()


@pytest.fixture
def embedder(embedding_model):
    return Embedder(embedding_model, batch_size=16, max_retries=2, retry_base_delay=0, retry_max_delay=0)


@pytest.fixture
def failing_embedder():
    return Embedder(FailingEmbeddingModel(), max_retries=1, retry_base_delay=0, retry_max_delay=0)


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def service(store, embedder, llm, settings, clock):
    service = MemoryService(
        store,
        embedder,
        summarizer=Summarizer(llm),
        settings=settings,
        lock=JobLock("consolidation-test"),
        clock=clock,
    )
    yield service
    service.close()
