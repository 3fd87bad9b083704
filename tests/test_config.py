"""
Tests for environment-driven configuration.
"""

from unittest.mock import patch

import pytest

from src.knowledge.config import (
    ChunkingConfig,
    EmbeddingConfig,
    IndexingConfig,
    SchedulerConfig,
    SearchConfig,
    Settings,
    StoreConfig,
    SummarizerConfig,
    TierConfig,
)


class TestDefaults:

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings()

        assert settings.chunking.chunk_size == 500
        assert settings.chunking.overlap == 50
        assert settings.embedding.dimensions == 384
        assert settings.search.top_k == 5
        assert settings.search.min_score == 0.05
        assert settings.search.query_max_retries == 1
        assert settings.indexing.stale_processing_minutes == 30
        assert settings.tiers.cold_age_days == 90
        assert settings.tiers.compression_ratio == 100.0
        assert settings.tiers.consolidation_batch_size == 20
        assert settings.store.backend == "memory"
        assert settings.scheduler.get_cron_expression() == "0 3 1 * *"
        assert settings.is_production() is False


class TestEnvironmentOverrides:

    def test_overrides(self):
        env = {
            "CHUNK_SIZE": "800",
            "MEMORY_MIN_SCORE": "0.2",
            "MEMORY_COLD_AGE_DAYS": "30",
            "LOG_JSON": "yes",
            "ENVIRONMENT": "production",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = Settings()

        assert settings.chunking.chunk_size == 800
        assert settings.search.min_score == 0.2
        assert settings.tiers.cold_age_days == 30
        assert settings.logging.json_logs is True
        assert settings.is_production()

    def test_non_integer_rejected(self):
        with patch.dict("os.environ", {"CHUNK_SIZE": "big"}, clear=True):
            with pytest.raises(ValueError, match="CHUNK_SIZE"):
                ChunkingConfig()

    def test_database_url_takes_precedence(self):
        with patch.dict("os.environ", {"DATABASE_URL": "postgresql://u:p@db/knowledge"}, clear=True):
            config = StoreConfig()
        assert config.connection_dict == {"dsn": "postgresql://u:p@db/knowledge"}


class TestValidation:

    def test_overlap_must_be_smaller_than_chunk(self):
        with pytest.raises(ValueError):
            ChunkingConfig(chunk_size=100, overlap=100)

    def test_dimensions_positive(self):
        with pytest.raises(ValueError):
            EmbeddingConfig(dimensions=0)

    def test_min_score_in_unit_interval(self):
        with pytest.raises(ValueError):
            SearchConfig(min_score=1.5)

    def test_stale_processing_limit_positive(self):
        with pytest.raises(ValueError):
            IndexingConfig(stale_processing_minutes=0)

    def test_query_retries_not_negative(self):
        with pytest.raises(ValueError):
            SearchConfig(query_max_retries=-1)

    def test_compression_ratio_at_least_one(self):
        with pytest.raises(ValueError):
            TierConfig(compression_ratio=0.5)

    def test_unknown_summarizer_provider(self):
        with pytest.raises(ValueError):
            SummarizerConfig(provider="cohere")

    def test_unknown_store_backend(self):
        with pytest.raises(ValueError):
            StoreConfig(backend="sqlite")

    def test_cron_expression(self):
        assert SchedulerConfig(cron_day=15, cron_hour=4, cron_minute=30).get_cron_expression() == "30 4 15 * *"
