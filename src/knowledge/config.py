"""
Memory Configuration Module
===========================

Centralized configuration for the memory subsystem using environment variables.
Supports both .env files and system environment variables.

Environment Variables:
    CHUNK_SIZE: Target chunk size in characters (default: 500)
    CHUNK_OVERLAP: Characters shared between neighbouring chunks (default: 50)
    CHUNK_SMALL_DOC_THRESHOLD: Documents shorter than this use the small size (default: 1000)
    CHUNK_SMALL_SIZE: Chunk size for short documents (default: 300)
    CHUNK_SMALL_OVERLAP: Overlap for short documents (default: 50)

    EMBEDDING_MODEL: Embedding model name (default: text-embedding-3-small)
    EMBEDDING_DIMENSIONS: Vector length (default: 384)
    EMBEDDING_BATCH_SIZE: Max texts per embedding call (default: 100)
    EMBEDDING_MAX_RETRIES: Retry attempts before ModelUnavailable (default: 3)
    OPENAI_API_KEY: Key for the OpenAI embedding capability

    MEMORY_TOP_K: Default number of search results (default: 5)
    MEMORY_MIN_SCORE: Default similarity threshold, 0-1 (default: 0.05)
    MEMORY_QUERY_EMBED_RETRIES: Retries for a search query embedding (default: 1)
    MEMORY_STALE_PROCESSING_MINUTES: Age after which a document stuck in processing is retried (default: 30)

    MEMORY_COLD_AGE_DAYS: Age after which Warm content is consolidated (default: 90)
    MEMORY_COMPRESSION_RATIO: Target text-size reduction (default: 100)
    MEMORY_CONSOLIDATION_BATCH: Items per consolidation batch (default: 20)
    MEMORY_HOT_FACTS / MEMORY_HOT_INTERESTS / MEMORY_HOT_CONVERSATIONS: Hot tier sizes

    SUMMARIZER_PROVIDER: anthropic | openai (default: auto-detect from keys)
    SUMMARIZER_MODEL: Model used for consolidation summaries

    MEMORY_STORE: memory | postgres (default: memory)
    DATABASE_URL or DATABASE_HOST/PORT/NAME/USER/PASSWORD: PostgreSQL connection
    REDIS_URL: Optional Redis URL for the cross-process consolidation lock

    CONSOLIDATION_CRON_DAY / CONSOLIDATION_CRON_HOUR / CONSOLIDATION_CRON_MINUTE
    LOG_LEVEL / LOG_FILE / LOG_JSON
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """
    Get environment variable with optional default and required validation.

    Raises:
        ValueError: If required=True and variable is not set
    """
    value = os.getenv(key, default)
    if required and value is None:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be an integer, got: {value}")


def get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be a float, got: {value}")


def get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


@dataclass
class ChunkingConfig:
    """Chunk sizing. Short documents use a smaller floor so they still chunk."""

    chunk_size: int = field(default_factory=lambda: get_env_int("CHUNK_SIZE", 500))
    overlap: int = field(default_factory=lambda: get_env_int("CHUNK_OVERLAP", 50))

    small_doc_threshold: int = field(default_factory=lambda: get_env_int("CHUNK_SMALL_DOC_THRESHOLD", 1000))
    small_chunk_size: int = field(default_factory=lambda: get_env_int("CHUNK_SMALL_SIZE", 300))
    small_overlap: int = field(default_factory=lambda: get_env_int("CHUNK_SMALL_OVERLAP", 50))

    def __post_init__(self):
        """Validate configuration."""
        if self.chunk_size <= 0 or self.small_chunk_size <= 0:
            raise ValueError("chunk sizes must be positive")
        if not 0 <= self.overlap < self.chunk_size:
            raise ValueError("overlap must be non-negative and smaller than chunk_size")
        if not 0 <= self.small_overlap < self.small_chunk_size:
            raise ValueError("small_overlap must be non-negative and smaller than small_chunk_size")


@dataclass
class EmbeddingConfig:
    """Embedding capability configuration."""

    model: str = field(default_factory=lambda: get_env("EMBEDDING_MODEL", "text-embedding-3-small"))
    dimensions: int = field(default_factory=lambda: get_env_int("EMBEDDING_DIMENSIONS", 384))
    api_key: Optional[str] = field(default_factory=lambda: get_env("OPENAI_API_KEY") or get_env("GPT_API_KEY"))
    batch_size: int = field(default_factory=lambda: get_env_int("EMBEDDING_BATCH_SIZE", 100))

    # Retry configuration
    max_retries: int = field(default_factory=lambda: get_env_int("EMBEDDING_MAX_RETRIES", 3))
    retry_base_delay: float = field(default_factory=lambda: get_env_float("EMBEDDING_RETRY_BASE_DELAY", 1.0))
    retry_max_delay: float = field(default_factory=lambda: get_env_float("EMBEDDING_RETRY_MAX_DELAY", 30.0))

    def __post_init__(self):
        if self.dimensions <= 0:
            raise ValueError("dimensions must be positive")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")


@dataclass
class IndexingConfig:
    """Indexing pipeline recovery settings."""

    # Documents stuck in `processing` longer than this are retried by reindex_pending
    stale_processing_minutes: int = field(default_factory=lambda: get_env_int("MEMORY_STALE_PROCESSING_MINUTES", 30))

    def __post_init__(self):
        if self.stale_processing_minutes <= 0:
            raise ValueError("stale_processing_minutes must be positive")


@dataclass
class SearchConfig:
    """Similarity search defaults."""

    top_k: int = field(default_factory=lambda: get_env_int("MEMORY_TOP_K", 5))
    # Low on purpose; results below it come from the lexical fill
    min_score: float = field(default_factory=lambda: get_env_float("MEMORY_MIN_SCORE", 0.05))
    # Query embeddings fail fast to the lexical fallback
    query_max_retries: int = field(default_factory=lambda: get_env_int("MEMORY_QUERY_EMBED_RETRIES", 1))
    context_max_chars: int = field(default_factory=lambda: get_env_int("MEMORY_CONTEXT_MAX_CHARS", 8000))

    def __post_init__(self):
        if self.top_k <= 0:
            raise ValueError("top_k must be positive")
        if not 0.0 <= self.min_score <= 1.0:
            raise ValueError("min_score must be within [0, 1]")
        if self.query_max_retries < 0:
            raise ValueError("query_max_retries cannot be negative")


@dataclass
class TierConfig:
    """Hot tier sizes and Cold tier consolidation settings."""

    cold_age_days: int = field(default_factory=lambda: get_env_int("MEMORY_COLD_AGE_DAYS", 90))
    compression_ratio: float = field(default_factory=lambda: get_env_float("MEMORY_COMPRESSION_RATIO", 100.0))
    min_summary_chars: int = field(default_factory=lambda: get_env_int("MEMORY_MIN_SUMMARY_CHARS", 200))
    max_summary_input_chars: int = field(default_factory=lambda: get_env_int("MEMORY_MAX_SUMMARY_INPUT", 12000))
    consolidation_batch_size: int = field(default_factory=lambda: get_env_int("MEMORY_CONSOLIDATION_BATCH", 20))

    hot_facts: int = field(default_factory=lambda: get_env_int("MEMORY_HOT_FACTS", 10))
    hot_interests: int = field(default_factory=lambda: get_env_int("MEMORY_HOT_INTERESTS", 5))
    hot_conversations: int = field(default_factory=lambda: get_env_int("MEMORY_HOT_CONVERSATIONS", 5))
    excerpt_chars: int = field(default_factory=lambda: get_env_int("MEMORY_EXCERPT_CHARS", 100))

    def __post_init__(self):
        if self.cold_age_days <= 0:
            raise ValueError("cold_age_days must be positive")
        if self.compression_ratio < 1:
            raise ValueError("compression_ratio must be at least 1")
        if self.consolidation_batch_size <= 0:
            raise ValueError("consolidation_batch_size must be positive")


@dataclass
class SummarizerConfig:
    """LLM used by Cold tier compression."""

    provider: Optional[str] = field(default_factory=lambda: get_env("SUMMARIZER_PROVIDER"))
    model: Optional[str] = field(default_factory=lambda: get_env("SUMMARIZER_MODEL"))
    max_tokens: int = field(default_factory=lambda: get_env_int("SUMMARIZER_MAX_TOKENS", 500))

    def __post_init__(self):
        if self.provider and self.provider not in ("anthropic", "openai"):
            raise ValueError("provider must be 'anthropic' or 'openai'")


@dataclass
class StoreConfig:
    """Persistent store configuration."""

    backend: str = field(default_factory=lambda: get_env("MEMORY_STORE", "memory"))
    database_url: Optional[str] = field(default_factory=lambda: get_env("DATABASE_URL"))

    host: str = field(default_factory=lambda: get_env("DATABASE_HOST", "localhost"))
    port: int = field(default_factory=lambda: get_env_int("DATABASE_PORT", 5432))
    name: str = field(default_factory=lambda: get_env("DATABASE_NAME", "knowledge"))
    user: str = field(default_factory=lambda: get_env("DATABASE_USER", "postgres"))
    password: str = field(default_factory=lambda: get_env("DATABASE_PASSWORD", ""))
    ssl_mode: str = field(default_factory=lambda: get_env("DATABASE_SSL_MODE", "prefer"))
    connect_timeout: int = field(default_factory=lambda: get_env_int("DATABASE_CONNECT_TIMEOUT", 10))

    pool_min_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MIN", 1))
    pool_max_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MAX", 10))

    redis_url: Optional[str] = field(default_factory=lambda: get_env("REDIS_URL"))

    @property
    def connection_dict(self) -> dict:
        """Connection parameters as dictionary for psycopg2."""
        if self.database_url:
            return {"dsn": self.database_url}
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": self.ssl_mode,
            "connect_timeout": self.connect_timeout,
        }

    def __post_init__(self):
        if self.backend not in ("memory", "postgres"):
            raise ValueError("MEMORY_STORE must be 'memory' or 'postgres'")
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size cannot exceed pool_max_size")


@dataclass
class SchedulerConfig:
    """Cron schedule for the consolidation job (monthly by default)."""

    cron_day: int = field(default_factory=lambda: get_env_int("CONSOLIDATION_CRON_DAY", 1))
    cron_hour: int = field(default_factory=lambda: get_env_int("CONSOLIDATION_CRON_HOUR", 3))
    cron_minute: int = field(default_factory=lambda: get_env_int("CONSOLIDATION_CRON_MINUTE", 0))
    timezone: str = field(default_factory=lambda: get_env("CONSOLIDATION_TIMEZONE", "UTC"))

    max_retries: int = field(default_factory=lambda: get_env_int("CONSOLIDATION_MAX_RETRIES", 3))
    retry_delay_minutes: int = field(default_factory=lambda: get_env_int("CONSOLIDATION_RETRY_DELAY", 30))
    misfire_grace_time: int = field(default_factory=lambda: get_env_int("CONSOLIDATION_MISFIRE_GRACE", 3600))

    def get_cron_expression(self) -> str:
        """Get cron expression for logging."""
        return f"{self.cron_minute} {self.cron_hour} {self.cron_day} * *"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))


@dataclass
class Settings:
    """Main settings container."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    tiers: TierConfig = field(default_factory=TierConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    app_name: str = "knowledge-memory"
    app_version: str = "1.0.0"
    environment: str = field(default_factory=lambda: get_env("ENVIRONMENT", "development"))

    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")


def load_settings() -> Settings:
    """
    Load and validate all settings.

    Raises:
        ValueError: If configuration is invalid
    """
    return Settings()


# Global settings instance (lazy-loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
