from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "Shopify AI Sales Assistant"
    API_PREFIX: str = "/api"

    DATABASE_URL: str
    DB_ECHO: bool = False

    # CORS
    ALLOWED_ORIGINS: str = "*"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_FILE: str = "backend.log"
    DEBUG_LOG_FILE: str = "debug.log"

    # LLM
    LLM_PROVIDER: str = "openai"  # openai | gemini
    OPENAI_API_KEY: str
    OPENAI_MODEL: str = "gpt-4o-mini"
    SUMMARY_MODEL: str = "gpt-4o-mini"
    CHAT_TEMPERATURE: float = 0.5
    CHAT_MAX_TOKENS: int = 300
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_CACHE_MAX_ITEMS: int = 512
    EMBEDDING_CACHE_TTL_SECONDS: int = 3600
    LLM_MAX_ATTEMPTS: int = 3
    LLM_RETRY_MIN_SECONDS: float = 2.0
    LLM_RETRY_MAX_SECONDS: float = 16.0

    # Gemini / Vertex
    GEMINI_MODEL: str = "gemini-2.0-flash-001"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_USE_VERTEX: bool = False
    GOOGLE_CLOUD_PROJECT: Optional[str] = None
    GOOGLE_CLOUD_LOCATION: str = "us-central1"

    # Vector index (Pinecone data plane)
    PINECONE_API_KEY: str = ""
    PINECONE_INDEX_HOST: str = ""
    PINECONE_API_VERSION: str = "2025-10"
    PINECONE_TIMEOUT_SECONDS: float = 10.0
    PINECONE_MAX_ATTEMPTS: int = 3
    PINECONE_RETRY_MIN_SECONDS: float = 1.0
    PINECONE_RETRY_MAX_SECONDS: float = 8.0

    # Hybrid search tuning (empirical, re-tune per embedding model)
    SEARCH_TOPK_DEFAULT: int = 50
    SEARCH_TOPK_PRICE_SORT: int = 100
    SEARCH_RESULT_LIMIT: int = 6
    SEARCH_THRESHOLD_DEFAULT: float = 0.40
    SEARCH_THRESHOLD_BOOSTED: float = 0.20
    SEARCH_THRESHOLD_GENERIC: float = 0.10
    SEARCH_BONUS_TITLE: float = 0.25
    SEARCH_BONUS_ATTRIBUTE: float = 0.30
    SEARCH_BONUS_TAG: float = 0.15

    # Chat
    CHAT_HISTORY_LIMIT: int = 12
    AGENTIC_TOOL_TIMEOUT_MS: int = 8000

    # Catalog sync
    CATALOG_SYNC_BATCH_SIZE: int = 50
    CATALOG_SYNC_CONCURRENCY: int = 2
    CATALOG_SYNC_BATCH_PAUSE_SECONDS: float = 0.5

    # Credits
    FREE_PLAN_MONTHLY_CREDITS: int = 1000

    # Load backend-local .env regardless of current working directory.
    # Ignore unrelated env vars (e.g. SHOPIFY_*) so the storefront settings don't crash the backend.
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        case_sensitive=True,
        extra="ignore",
    )

settings = Settings()
