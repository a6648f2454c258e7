"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ─────────────────────────────────────────────────────────────
    # SQLite for local dev; any SQLAlchemy URL with row locking works in prod.
    DATABASE_URL: str = "sqlite:///./lesson_tutor.db"

    # ── Auth ─────────────────────────────────────────────────────────────────
    SECRET_KEY: str = "dev-secret-change-in-prod"
    ALGORITHM: str = "HS256"

    # ── Oracle GenAI (OCI request signing) ────────────────────────────────────
    OCI_CONFIG_FILE: str = "~/.oci/config"
    OCI_CONFIG_PROFILE: str = "DEFAULT"
    # Optional explicit endpoint. If blank, we auto-derive from region in config.
    ORACLE_GENAI_BASE_URL: str = ""
    ORACLE_GENAI_MODEL: str = "meta.llama-3.1-70b-instruct"
    ORACLE_GENAI_COMPARTMENT_ID: str = ""

    # ── Anthropic Claude (used when OCI is not configured) ───────────────────
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-20241022"

    MODEL_MAX_TOKENS: int = 1024
    MODEL_TEMPERATURE: float = 0.2

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list of allowed origins.
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    LOG_LEVEL: str = "INFO"

    # ── Lesson files / retrieval ─────────────────────────────────────────────
    STORAGE_DIR: str = "./storage"
    PDF_MAX_PAGES: int = 20
    PDF_CACHE_MAX_CHARS: int = 40000
    RAG_CHUNK_SIZE: int = 1000
    RAG_CHUNK_OVERLAP: int = 200

    # ── Quotas ───────────────────────────────────────────────────────────────
    DAILY_MESSAGE_LIMIT: int = 20
    MONTHLY_TOKEN_LIMIT: int = 120000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
