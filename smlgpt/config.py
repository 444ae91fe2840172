"""Configuration utilities for the SMLGPT backend."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _env_flag(name: str, default: bool) -> bool:
    """Return a boolean flag derived from environment variables."""

    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str, *fallbacks: str) -> str | None:
    """Return the first non-blank value among ``name`` and ``fallbacks``."""

    for key in (name, *fallbacks):
        raw = os.getenv(key)
        if raw and raw.strip():
            return raw.strip()
    return None


BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

DEFAULT_ALLOWED_UPLOAD_TYPES: Tuple[str, ...] = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/webp",
)

DEFAULT_ALLOWED_AUDIO_TYPES: Tuple[str, ...] = (
    "audio/wav",
    "audio/mp3",
    "audio/mpeg",
    "audio/mp4",
    "audio/webm",
    "audio/ogg",
)


def _load_environment() -> None:
    """Load environment variables from a ``.env`` file if present."""

    explicit_path = os.getenv("SMLGPT_ENV_FILE")
    candidates = []

    if explicit_path:
        candidates.append(Path(explicit_path))

    candidates.append(PROJECT_ROOT / ".env")

    for candidate in candidates:
        try_path = candidate.expanduser()
        if try_path.exists():
            load_dotenv(try_path, override=False)


_load_environment()


def _database_url_default() -> str:
    """Return the configured job-queue database URL."""

    return (
        os.getenv("DATABASE_URL")
        or os.getenv("JOB_QUEUE_URL")
        or "sqlite:///./smlgpt-jobs.db"
    )


def _split_csv(raw: str | None) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class Settings(BaseModel):
    """Application configuration loaded from environment variables."""

    model_config = ConfigDict(validate_default=True)

    app_env: str = Field(
        default_factory=lambda: os.getenv("APP_ENV")
        or os.getenv("NODE_ENV")
        or "production"
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "5000")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))
    cors_origins: Tuple[str, ...] = Field(
        default_factory=lambda: _split_csv(
            os.getenv("CORS_ORIGIN", "http://localhost:3000")
        )
    )

    # Uploads and object storage
    upload_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("UPLOAD_DIR", str(PROJECT_ROOT / "uploads"))
        )
    )
    max_upload_size: int = Field(
        default_factory=lambda: int(os.getenv("MAX_UPLOAD_SIZE", str(50 * 1024 * 1024)))
    )
    max_audio_size: int = Field(
        default_factory=lambda: int(os.getenv("MAX_AUDIO_SIZE", str(25 * 1024 * 1024)))
    )
    allowed_upload_types: Tuple[str, ...] = Field(
        default_factory=lambda: _split_csv(os.getenv("ALLOWED_UPLOAD_TYPES"))
        or DEFAULT_ALLOWED_UPLOAD_TYPES
    )
    allowed_audio_types: Tuple[str, ...] = Field(
        default_factory=lambda: _split_csv(os.getenv("ALLOWED_AUDIO_TYPES"))
        or DEFAULT_ALLOWED_AUDIO_TYPES
    )
    storage_container_url: str | None = Field(
        default_factory=lambda: _env_str("AZURE_STORAGE_CONTAINER_URL")
    )
    storage_sas_token: str | None = Field(
        default_factory=lambda: _env_str("AZURE_BLOB_SAS_TOKEN")
    )

    # Azure OpenAI (chat + vision)
    openai_endpoint: str | None = Field(
        default_factory=lambda: _env_str("AZURE_OPENAI_ENDPOINT")
    )
    openai_api_key: str | None = Field(
        default_factory=lambda: _env_str("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_KEY")
    )
    openai_deployment: str = Field(
        default_factory=lambda: os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME", "gpt-4.1")
    )
    openai_api_version: str = Field(
        default_factory=lambda: os.getenv("AZURE_OPENAI_API_VERSION", "2024-10-21")
    )

    # Azure OpenAI embeddings
    embedding_endpoint: str | None = Field(
        default_factory=lambda: _env_str(
            "AZURE_OPENAI_EMBEDDING_ENDPOINT", "AZURE_OPENAI_ENDPOINT"
        )
    )
    embedding_api_key: str | None = Field(
        default_factory=lambda: _env_str(
            "AZURE_OPENAI_EMBEDDING_API_KEY", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_KEY"
        )
    )
    embedding_model: str = Field(
        default_factory=lambda: os.getenv(
            "AZURE_OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"
        )
    )

    # Other Azure AI services
    vision_endpoint: str | None = Field(
        default_factory=lambda: _env_str(
            "AZURE_COMPUTER_VISION_ENDPOINT", "AZURE_VISION_ENDPOINT"
        )
    )
    vision_key: str | None = Field(
        default_factory=lambda: _env_str("AZURE_COMPUTER_VISION_KEY", "AZURE_VISION_KEY")
    )
    document_endpoint: str | None = Field(
        default_factory=lambda: _env_str("AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT")
    )
    document_key: str | None = Field(
        default_factory=lambda: _env_str("AZURE_DOCUMENT_INTELLIGENCE_KEY")
    )
    speech_key: str | None = Field(default_factory=lambda: _env_str("AZURE_SPEECH_KEY"))
    speech_region: str | None = Field(
        default_factory=lambda: _env_str("AZURE_SPEECH_REGION")
    )
    speech_endpoint: str | None = Field(
        default_factory=lambda: _env_str("AZURE_SPEECH_ENDPOINT")
    )
    search_endpoint: str | None = Field(
        default_factory=lambda: _env_str("AZURE_SEARCH_ENDPOINT")
    )
    search_key: str | None = Field(
        default_factory=lambda: _env_str("AZURE_SEARCH_ADMIN_KEY")
    )
    search_index: str = Field(
        default_factory=lambda: os.getenv("AZURE_SEARCH_INDEX_NAME", "smlgpt-files")
    )
    provider_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "60"))
    )

    # Job queue
    database_url: str = Field(default_factory=_database_url_default)
    job_queue_enabled: bool = Field(
        default_factory=lambda: _env_flag("JOB_QUEUE_ENABLED", True)
    )
    job_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("JOB_QUEUE_CONCURRENCY", "3"))
    )
    job_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    )
    job_backoff_base_s: float = Field(
        default_factory=lambda: float(os.getenv("JOB_BACKOFF_BASE_SECONDS", "2.0"))
    )
    job_retention_hours: float = Field(
        default_factory=lambda: float(os.getenv("JOB_RETENTION_HOURS", "24"))
    )
    job_poll_interval_s: float = Field(
        default_factory=lambda: float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "1.0"))
    )

    # Rate limiting
    rate_limit_window_ms: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_WINDOW_MS", "900000"))
    )
    rate_limit_max_requests: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))
    )

    # Chat
    chat_max_context_messages: int = Field(
        default_factory=lambda: int(os.getenv("CHAT_MAX_CONTEXT_MESSAGES", "20"))
    )
    chat_document_context_chars: int = Field(
        default_factory=lambda: int(os.getenv("CHAT_DOCUMENT_CONTEXT_CHARS", "8000"))
    )
    default_voice: str = Field(
        default_factory=lambda: os.getenv("AZURE_SPEECH_VOICE", "en-US-JennyNeural")
    )

    @property
    def is_development(self) -> bool:
        return self.app_env.strip().lower() in {"development", "dev"}

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_endpoint and self.openai_api_key)

    @property
    def embeddings_configured(self) -> bool:
        return bool(self.embedding_endpoint and self.embedding_api_key)

    @property
    def vision_configured(self) -> bool:
        return bool(self.vision_endpoint and self.vision_key)

    @property
    def documents_configured(self) -> bool:
        return bool(self.document_endpoint and self.document_key)

    @property
    def speech_configured(self) -> bool:
        return bool(self.speech_key and (self.speech_region or self.speech_endpoint))

    @property
    def search_configured(self) -> bool:
        return bool(self.search_endpoint and self.search_key)

    @property
    def blob_configured(self) -> bool:
        return bool(self.storage_container_url)

    @field_validator("upload_dir", mode="after")
    @classmethod
    def _ensure_upload_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("allowed_upload_types", "allowed_audio_types", mode="after")
    @classmethod
    def _normalise_mimetypes(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(item.lower() for item in value))

    @field_validator("job_concurrency", "job_max_attempts", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator("job_backoff_base_s", "job_retention_hours", mode="after")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        return max(0.0, value)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached settings so that subsequent calls reload from the environment."""

    get_settings.cache_clear()
