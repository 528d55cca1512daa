"""Runtime configuration for the Just Read It backend (pydantic-settings)."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_STORAGE_DIR = Path(__file__).resolve().parent / "storage"


class Settings(BaseSettings):
    """All tunables, read from ``JUSTREADIT_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="JUSTREADIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    # Relational store
    database_url: str = Field(default=f"sqlite:///{_STORAGE_DIR / 'justreadit.db'}")

    # Vector index
    index_dir: Optional[Path] = Field(default=_STORAGE_DIR / "vectors")
    index_namespace: str = "justReadIt"

    # Embedding provider
    embed_provider: str = "sentence-transformers"
    embed_model: str = "BAAI/bge-small-en-v1.5"
    openai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("JUSTREADIT_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    embed_concurrency: int = Field(default=8, ge=1)
    embed_timeout_seconds: float = Field(default=60.0, gt=0)

    # Synchronization
    legacy_delete_ceiling: int = Field(default=1000, ge=0)
    book_link_prefix: str = "/justreadit/book/"
    note_link_prefix: str = "/justreadit/note/"

    # Search
    search_top_k: int = Field(default=3, ge=1)

    # HTTP
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    @field_validator("embed_provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"sentence-transformers", "openai"}:
            raise ValueError(f"Unknown embedding provider: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.lower()
        if v not in {"console", "json"}:
            raise ValueError(f"Invalid log format: {v}")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()
