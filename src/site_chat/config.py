"""Configuration models for the site chat system.

Every section reads `SITE_CHAT_*` environment variables (and a local `.env`
file) through pydantic-settings; explicit keyword arguments win over the
environment.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from site_chat.exceptions import ConfigurationError

_ENV_PREFIX = "SITE_CHAT_"


def _settings_config() -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=_ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )


def _split_segments(value: Any) -> Any:
    # Lists arrive from the environment as `a|b|c`.
    if isinstance(value, str):
        return [part for part in value.split("|") if part]
    return value


class ChunkingConfig(BaseSettings):
    """Configures recursive character chunking and overlap."""

    model_config = _settings_config()

    chunk_size: int = Field(default=1500, ge=1)
    chunk_overlap: int = Field(default=150, ge=0)
    min_chunk_size: int | None = Field(default=None, ge=0)
    overlap_search_window: int | None = Field(default=None, ge=0)
    overlap_cut_marker: str = "..."
    excluded_content: Annotated[list[str], NoDecode] = Field(default_factory=list)
    max_workers: int = Field(default=4, ge=1)

    @field_validator("excluded_content", mode="before")
    @classmethod
    def _split_excluded(cls, value: Any) -> Any:
        return _split_segments(value)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")
        return self

    @property
    def coalesce_threshold(self) -> int:
        """Chunks shorter than this are merged into a neighbour."""
        if self.min_chunk_size is None:
            return self.chunk_overlap
        return self.min_chunk_size

    @property
    def search_window(self) -> int:
        if self.overlap_search_window is None:
            return self.chunk_overlap // 2
        return self.overlap_search_window


class IndexingConfig(BaseSettings):
    """Configures the sitemap source and batched synchronization of the index."""

    model_config = _settings_config()

    sitemap_url: str | None = None
    sitemap_excluded_url_segments: Annotated[list[str], NoDecode] = Field(default_factory=list)
    batch_size: int = Field(default=50, ge=1)
    embedding_batch_size: int = Field(default=16, ge=1)
    keyword_count: int = Field(default=10, ge=0)

    @field_validator("sitemap_excluded_url_segments", mode="before")
    @classmethod
    def _split_excluded(cls, value: Any) -> Any:
        return _split_segments(value)


class ChatConfig(BaseSettings):
    """Configures grounded chat completion requests."""

    model_config = _settings_config()

    model: str = "gpt-4o-mini"
    role_information: str = (
        "You are a helpful assistant for the website. Answer using the provided "
        "documents and reference them as [docN]."
    )
    in_scope: bool = True
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, ge=1)
    document_count: int = Field(default=5, ge=1)


class Settings(BaseModel):
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)


def load_settings() -> Settings:
    """Build every settings section from the environment.

    Raises:
        ConfigurationError: a variable is malformed or sections disagree.
    """

    try:
        return Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid site chat settings: {exc}") from exc
