"""Configuration management for pwshpipe."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pwshpipe.framing import DEFAULT_CHUNK_SIZE
from pwshpipe.process import DEFAULT_ENGINE_ARGS

DEFAULT_HEAD_SENTINEL = "F0ZU7Wm1p4"
DEFAULT_TAIL_SENTINEL = "AdBmCXEdsB"


class Settings(BaseSettings):
    """Pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="PWSHPIPE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Engine
    executable: str | None = Field(None, description="Engine executable; defaults per platform")
    engine_args: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ENGINE_ARGS),
        description="Arguments that make the engine read commands from stdin",
    )
    scratch_dir: Path | None = Field(None, description="Directory the encoder may write command scripts to")

    # Framing
    head_sentinel: str = Field(default=DEFAULT_HEAD_SENTINEL, description="Marker opening each frame")
    tail_sentinel: str = Field(default=DEFAULT_TAIL_SENTINEL, description="Marker closing each frame")
    read_chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, description="Bytes per stream read")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("head_sentinel", "tail_sentinel")
    @classmethod
    def _non_empty_sentinel(cls, value: str) -> str:
        if not value:
            raise ValueError("sentinel must not be empty")
        return value

    @field_validator("read_chunk_size")
    @classmethod
    def _positive_chunk_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("read_chunk_size must be positive")
        return value

    @model_validator(mode="after")
    def _distinct_sentinels(self) -> Settings:
        if self.head_sentinel == self.tail_sentinel:
            raise ValueError("head and tail sentinels must differ")
        return self


def load_settings(**overrides: Any) -> Settings:
    """Load settings from the environment, then apply non-None overrides."""

    settings = Settings()
    updates = {key: value for key, value in overrides.items() if value is not None}
    if updates:
        settings = Settings.model_validate({**settings.model_dump(), **updates})
    return settings
