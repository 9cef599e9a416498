"""Configuration management for the tagcaption store."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


ROOT = Path(__file__).resolve().parents[1]


class DatabaseSettings(BaseModel):
    url: str = Field(default=f"sqlite:///{ROOT / 'data' / 'tagcaption.db'}")
    echo: bool = False


class SubmissionSettings(BaseModel):
    # minimum distance between two live submissions to the same subtask
    upload_delay_ms: int = Field(default=600_000, ge=0)


class MaintenanceSettings(BaseModel):
    interval_ms: int = Field(default=3_600_000, gt=0)
    retention_ms: int = Field(default=86_400_000, ge=0)


class Settings(BaseSettings):
    """Top-level configuration values for the store and its scheduler."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    submissions: SubmissionSettings = Field(default_factory=SubmissionSettings)
    maintenance: MaintenanceSettings = Field(default_factory=MaintenanceSettings)

    operator_email: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("operator_email")
    @classmethod
    def normalize_operator_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    model_config = {
        "env_file": ROOT / ".env",
        "env_prefix": "TAGCAPTION_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
