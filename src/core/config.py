"""Configuration models and YAML loader for the lifecycle engine."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/lifecycle.db"


class AssessmentConfig(BaseModel):
    """Proctored assessment session settings."""

    max_warnings: int = Field(default=2, ge=0)
    default_duration_minutes: int = Field(default=5, ge=1)
    tick_seconds: float = Field(default=1.0, gt=0.0)
    grace_seconds: float = Field(default=5.0, ge=0.0)
    shuffle_questions: bool = True
    auto_pass_percentage: int | None = Field(default=None, ge=0, le=100)


class CounterConfig(BaseModel):
    """Retry policy for aggregate counter increments."""

    max_retries: int = Field(default=5, ge=1)
    retry_delay_s: float = Field(default=0.05, ge=0.0)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    assessment: AssessmentConfig = Field(default_factory=AssessmentConfig)
    counters: CounterConfig = Field(default_factory=CounterConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
