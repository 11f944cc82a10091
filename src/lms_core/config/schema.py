from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, validator


class StorageConfig(BaseModel):
    """Which document store backs the services and how transactions retry."""

    backend: Literal["memory", "jsonl"] = Field("jsonl", description="memory or jsonl.")
    data_dir: Path = Field(Path("data/store"))
    transaction_max_attempts: int = Field(5, ge=1)


class GradingConfig(BaseModel):
    """Defaults applied to authored quizzes and exams that omit them."""

    default_passing_score: int = Field(70, ge=0, le=100)
    default_time_limit_minutes: int = Field(10, ge=0)
    default_points: int = Field(1, ge=0)
    exam_time_limit_minutes: int = Field(30, ge=0)
    exam_attempts_allowed: int = Field(3, ge=0)
    exam_require_all_lessons_completed: bool = True


class CertificateConfig(BaseModel):
    id_prefix: str = Field("CERT", min_length=1)

    @validator("id_prefix")
    def no_separator_in_prefix(cls, value: str) -> str:
        """Certificate ids are dash-separated; the prefix may not contain one."""
        if "-" in value:
            raise ValueError("id_prefix must not contain '-'")
        return value


class ProgressConfig(BaseModel):
    """Controls for lesson progress accounting."""

    lesson_time_increment_seconds: int = Field(60, ge=0)


class LegacyConfig(BaseModel):
    """Mirror enrollment progress to the per-learner legacy collection."""

    mirror_enabled: bool = True


class LoggingConfig(BaseModel):
    """Controls for logging output and format."""

    level: str = Field("INFO")
    use_json: bool = False


class Settings(BaseModel):
    """Top-level project configuration aggregating all sub-settings."""

    project_name: str = Field("LMS Core")
    storage: StorageConfig = Field(default_factory=StorageConfig)
    grading: GradingConfig = Field(default_factory=GradingConfig)
    certificates: CertificateConfig = Field(default_factory=CertificateConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    legacy: LegacyConfig = Field(default_factory=LegacyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
