import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="STUDYCORE_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDYCORE_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDYCORE_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDYCORE_DATABASE_ECHO")
    default_timezone: str = Field("UTC", alias="STUDYCORE_TIMEZONE")
    progress_cache_ttl_seconds: float = Field(30.0, ge=0, alias="STUDYCORE_PROGRESS_CACHE_TTL")
    high_priority_subjects: List[str] = Field(
        default_factory=lambda: ["Anatomy", "Pharmacology"],
        alias="STUDYCORE_HIGH_PRIORITY_SUBJECTS",
    )
    medium_priority_subjects: List[str] = Field(
        default_factory=lambda: ["Physiology", "Pathology"],
        alias="STUDYCORE_MEDIUM_PRIORITY_SUBJECTS",
    )

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
