import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def parse_level_overrides(raw: str) -> Dict[str, str]:
    """Parse ``"study_core.sync_reconciler=DEBUG,sqlalchemy.engine=INFO"`` into a mapping."""
    overrides: Dict[str, str] = {}
    for chunk in raw.split(","):
        name, sep, level = chunk.partition("=")
        if not sep or not name.strip() or not level.strip():
            continue
        overrides[name.strip()] = level.strip().upper()
    return overrides


def build_logging_config() -> Dict[str, Any]:
    level = os.getenv("STUDYCORE_LOG_LEVEL", "INFO").upper()
    loggers: Dict[str, Dict[str, Any]] = {
        "study_core.telemetry": {"level": os.getenv("STUDYCORE_TELEMETRY_LOG_LEVEL", "INFO").upper()},
    }
    if os.getenv("STUDYCORE_DEBUG_HTTP", "0") == "1":
        loggers["httpx"] = {"level": "DEBUG"}
        loggers["uvicorn.access"] = {"level": "DEBUG"}
    if os.getenv("STUDYCORE_DEBUG_SQL", "0") == "1":
        loggers["sqlalchemy.engine"] = {"level": "INFO"}
    for name, override in parse_level_overrides(os.getenv("STUDYCORE_LOG_LEVELS", "")).items():
        loggers[name] = {"level": override}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": os.getenv("STUDYCORE_LOG_FORMAT", DEFAULT_LOG_FORMAT)}},
        "handlers": {"default": {"class": "logging.StreamHandler", "formatter": "default"}},
        "root": {"handlers": ["default"], "level": level},
        "loggers": loggers,
    }


def configure_logging() -> None:
    """Install the process-wide logging setup described by ``STUDYCORE_*`` flags."""
    dictConfig(build_logging_config())
    logging.getLogger(__name__).debug("Logging configured")
