"""Bring the review scheduling schema up to date before the API starts.

Waits for the database to accept connections, then runs ``alembic upgrade``.
With ``--check`` it only reports whether the database is at the head revision
and exits non-zero when it is behind.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("study_core.migrations")
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG = PROJECT_ROOT / "alembic.ini"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the review schema once the database is reachable.")
    parser.add_argument("--revision", default=os.getenv("STUDYCORE_DB_MIGRATION_REVISION", "head"))
    parser.add_argument(
        "--timeout",
        type=float,
        default=_env_float("STUDYCORE_DB_MIGRATION_TIMEOUT", 60.0),
        help="Seconds to keep probing the database before giving up.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=_env_float("STUDYCORE_DB_MIGRATION_POLL_INTERVAL", 3.0),
        help="Seconds between readiness probes.",
    )
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to alembic.ini.")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Report pending migrations without applying them.",
    )
    return parser.parse_args(argv)


def load_config(config_path: str | Path = DEFAULT_CONFIG) -> Config:
    config = Config(str(config_path))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    return config


def resolve_database_url(config: Config) -> str:
    """Prefer an explicit ``sqlalchemy.url``; otherwise copy ``STUDYCORE_DATABASE_URL`` into the config."""
    configured = (config.get_main_option("sqlalchemy.url") or "").strip()
    if configured:
        return configured
    env_url = (os.getenv("STUDYCORE_DATABASE_URL") or "").strip()
    if not env_url:
        raise RuntimeError("STUDYCORE_DATABASE_URL must be set before running migrations.")
    config.set_main_option("sqlalchemy.url", env_url)
    return env_url


def wait_for_database(database_url: str, *, timeout: float, poll_interval: float) -> int:
    """Probe with ``SELECT 1`` until it succeeds; returns the number of attempts made.

    Connection refusals are retried until ``timeout``; any other database
    error aborts immediately.
    """
    deadline = time.monotonic() + timeout
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    attempts = 0
    last_error: Optional[Exception] = None
    try:
        while True:
            attempts += 1
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database reachable after %d attempt(s).", attempts)
                return attempts
            except OperationalError as exc:
                last_error = exc
                LOGGER.warning("Database not ready (attempt %d): %s", attempts, exc)
            except SQLAlchemyError as exc:
                raise RuntimeError(f"Database readiness probe failed: {exc}") from exc
            if time.monotonic() + poll_interval >= deadline:
                break
            time.sleep(poll_interval)
    finally:
        engine.dispose()
    raise RuntimeError(f"Database did not become ready within {timeout:g}s.") from last_error


def pending_revisions(config: Config, database_url: str) -> list[str]:
    """Revisions between the database's current head and the script head, oldest first."""
    script = ScriptDirectory.from_config(config)
    engine = create_engine(database_url, future=True)
    try:
        with engine.connect() as connection:
            current = MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
    head = script.get_current_head()
    if current == head:
        return []
    upgrades = script.iterate_revisions(head, current)
    return [revision.revision for revision in reversed(list(upgrades))]


def run_migrations(
    revision: str = "head",
    *,
    timeout: float,
    poll_interval: float,
    config: Optional[Config] = None,
) -> None:
    config = config or load_config()
    database_url = resolve_database_url(config)
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    LOGGER.info("Upgrading review schema to %s", revision)
    command.upgrade(config, revision)
    LOGGER.info("Review schema is up to date.")


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("STUDYCORE_DB_MIGRATION_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        config = load_config(args.config)
        if args.check:
            database_url = resolve_database_url(config)
            wait_for_database(database_url, timeout=args.timeout, poll_interval=args.poll_interval)
            pending = pending_revisions(config, database_url)
            if pending:
                LOGGER.warning("Pending migrations: %s", ", ".join(pending))
                return 2
            LOGGER.info("No pending migrations.")
            return 0
        run_migrations(
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
            config=config,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Migration run failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
