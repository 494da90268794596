import logging
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from hallway.config.loader import load_config

logger = logging.getLogger("hallway.database")


def _positive_int(value: Any, fallback: int) -> int:
    try:
        candidate = int(value)
    except (TypeError, ValueError):
        return fallback
    return candidate if candidate > 0 else fallback


@dataclass(frozen=True)
class SqliteSettings:
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    busy_timeout_ms: int = 30000
    write_retries: int = 5
    retry_backoff_ms: int = 200

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "SqliteSettings":
        defaults = cls()
        return cls(
            journal_mode=str(section.get("journal_mode") or defaults.journal_mode),
            synchronous=str(section.get("synchronous") or defaults.synchronous),
            busy_timeout_ms=_positive_int(
                section.get("busy_timeout_ms"), defaults.busy_timeout_ms
            ),
            write_retries=_positive_int(
                section.get("write_retries"), defaults.write_retries
            ),
            retry_backoff_ms=_positive_int(
                section.get("retry_backoff_ms"), defaults.retry_backoff_ms
            ),
        )


@dataclass(frozen=True)
class PoolSettings:
    pool_size: int = 20
    max_overflow: int = 40
    pool_timeout: int = 15
    pool_recycle: int = 1800

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "PoolSettings":
        defaults = cls()
        return cls(
            pool_size=_positive_int(section.get("pool_size"), defaults.pool_size),
            max_overflow=_positive_int(
                section.get("max_overflow"), defaults.max_overflow
            ),
            pool_timeout=_positive_int(
                section.get("pool_timeout_seconds"), defaults.pool_timeout
            ),
            pool_recycle=_positive_int(
                section.get("pool_recycle_seconds"), defaults.pool_recycle
            ),
        )


DEFAULT_DATABASE_URL = "sqlite:///./hallway.db"

_config = load_config()
DATABASE_URL = str(_config.get("database_url") or DEFAULT_DATABASE_URL)
IS_SQLITE = DATABASE_URL.startswith("sqlite")
SQLITE_SETTINGS = SqliteSettings.from_config(_config.get("sqlite") or {})
POOL_SETTINGS = PoolSettings.from_config(_config.get("database_pool") or {})


def _prepare_sqlite_file(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if not url.database or url.database == ":memory:":
        return
    db_path = Path(url.database)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _engine_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {"pool_pre_ping": True, "connect_args": {}}
    if IS_SQLITE:
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": max(1, SQLITE_SETTINGS.busy_timeout_ms / 1000),
        }
    # In-memory SQLite runs on a single-connection pool that takes no sizing.
    if not (IS_SQLITE and ":memory:" in DATABASE_URL):
        options.update(
            pool_size=POOL_SETTINGS.pool_size,
            max_overflow=POOL_SETTINGS.max_overflow,
            pool_timeout=POOL_SETTINGS.pool_timeout,
            pool_recycle=POOL_SETTINGS.pool_recycle,
            pool_use_lifo=True,
        )
    return options


if IS_SQLITE:
    _prepare_sqlite_file(DATABASE_URL)

engine = create_engine(DATABASE_URL, **_engine_options())

# SQLite allows one writer at a time; commits from worker threads queue here.
_SQLITE_WRITE_LOCK = threading.RLock()


@event.listens_for(Engine, "connect")
def _apply_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute(f"PRAGMA journal_mode={SQLITE_SETTINGS.journal_mode}")
        cursor.execute(f"PRAGMA synchronous={SQLITE_SETTINGS.synchronous}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_SETTINGS.busy_timeout_ms}")
    finally:
        cursor.close()


def _is_locked_error(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database table is locked" in message


class QueuedSession(Session):
    """Session that serializes SQLite writes and retries commits on lock errors."""

    def commit(self) -> None:
        retries = SQLITE_SETTINGS.write_retries
        backoff = SQLITE_SETTINGS.retry_backoff_ms / 1000
        with _SQLITE_WRITE_LOCK:
            for attempt in range(1, retries + 1):
                try:
                    return super().commit()
                except OperationalError as exc:
                    if not _is_locked_error(exc) or attempt >= retries:
                        raise
                    super().rollback()
                    logger.warning(
                        "SQLite locked on commit (attempt %s/%s); retrying.",
                        attempt,
                        retries,
                    )
                    time.sleep(backoff * attempt)

    def flush(self, objects=None) -> None:
        with _SQLITE_WRITE_LOCK:
            return super().flush(objects)


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    class_=QueuedSession if IS_SQLITE else Session,
)

Base = declarative_base()


def get_db():
    request_id = uuid.uuid4().hex[:8]
    logger.debug("[%s] opening database session", request_id)
    db = SessionLocal()
    try:
        yield db
    finally:
        logger.debug("[%s] closing database session", request_id)
        db.close()
