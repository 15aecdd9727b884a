import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool

from config import settings

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_SQLITE_PATH = BASE_DIR / "email_tracker.db"


def resolve_database_url(raw: str) -> str:
    """
    Clean up DATABASE_URL. Some hosts keep the "DATABASE_URL=" prefix when the
    value is pasted from an export line; an empty value means local SQLite.
    """
    url = (raw or "").strip()
    if url.startswith("DATABASE_URL="):
        url = url[len("DATABASE_URL="):].strip()
    if not url:
        logger.warning(f"DATABASE_URL not set. Falling back to SQLite at {DEFAULT_SQLITE_PATH}")
        url = f"sqlite:///{DEFAULT_SQLITE_PATH.as_posix()}"
    return url


def enable_sqlite_foreign_keys(target_engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""

    @event.listens_for(target_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str):
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
        )
        enable_sqlite_foreign_keys(sqlite_engine)
        logger.info(f"Database configured with SQLite at {url}")
        return sqlite_engine

    logger.info(
        f"Database connection pool configured: size={settings.DB_POOL_SIZE}, "
        f"max_overflow={settings.DB_MAX_OVERFLOW}"
    )
    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


DATABASE_URL = resolve_database_url(settings.DATABASE_URL)
engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)

Base = declarative_base()
