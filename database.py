import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA busy_timeout=5000",
    "PRAGMA foreign_keys=ON",
)


def _build_database_url() -> str:
    """DATABASE_URL wins, then discrete DB_* settings for Postgres, then a local SQLite file."""
    if os.getenv("DATABASE_URL"):
        return os.environ["DATABASE_URL"]

    host = os.getenv("DB_HOST")
    if not host:
        return "sqlite:///./doup.db"

    credentials = os.getenv("DB_USER", "postgres")
    if os.getenv("DB_PASSWORD"):
        credentials = f"{credentials}:{os.environ['DB_PASSWORD']}"
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "doup")
    return f"postgresql://{credentials}@{host}:{port}/{name}"


def enable_sqlite_pragmas(target: Engine) -> None:
    """Turn on WAL, a busy timeout and foreign-key enforcement for every new SQLite connection."""

    @event.listens_for(target, "connect")
    def _apply(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
        finally:
            cursor.close()


def build_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    sqlite_engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 15},
        pool_pre_ping=True,
    )
    enable_sqlite_pragmas(sqlite_engine)
    return sqlite_engine


SQLALCHEMY_DATABASE_URL = _build_database_url()
engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_db_and_tables():
    # Registers every table on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
