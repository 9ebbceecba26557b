from pathlib import Path

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from focusminder.config import DB_BUSY_TIMEOUT_SECONDS, DB_PATH


class Base(DeclarativeBase):
    pass


def make_engine(path: str | Path) -> Engine:
    """
    SQLite engine shared by the request handlers and the scheduler thread.

    WAL lets the tick read while a request writes, and the busy timeout
    makes a writer wait for the lock instead of failing with
    "database is locked".
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": DB_BUSY_TIMEOUT_SECONDS},
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


engine = make_engine(DB_PATH)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    # Register the tables before creating them
    from focusminder import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
