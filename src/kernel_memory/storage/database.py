"""SQLAlchemy engine and session helpers shared by the durable backends."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


def normalize_database_url(db_path: str | Path) -> str:
    """Turn a plain file path into a SQLite URL; URLs pass through."""
    if isinstance(db_path, Path) or "://" not in str(db_path):
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path}"
    return str(db_path)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections may be shared across threads."""
    if database_url in IN_MEMORY_SQLITE_URLS:
        # One shared connection, otherwise every connection sees an empty database
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite:"):
        if database_url.startswith("sqlite:///"):
            Path(database_url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url, echo=False)


class SessionProvider:
    """Owns an engine and hands out short-lived sessions."""

    engine: Engine
    session_factory: sessionmaker[Session]

    def __init__(self, db_path: str | Path) -> None:
        self.database_url = normalize_database_url(db_path)
        self.engine = create_db_engine(self.database_url)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session with automatic cleanup."""
        session = self.session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
