"""SQLAlchemy model and session helpers for the key-value store.

The schema is a single ``kv_entries`` table; :class:`~campus_pay.backends.SqlBackend`
stores the transaction list and ledger cache entries in it. Works against any
SQLAlchemy URL (SQLite for local use and tests, PostgreSQL when deployed).

Usage
-----
engine = make_engine("sqlite+pysqlite:///campus_pay.db")
with session_scope(engine) as s:
    s.execute(...)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import DateTime, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


class KvEntry(Base):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


def make_engine(database_url: str, *, create_schema: bool = True) -> Engine:
    """Create an engine for ``database_url`` and ensure the table exists."""

    if not database_url:
        raise RuntimeError("database_url is empty; cannot initialize database client")
    engine = create_engine(database_url, pool_pre_ping=True)
    if create_schema:
        Base.metadata.create_all(bind=engine, tables=[KvEntry.__table__])
    return engine


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    maker = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    session = maker()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["Base", "KvEntry", "make_engine", "session_scope"]
