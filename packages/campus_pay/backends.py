"""Durable key-value backends used by :class:`~campus_pay.store.TransactionStore`.

Every backend satisfies :class:`PersistenceBackend`: string keys, string
values, ``get`` returning ``None`` for absent keys. Backends raise
:class:`~campus_pay.errors.PersistenceError` when storage cannot be read or
written; the store decides how to degrade.

- ``InMemoryBackend``: a dict; process-local, for tests and ephemeral use.
- ``FileBackend``: one file per key under a root directory. Writes go to a
  ``.tmp`` sibling first and are moved into place with ``os.replace``.
- ``SqlBackend``: rows in the ``kv_entries`` table via SQLAlchemy.

All backends assume a single writer. Two processes writing the same key race
on read-modify-write; the last write wins.
"""

from __future__ import annotations

import contextlib
import os
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from .db import KvEntry, make_engine, session_scope
from .errors import PersistenceError
from .logging_setup import get_logger

_logger = get_logger("campus_pay.backends")


class PersistenceBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryBackend:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FileBackend:
    """Store each key as a UTF-8 file below ``root``.

    File names are the percent-encoded key plus ``.json``, so namespaced keys
    such as ``campus_pay:ledger_cache:<address>`` map to flat, portable names.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root).expanduser().resolve()

    def _path(self, key: str) -> Path:
        if not key:
            raise ValueError("key must be non-empty")
        return self.root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(f"failed to read {os.fspath(path)}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise PersistenceError(f"failed to write {os.fspath(path)}: {e}") from e

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"failed to delete {os.fspath(path)}: {e}") from e


class SqlBackend:
    """Key-value rows in a SQL database (``kv_entries``)."""

    def __init__(self, database_url: str, *, create_schema: bool = True) -> None:
        self.engine = make_engine(database_url, create_schema=create_schema)

    def get(self, key: str) -> str | None:
        try:
            with session_scope(self.engine) as session:
                row = session.get(KvEntry, key)
                return row.value if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to read key {key!r}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with session_scope(self.engine) as session:
                row = session.get(KvEntry, key)
                if row is None:
                    session.add(KvEntry(key=key, value=value))
                else:
                    row.value = value
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to write key {key!r}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with session_scope(self.engine) as session:
                session.execute(delete(KvEntry).where(KvEntry.key == key))
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to delete key {key!r}: {e}") from e

    def close(self) -> None:
        self.engine.dispose()
        _logger.debug("sql_backend:disposed url=%s", self.engine.url)


__all__ = ["PersistenceBackend", "InMemoryBackend", "FileBackend", "SqlBackend"]
