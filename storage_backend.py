"""Transactional storage backend used by the resolution strategies."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol, Sequence

from benchmark_errors import ConfigurationError, StorageError
from identifier_codec import IDENTIFIER_SIZE, identifier_from_native, native_bytes

LOGGER = logging.getLogger(__name__)

ADDRESSES_DB = "addresses_db"
ADDRESSES_DET = "addresses_det"
ENTITIES_DB = "entities_db"
ENTITIES_DET = "entities_det"

BENCHMARK_TABLES: tuple[str, ...] = (ENTITIES_DB, ADDRESSES_DB, ENTITIES_DET, ADDRESSES_DET)

MEMORY_TARGET = ":memory:"

_SCHEMA: tuple[str, ...] = (
    f"""
    CREATE TABLE IF NOT EXISTS {ADDRESSES_DB} (
      id BLOB PRIMARY KEY NOT NULL DEFAULT (randomblob(16)),
      tenant_id BLOB NOT NULL,
      site_id BLOB NOT NULL,
      business_code TEXT NOT NULL,
      UNIQUE (tenant_id, site_id, business_code)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ADDRESSES_DET} (
      id BLOB PRIMARY KEY NOT NULL,
      tenant_id BLOB NOT NULL,
      site_id BLOB NOT NULL,
      business_code TEXT NOT NULL,
      UNIQUE (tenant_id, site_id, business_code)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ENTITIES_DB} (
      id BLOB PRIMARY KEY NOT NULL,
      tenant_id BLOB NOT NULL,
      site_id BLOB NOT NULL,
      admin_office_id BLOB NOT NULL,
      reg_office_id BLOB NOT NULL,
      created_at_utc INTEGER NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ENTITIES_DET} (
      id BLOB PRIMARY KEY NOT NULL,
      tenant_id BLOB NOT NULL,
      site_id BLOB NOT NULL,
      admin_office_id BLOB NOT NULL,
      reg_office_id BLOB NOT NULL,
      created_at_utc INTEGER NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS ix_{ENTITIES_DB}_created ON {ENTITIES_DB} (created_at_utc)",
    f"CREATE INDEX IF NOT EXISTS ix_{ENTITIES_DET}_created ON {ENTITIES_DET} (created_at_utc)",
)


class StorageBackend(Protocol):
    """Minimal transactional storage interface."""

    def begin(self) -> None:
        """Open a transaction."""

    def execute(self, statement: str, params: Sequence[Any] = ()) -> None:
        """Execute a single statement."""

    def execute_many(self, statement: str, rows: Iterable[Sequence[Any]]) -> int:
        """Execute a statement once per parameter row and return the row count."""

    def query_scalar(self, statement: str, params: Sequence[Any] = ()) -> Any:
        """Return the first column of the first row, or ``None``."""

    def query_rows(self, statement: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        """Return all rows of a query."""

    def commit(self) -> None:
        """Commit the open transaction."""

    def rollback(self) -> None:
        """Roll back the open transaction."""

    def reset(self) -> None:
        """Remove every benchmark record."""

    def close(self) -> None:
        """Release the underlying connection."""


@contextmanager
def transaction(backend: StorageBackend) -> Iterator[StorageBackend]:
    """Scope a batch in one transaction: commit on success, roll back on any error."""

    backend.begin()
    try:
        yield backend
        backend.commit()
    except BaseException:
        try:
            backend.rollback()
        except StorageError:
            LOGGER.exception("Rollback failed after batch error")
        raise


def bind_parameters(params: Sequence[Any]) -> tuple[Any, ...]:
    """Bind identifiers in their native byte layout."""

    return tuple(native_bytes(value) if isinstance(value, uuid.UUID) else value for value in params)


def decode_value(value: Any) -> Any:
    if isinstance(value, bytes) and len(value) == IDENTIFIER_SIZE:
        return identifier_from_native(value)
    return value


class SQLiteStorageBackend:
    """SQLite implementation of :class:`StorageBackend`.

    Transactions are explicit (``BEGIN``/``COMMIT``/``ROLLBACK``); the connection
    runs in autocommit mode otherwise. Identifier columns hold the 16-byte
    native layout.
    """

    def __init__(
        self,
        target: str | Path = MEMORY_TARGET,
        *,
        busy_timeout_s: float = 5.0,
        create_schema: bool = True,
    ) -> None:
        self._target = str(target)
        try:
            self._connection = sqlite3.connect(
                self._target,
                timeout=busy_timeout_s,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise ConfigurationError(f"Unable to open storage target {self._target!r}: {exc}") from exc
        if create_schema:
            try:
                self.ensure_schema()
            except StorageError as exc:
                self._connection.close()
                raise ConfigurationError(f"Unable to prepare storage target {self._target!r}: {exc}") from exc
        LOGGER.debug("Opened SQLite storage target %s", self._target)

    @property
    def target(self) -> str:
        return self._target

    @property
    def in_transaction(self) -> bool:
        return self._connection.in_transaction

    def ensure_schema(self) -> None:
        for statement in _SCHEMA:
            self._run(statement, ())

    def begin(self) -> None:
        self._run("BEGIN", ())

    def commit(self) -> None:
        self._run("COMMIT", ())

    def rollback(self) -> None:
        if self._connection.in_transaction:
            self._run("ROLLBACK", ())

    def execute(self, statement: str, params: Sequence[Any] = ()) -> None:
        self._run(statement, bind_parameters(params))

    def execute_many(self, statement: str, rows: Iterable[Sequence[Any]]) -> int:
        bound = [bind_parameters(row) for row in rows]
        try:
            self._connection.executemany(statement, bound)
        except sqlite3.Error as exc:
            raise StorageError(f"Batch execute failed: {exc}") from exc
        return len(bound)

    def query_scalar(self, statement: str, params: Sequence[Any] = ()) -> Any:
        row = self._run(statement, bind_parameters(params)).fetchone()
        if row is None:
            return None
        return decode_value(row[0])

    def query_rows(self, statement: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        rows = self._run(statement, bind_parameters(params)).fetchall()
        return [tuple(decode_value(value) for value in row) for row in rows]

    def reset(self) -> None:
        with transaction(self):
            for table in BENCHMARK_TABLES:
                self._run(f"DELETE FROM {table}", ())

    def count_rows(self, table: str) -> int:
        if table not in BENCHMARK_TABLES:
            raise StorageError(f"Unknown benchmark table: {table}")
        return int(self._run(f"SELECT COUNT(*) FROM {table}", ()).fetchone()[0])

    def close(self) -> None:
        self._connection.close()

    def _run(self, statement: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self._connection.execute(statement, params)
        except sqlite3.Error as exc:
            raise StorageError(f"Statement failed: {exc}") from exc


def open_backend(target: str | Path, *, busy_timeout_s: float = 5.0) -> SQLiteStorageBackend:
    """Open the storage target, creating its parent directory for file databases."""

    target_str = str(target)
    if target_str != MEMORY_TARGET:
        path = Path(target_str)
        if path.exists() and path.is_dir():
            raise ConfigurationError(f"Storage target {path} is a directory")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(f"Storage target {path} is not reachable: {exc}") from exc
    return SQLiteStorageBackend(target_str, busy_timeout_s=busy_timeout_s)


__all__ = [
    "ADDRESSES_DB",
    "ADDRESSES_DET",
    "BENCHMARK_TABLES",
    "ENTITIES_DB",
    "ENTITIES_DET",
    "MEMORY_TARGET",
    "SQLiteStorageBackend",
    "StorageBackend",
    "bind_parameters",
    "decode_value",
    "open_backend",
    "transaction",
]
