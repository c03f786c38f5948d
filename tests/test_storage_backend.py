"""Tests for the SQLite storage backend."""

from __future__ import annotations

import sys
import uuid
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from benchmark_errors import ConfigurationError, StorageError
from storage_backend import (
    ADDRESSES_DB,
    ADDRESSES_DET,
    ENTITIES_DET,
    SQLiteStorageBackend,
    open_backend,
    transaction,
)

TENANT = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
SITE = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")


def _insert_address(backend: SQLiteStorageBackend, address_id: uuid.UUID, code: str) -> None:
    backend.execute(
        f"INSERT INTO {ADDRESSES_DET} (id, tenant_id, site_id, business_code) VALUES (?, ?, ?, ?)",
        (address_id, TENANT, SITE, code),
    )


def test_identifiers_are_stored_in_native_layout() -> None:
    backend = SQLiteStorageBackend()
    address_id = uuid.UUID("00112233-4455-6677-8899-aabbccddeeff")
    with transaction(backend):
        _insert_address(backend, address_id, "1000")

    raw = backend.query_scalar(f"SELECT hex(id) FROM {ADDRESSES_DET}")
    assert raw == "33221100554477668899AABBCCDDEEFF"
    assert backend.query_scalar(f"SELECT id FROM {ADDRESSES_DET} WHERE business_code = ?", ("1000",)) == address_id
    backend.close()


def test_backend_assigns_address_ids() -> None:
    backend = SQLiteStorageBackend()
    with transaction(backend):
        backend.execute_many(
            f"INSERT INTO {ADDRESSES_DB} (tenant_id, site_id, business_code) VALUES (?, ?, ?)",
            [(TENANT, SITE, "1000"), (TENANT, SITE, "1001")],
        )
    ids = [row[0] for row in backend.query_rows(f"SELECT id FROM {ADDRESSES_DB} ORDER BY business_code")]
    assert len(ids) == 2
    assert all(isinstance(value, uuid.UUID) for value in ids)
    assert ids[0] != ids[1]
    backend.close()


def test_query_scalar_returns_none_for_missing_row() -> None:
    backend = SQLiteStorageBackend()
    assert backend.query_scalar(f"SELECT id FROM {ADDRESSES_DB} WHERE business_code = ?", ("missing",)) is None
    backend.close()


def test_uniqueness_violation_raises_and_rolls_back() -> None:
    backend = SQLiteStorageBackend()
    with pytest.raises(StorageError):
        with transaction(backend):
            _insert_address(backend, uuid.uuid4(), "1000")
            _insert_address(backend, uuid.uuid4(), "1000")

    assert not backend.in_transaction
    assert backend.count_rows(ADDRESSES_DET) == 0
    backend.close()


def test_reset_clears_every_table() -> None:
    backend = SQLiteStorageBackend()
    with transaction(backend):
        _insert_address(backend, uuid.uuid4(), "1000")
        backend.execute(
            f"INSERT INTO {ENTITIES_DET} "
            "(id, tenant_id, site_id, admin_office_id, reg_office_id, created_at_utc) VALUES (?, ?, ?, ?, ?, ?)",
            (uuid.uuid4(), TENANT, SITE, uuid.uuid4(), uuid.uuid4(), 0),
        )
    backend.reset()
    assert backend.count_rows(ADDRESSES_DET) == 0
    assert backend.count_rows(ENTITIES_DET) == 0
    backend.close()


def test_count_rows_rejects_unknown_table() -> None:
    backend = SQLiteStorageBackend()
    with pytest.raises(StorageError):
        backend.count_rows("sqlite_master")
    backend.close()


def test_open_backend_creates_parent_directory(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "bench.sqlite"
    backend = open_backend(target)
    assert target.exists()
    assert backend.target == str(target)
    backend.close()


def test_open_backend_rejects_directory(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        open_backend(tmp_path)
