"""Batch-insert comparison: the same pre-built entity rows into both entity tables.

No foreign key is resolved here. Timing each table's bulk insert isolates the
cost of the table itself from the cost of resolving address references.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Sequence

from benchmark_errors import ConfigurationError
from benchmark_harness import DEFAULT_SITE_ID, DEFAULT_TENANT_ID
from resolution_strategies import utc_now_ms
from storage_backend import ENTITIES_DB, ENTITIES_DET, StorageBackend, transaction

LOGGER = logging.getLogger(__name__)

EntityRow = tuple[Any, ...]


@dataclass(frozen=True)
class BatchInsertConfig:
    """Configuration for the batch-insert comparison."""

    entity_count: int = 10_000
    batch_size: int = 1_000
    seed: int = 42
    tenant_id: uuid.UUID = DEFAULT_TENANT_ID
    site_id: uuid.UUID = DEFAULT_SITE_ID

    def __post_init__(self) -> None:
        if self.entity_count <= 0:
            raise ConfigurationError("entity_count must be positive")
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be positive")
        if self.seed < 0:
            raise ConfigurationError("seed must be non-negative")


@dataclass(frozen=True)
class BatchInsertResult:
    table: str
    elapsed_ms: int
    rows_inserted: int
    batch_count: int


def _random_identifier(rng: random.Random) -> uuid.UUID:
    return uuid.UUID(int=rng.getrandbits(128), version=4)


def build_entity_batches(
    config: BatchInsertConfig,
    *,
    entity_id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    now_ms: Callable[[], int] = utc_now_ms,
) -> list[list[EntityRow]]:
    """Pre-build entity rows split into ``batch_size`` chunks."""

    rng = random.Random(config.seed)
    rows = [
        (
            entity_id_factory(),
            config.tenant_id,
            config.site_id,
            _random_identifier(rng),
            _random_identifier(rng),
            now_ms(),
        )
        for _ in range(config.entity_count)
    ]
    return [rows[start : start + config.batch_size] for start in range(0, len(rows), config.batch_size)]


def insert_batches(
    backend: StorageBackend,
    table: str,
    batches: Sequence[Sequence[EntityRow]],
    *,
    clock: Callable[[], float] = perf_counter,
) -> BatchInsertResult:
    """Insert all batches into ``table`` inside one transaction and time it."""

    if table not in (ENTITIES_DB, ENTITIES_DET):
        raise ConfigurationError(f"{table} is not an entity table")
    statement = (
        f"INSERT INTO {table} "
        "(id, tenant_id, site_id, admin_office_id, reg_office_id, created_at_utc) "
        "VALUES (?, ?, ?, ?, ?, ?)"
    )
    rows = 0
    start = clock()
    with transaction(backend) as active:
        for batch in batches:
            rows += active.execute_many(statement, batch)
    elapsed_ms = int((clock() - start) * 1000)
    LOGGER.info("Batch insert into %s: %d rows in %d batches, %d ms", table, rows, len(batches), elapsed_ms)
    return BatchInsertResult(table=table, elapsed_ms=elapsed_ms, rows_inserted=rows, batch_count=len(batches))


def run_batch_insert_comparison(
    backend: StorageBackend,
    config: BatchInsertConfig,
    *,
    clock: Callable[[], float] = perf_counter,
    entity_id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    now_ms: Callable[[], int] = utc_now_ms,
) -> list[BatchInsertResult]:
    backend.reset()
    batches = build_entity_batches(config, entity_id_factory=entity_id_factory, now_ms=now_ms)
    return [insert_batches(backend, table, batches, clock=clock) for table in (ENTITIES_DB, ENTITIES_DET)]


__all__ = [
    "BatchInsertConfig",
    "BatchInsertResult",
    "build_entity_batches",
    "insert_batches",
    "run_batch_insert_comparison",
]
