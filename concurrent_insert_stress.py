"""Concurrent-insert stress scenario with one connection and transaction per worker."""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from time import perf_counter
from typing import Callable

import numpy as np

from benchmark_errors import ConfigurationError, StorageError
from benchmark_harness import DEFAULT_ADDRESS_NAMESPACE, DEFAULT_SITE_ID, DEFAULT_TENANT_ID
from deterministic_identifiers import DeterministicIdentifierGenerator
from resolution_strategies import DeterministicStrategy, TenantScope
from storage_backend import StorageBackend
from workload import DEFAULT_FIRST_BUSINESS_CODE, business_codes, derive_seed, generate_workload

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StressConfig:
    """Configuration for the concurrent-insert scenario."""

    worker_count: int = 4
    inserts_per_worker: int = 2_500
    address_count: int = 2_000
    seed: int = 42
    first_business_code: int = DEFAULT_FIRST_BUSINESS_CODE
    tenant_id: uuid.UUID = DEFAULT_TENANT_ID
    site_id: uuid.UUID = DEFAULT_SITE_ID
    address_namespace: uuid.UUID = DEFAULT_ADDRESS_NAMESPACE

    def __post_init__(self) -> None:
        if self.worker_count <= 0:
            raise ConfigurationError("worker_count must be positive")
        if self.inserts_per_worker <= 0:
            raise ConfigurationError("inserts_per_worker must be positive")
        if self.address_count <= 0:
            raise ConfigurationError("address_count must be positive")
        if self.seed < 0:
            raise ConfigurationError("seed must be non-negative")

    @property
    def scope(self) -> TenantScope:
        return TenantScope(tenant_id=self.tenant_id, site_id=self.site_id)


@dataclass(frozen=True)
class WorkerResult:
    """Outcome of one worker; failures are kept per worker."""

    worker_index: int
    elapsed_ms: int
    rows_inserted: int
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _strategy(backend: StorageBackend, config: StressConfig, clock: Callable[[], float]) -> DeterministicStrategy:
    return DeterministicStrategy(
        backend,
        config.scope,
        DeterministicIdentifierGenerator(config.address_namespace),
        clock=clock,
    )


def seed_stress_catalog(backend: StorageBackend, config: StressConfig) -> int:
    """Clear previous rows and seed the deterministic address catalog."""

    backend.reset()
    return _strategy(backend, config, perf_counter).seed_catalog(
        business_codes(config.address_count, config.first_business_code)
    )


def _run_worker(
    worker_index: int,
    backend_factory: Callable[[], StorageBackend],
    config: StressConfig,
    clock: Callable[[], float],
) -> WorkerResult:
    workload = generate_workload(
        derive_seed(config.seed, f"worker-{worker_index}"),
        config.address_count,
        config.inserts_per_worker,
        first_code=config.first_business_code,
    )
    start = clock()
    try:
        backend = backend_factory()
    except (ConfigurationError, StorageError) as exc:
        LOGGER.error("Worker %d could not open storage: %s", worker_index, exc)
        return WorkerResult(worker_index, int((clock() - start) * 1000), 0, error=str(exc))
    try:
        outcome = _strategy(backend, config, clock).resolve_and_insert_batch(workload)
    except StorageError as exc:
        LOGGER.error("Worker %d rolled back: %s", worker_index, exc)
        return WorkerResult(worker_index, int((clock() - start) * 1000), 0, error=str(exc))
    finally:
        backend.close()
    return WorkerResult(worker_index, outcome.elapsed_ms, outcome.rows_inserted)


def run_concurrent_inserts(
    backend_factory: Callable[[], StorageBackend],
    config: StressConfig,
    *,
    clock: Callable[[], float] = perf_counter,
) -> list[WorkerResult]:
    """Run all workers in parallel and return their results ordered by worker index."""

    with ThreadPoolExecutor(max_workers=config.worker_count) as executor:
        futures = [
            executor.submit(_run_worker, worker_index, backend_factory, config, clock)
            for worker_index in range(config.worker_count)
        ]
        results = [future.result() for future in futures]
    failed = sum(1 for result in results if not result.succeeded)
    LOGGER.info(
        "Concurrent insert scenario finished: %d workers, %d failed",
        config.worker_count,
        failed,
    )
    return results


def summarize_workers(results: list[WorkerResult]) -> dict[str, float | int]:
    succeeded = [result for result in results if result.succeeded]
    elapsed = np.array([result.elapsed_ms for result in succeeded], dtype=np.float64)
    return {
        "workers": len(results),
        "succeeded": len(succeeded),
        "failed": len(results) - len(succeeded),
        "rows_inserted": int(sum(result.rows_inserted for result in succeeded)),
        "mean_elapsed_ms": float(np.mean(elapsed)) if elapsed.size else 0.0,
        "max_elapsed_ms": float(np.max(elapsed)) if elapsed.size else 0.0,
    }


__all__ = [
    "StressConfig",
    "WorkerResult",
    "run_concurrent_inserts",
    "seed_stress_catalog",
    "summarize_workers",
]
