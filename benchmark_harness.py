"""Repeated-trial benchmark comparing lookup and deterministic FK resolution."""

from __future__ import annotations

import gc
import json
import logging
import tracemalloc
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Iterator, Protocol, Sequence

import numpy as np

from benchmark_errors import BenchmarkPhaseError, ConfigurationError, StorageError
from deterministic_identifiers import DeterministicIdentifierGenerator
from resolution_strategies import (
    DETERMINISTIC_STRATEGY,
    LOOKUP_STRATEGY,
    DeterministicStrategy,
    LookupStrategy,
    ReferencePair,
    ResolutionStrategy,
    TenantScope,
    utc_now_ms,
)
from stable_digest import hash_file, stable_hash, workload_digest
from storage_backend import MEMORY_TARGET, StorageBackend
from workload import DEFAULT_FIRST_BUSINESS_CODE, business_codes, generate_workload

LOGGER = logging.getLogger(__name__)

DEFAULT_TENANT_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
DEFAULT_SITE_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
DEFAULT_ADDRESS_NAMESPACE = uuid.UUID("11111111-2222-3333-4444-555555555555")

# Where a config came from; not part of what it configures.
_PROVENANCE_KEYS = ("config_path", "config_file_hash", "config_hash")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class BenchmarkConfig:
    """Benchmark run configuration.

    Defaults reproduce the reference run: 2,000 address codes, 50,000 entities,
    seed 42, five measured trials after one discarded warmup trial, against an
    in-memory SQLite database.
    """

    run_id: str = "fk_resolution"
    database: str = MEMORY_TARGET
    tenant_id: uuid.UUID = DEFAULT_TENANT_ID
    site_id: uuid.UUID = DEFAULT_SITE_ID
    address_namespace: uuid.UUID = DEFAULT_ADDRESS_NAMESPACE
    address_count: int = 2_000
    entity_count: int = 50_000
    trials: int = 5
    warmup_trials: int = 1
    seed: int = 42
    first_business_code: int = DEFAULT_FIRST_BUSINESS_CODE
    verify_references: bool = True
    output_dir: Path = Path("reports")
    use_run_subdir: bool = True
    config_path: Path | None = None
    config_file_hash: str = ""
    config_hash: str = ""

    def __post_init__(self) -> None:
        if not self.run_id:
            raise ConfigurationError("run_id must be non-empty")
        if not self.database:
            raise ConfigurationError("database must be non-empty")
        if self.address_count <= 0:
            raise ConfigurationError("address_count must be positive")
        if self.entity_count <= 0:
            raise ConfigurationError("entity_count must be positive")
        if self.trials <= 0:
            raise ConfigurationError("trials must be positive")
        if self.warmup_trials < 0:
            raise ConfigurationError("warmup_trials must be non-negative")
        if self.seed < 0:
            raise ConfigurationError("seed must be non-negative")
        if self.first_business_code < 0:
            raise ConfigurationError("first_business_code must be non-negative")
        if not self.config_hash:
            object.__setattr__(self, "config_hash", stable_hash(self.resolved(), exclude_keys=_PROVENANCE_KEYS))

    @property
    def scope(self) -> TenantScope:
        return TenantScope(tenant_id=self.tenant_id, site_id=self.site_id)

    def resolved(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "database": self.database,
            "tenant_id": str(self.tenant_id),
            "site_id": str(self.site_id),
            "address_namespace": str(self.address_namespace),
            "address_count": self.address_count,
            "entity_count": self.entity_count,
            "trials": self.trials,
            "warmup_trials": self.warmup_trials,
            "seed": self.seed,
            "first_business_code": self.first_business_code,
            "verify_references": self.verify_references,
            "output_dir": str(self.output_dir),
            "use_run_subdir": self.use_run_subdir,
            "config_path": str(self.config_path) if self.config_path else None,
            "config_file_hash": self.config_file_hash or None,
            "config_hash": self.config_hash,
        }


_UUID_FIELDS = ("tenant_id", "site_id", "address_namespace")
_INT_FIELDS = ("address_count", "entity_count", "trials", "warmup_trials", "seed", "first_business_code")
_BOOL_FIELDS = ("verify_references", "use_run_subdir")


def _resolve_path(value: str | Path, base_dir: Path) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return base_dir / path


def _normalize_config(raw: dict[str, Any]) -> dict[str, Any]:
    if not any(key in raw for key in ("run", "workload", "identifiers")):
        return dict(raw)
    merged: dict[str, Any] = {}
    for section in ("run", "workload", "identifiers"):
        values = raw.get(section, {})
        if not isinstance(values, dict):
            raise ConfigurationError(f"config section '{section}' must be an object")
        merged.update(values)
    for key, value in raw.items():
        if key not in ("run", "workload", "identifiers"):
            merged.setdefault(key, value)
    return merged


def load_config(config_path: Path) -> BenchmarkConfig:
    """Load a JSON benchmark config; relative paths resolve against its directory."""

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Failed to read config {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config {config_path} must contain a JSON object")

    base_dir = config_path.parent
    normalized = _normalize_config(raw)
    known = {item.name for item in fields(BenchmarkConfig)}
    unknown = sorted(set(normalized) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    try:
        for key, value in normalized.items():
            if key in _UUID_FIELDS:
                values[key] = uuid.UUID(str(value))
            elif key in _INT_FIELDS:
                # bool is an int subclass; JSON true must not pass as 1.
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ConfigurationError(f"{key} must be an integer, got {value!r}")
                values[key] = value
            elif key in _BOOL_FIELDS:
                if not isinstance(value, bool):
                    raise ConfigurationError(f"{key} must be true or false, got {value!r}")
                values[key] = value
            elif key == "output_dir":
                values[key] = _resolve_path(value, base_dir)
            elif key == "database":
                database = str(value)
                values[key] = database if database == MEMORY_TARGET else str(_resolve_path(database, base_dir))
            elif key in _PROVENANCE_KEYS:
                continue
            else:
                values[key] = str(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value in config {config_path}: {exc}") from exc

    values.setdefault("run_id", config_path.stem)
    return BenchmarkConfig(config_path=config_path, config_file_hash=hash_file(config_path), **values)


class MemorySampler(Protocol):
    """Process memory sampling capability."""

    def start(self) -> None:
        """Begin sampling."""

    def current_bytes(self) -> int:
        """Return the currently allocated bytes."""

    def stop(self) -> None:
        """End sampling."""


class TracemallocSampler:
    """Memory sampler backed by ``tracemalloc`` traced allocations."""

    def __init__(self) -> None:
        self._owns_trace = False

    def start(self) -> None:
        if not tracemalloc.is_tracing():
            tracemalloc.start()
            self._owns_trace = True

    def current_bytes(self) -> int:
        if not tracemalloc.is_tracing():
            return 0
        current, _peak = tracemalloc.get_traced_memory()
        return int(current)

    def stop(self) -> None:
        if self._owns_trace:
            tracemalloc.stop()
            self._owns_trace = False


@dataclass(frozen=True)
class TrialResult:
    strategy: str
    trial_index: int
    elapsed_ms: int
    lookup_count: int
    memory_delta_bytes: int
    rows_inserted: int


@dataclass(frozen=True)
class StrategySummary:
    """Aggregate statistics of one strategy across all measured trials."""

    strategy: str
    trials: int
    mean_ms: float
    min_ms: int
    max_ms: int
    std_ms: float
    mean_memory_delta_bytes: float
    total_lookups: int
    lookups_per_trial: int
    rows_per_trial: int


@dataclass(frozen=True)
class BenchmarkReport:
    run_id: str
    started_at: str
    finished_at: str
    config: dict[str, Any]
    workload_digest: str
    trials: tuple[TrialResult, ...]
    summaries: dict[str, StrategySummary]
    improvement_percent: float
    unresolved_references: dict[str, int] = field(default_factory=dict)

    def asdict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "config": dict(self.config),
            "workload_digest": self.workload_digest,
            "trials": [asdict(trial) for trial in self.trials],
            "summaries": {name: asdict(summary) for name, summary in self.summaries.items()},
            "improvement_percent": self.improvement_percent,
            "unresolved_references": dict(self.unresolved_references),
        }


def summarize_trials(strategy: str, trials: Sequence[TrialResult]) -> StrategySummary:
    """Compute mean/min/max/std of elapsed time and mean memory delta."""

    if not trials:
        raise ValueError(f"no trials recorded for strategy {strategy}")
    elapsed = np.array([trial.elapsed_ms for trial in trials], dtype=np.float64)
    memory = np.array([trial.memory_delta_bytes for trial in trials], dtype=np.float64)
    std_ms = float(np.std(elapsed, ddof=1)) if elapsed.size > 1 else 0.0
    return StrategySummary(
        strategy=strategy,
        trials=int(elapsed.size),
        mean_ms=float(np.mean(elapsed)),
        min_ms=int(np.min(elapsed)),
        max_ms=int(np.max(elapsed)),
        std_ms=std_ms,
        mean_memory_delta_bytes=float(np.mean(memory)),
        total_lookups=int(sum(trial.lookup_count for trial in trials)),
        lookups_per_trial=int(trials[-1].lookup_count),
        rows_per_trial=int(trials[-1].rows_inserted),
    )


def improvement_percent(mean_lookup_ms: float, mean_deterministic_ms: float) -> float:
    if mean_lookup_ms == 0:
        return 0.0
    return float((mean_lookup_ms - mean_deterministic_ms) / mean_lookup_ms * 100.0)


class BenchmarkHarness:
    """Runs reset, seed and timed execution for both strategies over N trials.

    Every trial starts from empty tables and the same seeded workload. Strategies
    run sequentially within a trial. A storage failure anywhere aborts the run
    before aggregation.
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        backend: StorageBackend,
        *,
        clock: Callable[[], float] = perf_counter,
        memory_sampler: MemorySampler | None = None,
        now_ms: Callable[[], int] = utc_now_ms,
        entity_id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
        collect_garbage: bool = True,
    ) -> None:
        self._config = config
        self._backend = backend
        self._memory = memory_sampler or TracemallocSampler()
        self._collect_garbage = collect_garbage
        strategy_options = {"clock": clock, "now_ms": now_ms, "entity_id_factory": entity_id_factory}
        self._strategies: tuple[ResolutionStrategy, ...] = (
            LookupStrategy(backend, config.scope, **strategy_options),
            DeterministicStrategy(
                backend,
                config.scope,
                DeterministicIdentifierGenerator(config.address_namespace),
                **strategy_options,
            ),
        )

    @property
    def config(self) -> BenchmarkConfig:
        return self._config

    @property
    def strategies(self) -> tuple[ResolutionStrategy, ...]:
        return self._strategies

    def workload(self) -> tuple[ReferencePair, ...]:
        return generate_workload(
            self._config.seed,
            self._config.address_count,
            self._config.entity_count,
            first_code=self._config.first_business_code,
        )

    def run(self) -> BenchmarkReport:
        config = self._config
        started_at = _timestamp()
        workload = self.workload()
        codes = business_codes(config.address_count, config.first_business_code)
        digest = workload_digest(workload)
        LOGGER.info(
            "Starting benchmark run %s: %d codes, %d entities, %d trials (+%d warmup), workload %s",
            config.run_id,
            config.address_count,
            config.entity_count,
            config.trials,
            config.warmup_trials,
            digest[:12],
        )

        trials: list[TrialResult] = []
        unresolved: dict[str, int] = {}
        self._memory.start()
        try:
            for warmup_index in range(config.warmup_trials):
                self._run_trial(warmup_index, workload, codes, timed_phase="warmup")
            for trial_index in range(config.trials):
                trials.extend(self._run_trial(trial_index, workload, codes, timed_phase="timed_execution"))
            if config.verify_references:
                unresolved = self._verify(len(workload))
        finally:
            self._memory.stop()

        summaries = self._aggregate(trials)
        improvement = improvement_percent(
            summaries[LOOKUP_STRATEGY].mean_ms,
            summaries[DETERMINISTIC_STRATEGY].mean_ms,
        )
        LOGGER.info("Benchmark run %s complete: improvement %.2f%%", config.run_id, improvement)
        return BenchmarkReport(
            run_id=config.run_id,
            started_at=started_at,
            finished_at=_timestamp(),
            config=config.resolved(),
            workload_digest=digest,
            trials=tuple(trials),
            summaries=summaries,
            improvement_percent=improvement,
            unresolved_references=unresolved,
        )

    def _run_trial(
        self,
        trial_index: int,
        workload: Sequence[ReferencePair],
        codes: Sequence[str],
        *,
        timed_phase: str,
    ) -> list[TrialResult]:
        with self._phase("reset", trial_index=trial_index):
            self._backend.reset()
        for strategy in self._strategies:
            with self._phase("seed", strategy=strategy.name, trial_index=trial_index):
                seeded = strategy.seed_catalog(codes)
            LOGGER.debug("Seeded %d %s catalog records for trial %d", seeded, strategy.name, trial_index)

        results: list[TrialResult] = []
        for strategy in self._strategies:
            if self._collect_garbage:
                gc.collect()
            with self._phase(timed_phase, strategy=strategy.name, trial_index=trial_index):
                memory_before = self._memory.current_bytes()
                outcome = strategy.resolve_and_insert_batch(workload)
                memory_after = self._memory.current_bytes()
            result = TrialResult(
                strategy=strategy.name,
                trial_index=trial_index,
                elapsed_ms=outcome.elapsed_ms,
                lookup_count=outcome.lookup_count,
                memory_delta_bytes=int(memory_after - memory_before),
                rows_inserted=outcome.rows_inserted,
            )
            LOGGER.info(
                "%s trial=%d strategy=%s elapsed_ms=%d lookups=%d memory_delta_bytes=%d",
                timed_phase,
                trial_index,
                strategy.name,
                result.elapsed_ms,
                result.lookup_count,
                result.memory_delta_bytes,
            )
            results.append(result)
        return results

    def _verify(self, expected_rows: int) -> dict[str, int]:
        unresolved: dict[str, int] = {}
        for strategy in self._strategies:
            with self._phase("verify", strategy=strategy.name):
                missing = strategy.unresolved_references()
            if missing:
                raise BenchmarkPhaseError(
                    "verify",
                    f"{missing} of {expected_rows} entities have foreign keys that do not resolve",
                    strategy=strategy.name,
                )
            unresolved[strategy.name] = missing
        return unresolved

    def _aggregate(self, trials: Sequence[TrialResult]) -> dict[str, StrategySummary]:
        summaries: dict[str, StrategySummary] = {}
        for strategy in self._strategies:
            strategy_trials = [trial for trial in trials if trial.strategy == strategy.name]
            if len(strategy_trials) != self._config.trials:
                raise BenchmarkPhaseError(
                    "aggregation",
                    f"expected {self._config.trials} trials, collected {len(strategy_trials)}",
                    strategy=strategy.name,
                )
            summaries[strategy.name] = summarize_trials(strategy.name, strategy_trials)
        return summaries

    @contextmanager
    def _phase(
        self,
        phase: str,
        *,
        strategy: str | None = None,
        trial_index: int | None = None,
    ) -> Iterator[None]:
        try:
            yield
        except StorageError as exc:
            LOGGER.error(
                "Storage failure during %s (strategy=%s trial=%s): %s",
                phase,
                strategy,
                trial_index,
                exc,
            )
            raise BenchmarkPhaseError(
                phase,
                f"storage failure: {exc}",
                strategy=strategy,
                trial_index=trial_index,
            ) from exc


def format_report(report: BenchmarkReport) -> list[str]:
    """Render the per-trial lines and the aggregate summary as text."""

    lines = [
        f"== Foreign-key resolution benchmark: {report.run_id} ==",
        f"workload: {report.config['address_count']} codes, {report.config['entity_count']} entities, "
        f"seed {report.config['seed']} (digest {report.workload_digest[:12]})",
        "",
    ]
    for trial in report.trials:
        lines.append(
            f"trial {trial.trial_index:>2} | {trial.strategy:<13} | {trial.elapsed_ms:>8} ms | "
            f"lookups: {trial.lookup_count:>8} | memory delta: {trial.memory_delta_bytes:>10} B"
        )
    lines.append("")
    lines.append("== RESULTS ==")
    for summary in report.summaries.values():
        lines.append(
            f"{summary.strategy:<13}: mean {summary.mean_ms:>9.1f} ms | min {summary.min_ms:>6} | "
            f"max {summary.max_ms:>6} | std {summary.std_ms:>7.1f} | "
            f"mem {summary.mean_memory_delta_bytes:>12.0f} B | lookups/trial {summary.lookups_per_trial}"
        )
    lines.append(f"improvement: {report.improvement_percent:.2f}%")
    return lines


def with_overrides(config: BenchmarkConfig, **overrides: Any) -> BenchmarkConfig:
    """Return a copy of ``config`` with non-``None`` overrides applied.

    ``config_hash`` is recomputed for the overridden values; ``config_file_hash``
    keeps describing the file at ``config_path``.
    """

    values = {key: value for key, value in overrides.items() if value is not None}
    if not values:
        return config
    return replace(config, config_hash="", **values)


__all__ = [
    "BenchmarkConfig",
    "BenchmarkHarness",
    "BenchmarkReport",
    "MemorySampler",
    "StrategySummary",
    "TracemallocSampler",
    "TrialResult",
    "format_report",
    "improvement_percent",
    "load_config",
    "summarize_trials",
    "with_overrides",
]
