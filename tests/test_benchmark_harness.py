"""Tests for the benchmark harness lifecycle and aggregation."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from benchmark_errors import BenchmarkPhaseError, StorageError
from benchmark_harness import (
    BenchmarkConfig,
    BenchmarkHarness,
    TrialResult,
    format_report,
    improvement_percent,
    summarize_trials,
)
from storage_backend import ENTITIES_DB, ENTITIES_DET, SQLiteStorageBackend


class ScriptedClock:
    """Clock that advances by the next scripted duration on every second call."""

    def __init__(self, durations_s: Sequence[float]) -> None:
        self._durations = list(durations_s)
        self._now = 0.0
        self._started = False

    def __call__(self) -> float:
        if self._started:
            self._now += self._durations.pop(0)
        self._started = not self._started
        return self._now


class SteppingMemorySampler:
    def __init__(self, step: int) -> None:
        self._step = step
        self._current = 0
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def current_bytes(self) -> int:
        self._current += self._step
        return self._current

    def stop(self) -> None:
        self.stopped = True


class FailingBackend(SQLiteStorageBackend):
    """SQLite backend that fails a chosen statement after a number of calls."""

    def __init__(self, fail_prefix: str, fail_after: int = 0, *, fail_many: bool = False) -> None:
        super().__init__()
        self._fail_prefix = fail_prefix
        self._fail_after = fail_after
        self._fail_many = fail_many
        self._calls = 0

    def execute(self, statement: str, params: Sequence[Any] = ()) -> None:
        if not self._fail_many and statement.startswith(self._fail_prefix):
            self._calls += 1
            if self._calls > self._fail_after:
                raise StorageError("injected failure")
        super().execute(statement, params)

    def execute_many(self, statement: str, rows: Any) -> int:
        if self._fail_many and statement.startswith(self._fail_prefix):
            raise StorageError("injected batch failure")
        return super().execute_many(statement, rows)


def _config(**overrides: Any) -> BenchmarkConfig:
    values: dict[str, Any] = {
        "address_count": 20,
        "entity_count": 50,
        "trials": 3,
        "warmup_trials": 0,
    }
    values.update(overrides)
    return BenchmarkConfig(**values)


def test_harness_aggregates_scripted_timings() -> None:
    # Per trial: lookup batch then deterministic batch.
    clock = ScriptedClock([0.5, 0.25, 0.75, 0.25, 1.0, 0.5])
    sampler = SteppingMemorySampler(step=1024)
    backend = SQLiteStorageBackend()
    harness = BenchmarkHarness(_config(), backend, clock=clock, memory_sampler=sampler, collect_garbage=False)

    report = harness.run()

    lookup = report.summaries["lookup"]
    deterministic = report.summaries["deterministic"]
    assert [trial.elapsed_ms for trial in report.trials if trial.strategy == "lookup"] == [500, 750, 1000]
    assert lookup.mean_ms == pytest.approx(750.0)
    assert lookup.min_ms == 500
    assert lookup.max_ms == 1000
    assert lookup.std_ms == pytest.approx(250.0)
    assert deterministic.mean_ms == pytest.approx(1000.0 / 3.0)
    assert deterministic.std_ms == pytest.approx(144.3375673, rel=1e-6)
    assert report.improvement_percent == pytest.approx((750.0 - 1000.0 / 3.0) / 750.0 * 100.0)
    assert lookup.mean_memory_delta_bytes == pytest.approx(1024.0)
    assert sampler.started and sampler.stopped
    backend.close()


def test_harness_reports_lookup_counts_and_resets_between_trials() -> None:
    backend = SQLiteStorageBackend()
    config = _config(warmup_trials=1)
    report = BenchmarkHarness(config, backend, memory_sampler=SteppingMemorySampler(0)).run()

    assert len(report.trials) == 2 * config.trials
    for trial in report.trials:
        expected = 2 * config.entity_count if trial.strategy == "lookup" else 0
        assert trial.lookup_count == expected
        assert trial.rows_inserted == config.entity_count
    assert report.summaries["lookup"].total_lookups == 2 * config.entity_count * config.trials
    assert backend.count_rows(ENTITIES_DB) == config.entity_count
    assert backend.count_rows(ENTITIES_DET) == config.entity_count
    assert report.unresolved_references == {"lookup": 0, "deterministic": 0}
    backend.close()


def test_workload_is_identical_across_runs() -> None:
    backend = SQLiteStorageBackend()
    first = BenchmarkHarness(_config(trials=1), backend, memory_sampler=SteppingMemorySampler(0)).run()
    second = BenchmarkHarness(_config(trials=1), backend, memory_sampler=SteppingMemorySampler(0)).run()
    assert first.workload_digest == second.workload_digest
    other_seed = BenchmarkHarness(_config(trials=1, seed=7), backend, memory_sampler=SteppingMemorySampler(0)).run()
    assert other_seed.workload_digest != first.workload_digest
    backend.close()


def test_storage_failure_during_timed_execution_aborts_run() -> None:
    backend = FailingBackend(f"INSERT INTO {ENTITIES_DET}", fail_after=10)
    harness = BenchmarkHarness(_config(), backend, memory_sampler=SteppingMemorySampler(0))

    with pytest.raises(BenchmarkPhaseError) as excinfo:
        harness.run()

    error = excinfo.value
    assert error.phase == "timed_execution"
    assert error.strategy == "deterministic"
    assert error.trial_index == 0
    assert "phase=timed_execution" in str(error)
    assert backend.count_rows(ENTITIES_DET) == 0
    backend.close()


def test_storage_failure_during_seed_aborts_run() -> None:
    backend = FailingBackend("INSERT INTO addresses_db", fail_many=True)
    harness = BenchmarkHarness(_config(), backend, memory_sampler=SteppingMemorySampler(0))

    with pytest.raises(BenchmarkPhaseError) as excinfo:
        harness.run()

    assert excinfo.value.phase == "seed"
    assert excinfo.value.strategy == "lookup"
    backend.close()


def test_summarize_single_trial_has_zero_std() -> None:
    summary = summarize_trials("lookup", [TrialResult("lookup", 0, 120, 10, 64, 5)])
    assert summary.std_ms == 0.0
    assert summary.mean_ms == 120.0
    assert summary.lookups_per_trial == 10


def test_summarize_requires_trials() -> None:
    with pytest.raises(ValueError):
        summarize_trials("lookup", [])


def test_improvement_percent() -> None:
    assert improvement_percent(200.0, 50.0) == pytest.approx(75.0)
    assert improvement_percent(0.0, 10.0) == 0.0


def test_format_report_lists_trials_and_summary() -> None:
    backend = SQLiteStorageBackend()
    report = BenchmarkHarness(_config(trials=2), backend, memory_sampler=SteppingMemorySampler(0)).run()
    lines = format_report(report)
    assert sum(1 for line in lines if line.startswith("trial")) == 4
    assert any(line.startswith("improvement:") for line in lines)
    backend.close()


class ResetFailingBackend(SQLiteStorageBackend):
    def reset(self) -> None:
        raise StorageError("reset failed")


class DanglingReferenceBackend(SQLiteStorageBackend):
    """Reports dangling foreign keys for one entity table's join check."""

    def __init__(self, address_table: str, dangling: int) -> None:
        super().__init__()
        self._join_marker = f"LEFT JOIN {address_table} "
        self._dangling = dangling

    def query_scalar(self, statement: str, params: Sequence[Any] = ()) -> Any:
        if self._join_marker in statement:
            return self._dangling
        return super().query_scalar(statement, params)


def test_storage_failure_during_reset_aborts_run() -> None:
    backend = ResetFailingBackend()
    sampler = SteppingMemorySampler(0)
    harness = BenchmarkHarness(_config(), backend, memory_sampler=sampler)

    with pytest.raises(BenchmarkPhaseError) as excinfo:
        harness.run()

    error = excinfo.value
    assert error.phase == "reset"
    assert error.trial_index == 0
    assert error.strategy is None
    assert "reset failed" in str(error)
    assert backend.count_rows(ENTITIES_DB) == 0
    assert sampler.stopped
    backend.close()


def test_unresolved_references_abort_in_verify() -> None:
    backend = DanglingReferenceBackend("addresses_det", dangling=3)
    config = _config(entity_count=5)
    harness = BenchmarkHarness(config, backend, memory_sampler=SteppingMemorySampler(0))

    with pytest.raises(BenchmarkPhaseError) as excinfo:
        harness.run()

    error = excinfo.value
    assert error.phase == "verify"
    assert error.strategy == "deterministic"
    assert error.trial_index is None
    assert "3 of 5 entities" in str(error)
    backend.close()


def test_verification_can_be_disabled() -> None:
    backend = DanglingReferenceBackend("addresses_det", dangling=3)
    report = BenchmarkHarness(
        _config(verify_references=False),
        backend,
        memory_sampler=SteppingMemorySampler(0),
    ).run()
    assert report.unresolved_references == {}
    backend.close()
