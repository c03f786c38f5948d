"""Run artifacts for benchmark reports: metadata, trials and summary files."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from benchmark_harness import BenchmarkReport, format_report


@dataclass(frozen=True)
class RunArtifacts:
    run_id: str
    run_dir: Path
    created_at: str
    metadata_path: Path
    summary_path: Path
    trials_path: Path
    report_path: Path


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _write_json(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def resolve_run_dir(base_dir: Path, run_id: str, created_at: str, use_subdir: bool) -> Path:
    if not use_subdir:
        return base_dir
    safe_stamp = created_at.replace(":", "").replace("-", "").replace("+", "Z")
    return base_dir / f"{run_id}_{safe_stamp}"


def write_run_artifacts(
    report: BenchmarkReport,
    base_dir: Path,
    *,
    use_subdir: bool = True,
) -> RunArtifacts:
    """Write ``run_metadata.json``, ``trials.json``, ``summary.json`` and ``summary.txt``."""

    created_at = _timestamp()
    run_dir = resolve_run_dir(base_dir, report.run_id, created_at, use_subdir)
    run_dir.mkdir(parents=True, exist_ok=True)

    metadata = {
        "run_id": report.run_id,
        "created_at": created_at,
        "config_path": report.config.get("config_path"),
        "config_file_hash": report.config.get("config_file_hash"),
        "config_hash": report.config.get("config_hash"),
        "workload_digest": report.workload_digest,
        "run_dir": str(run_dir),
    }
    metadata_path = _write_json(run_dir / "run_metadata.json", metadata)
    trials_path = _write_json(run_dir / "trials.json", [asdict(trial) for trial in report.trials])
    summary_path = _write_json(run_dir / "summary.json", report.asdict())
    report_path = run_dir / "summary.txt"
    report_path.write_text("\n".join(format_report(report)) + "\n", encoding="utf-8")
    return RunArtifacts(
        run_id=report.run_id,
        run_dir=run_dir,
        created_at=created_at,
        metadata_path=metadata_path,
        summary_path=summary_path,
        trials_path=trials_path,
        report_path=report_path,
    )


__all__ = ["RunArtifacts", "resolve_run_dir", "write_run_artifacts"]
