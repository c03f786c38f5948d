#!/usr/bin/env python3
"""Concurrent insert stress test against a shared SQLite database file."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from functools import partial
from pathlib import Path

from benchmark_errors import ConfigurationError, StorageError
from concurrent_insert_stress import StressConfig, run_concurrent_inserts, seed_stress_catalog, summarize_workers
from storage_backend import open_backend

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Concurrent insert stress test")
    parser.add_argument("--database", type=Path, default=Path("reports/concurrent_inserts.sqlite"))
    parser.add_argument("--workers", type=int, default=4, help="Parallel workers")
    parser.add_argument("--inserts", type=int, default=2_500, help="Inserts per worker")
    parser.add_argument("--busy-timeout", type=float, default=30.0, help="Seconds to wait on a locked database")
    parser.add_argument("--output", type=Path, default=None, help="Optional JSON results path")
    parser.add_argument(
        "--log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        config = StressConfig(worker_count=args.workers, inserts_per_worker=args.inserts)
        backend = open_backend(args.database, busy_timeout_s=args.busy_timeout)
        try:
            seed_stress_catalog(backend, config)
        finally:
            backend.close()
    except (ConfigurationError, StorageError) as exc:
        LOGGER.error("Stress scenario setup failed: %s", exc)
        return 1

    factory = partial(open_backend, args.database, busy_timeout_s=args.busy_timeout)
    results = run_concurrent_inserts(factory, config)
    summary = summarize_workers(results)

    print(f"Concurrent insert results ({config.worker_count} workers, {config.inserts_per_worker:,} each):")
    for result in results:
        status = "ok" if result.succeeded else f"FAILED: {result.error}"
        print(f"Worker {result.worker_index + 1}: {result.elapsed_ms:,} ms | rows {result.rows_inserted:,} | {status}")
    print(f"Average: {summary['mean_elapsed_ms']:.1f} ms")

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        payload = {"summary": summary, "workers": [asdict(result) for result in results]}
        args.output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return 0 if summary["failed"] == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
