#!/usr/bin/env python3
"""Benchmark foreign-key resolution: storage lookups vs deterministic identifiers."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from benchmark_artifacts import write_run_artifacts
from benchmark_errors import BenchmarkPhaseError, ConfigurationError
from benchmark_harness import BenchmarkConfig, BenchmarkHarness, format_report, load_config, with_overrides
from storage_backend import open_backend

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compare lookup and deterministic FK resolution")
    parser.add_argument("--config", type=Path, default=None, help="Optional benchmark JSON config")
    parser.add_argument("--database", default=None, help="SQLite database path or :memory:")
    parser.add_argument("--trials", type=int, default=None, help="Number of measured trials")
    parser.add_argument("--output-dir", type=Path, default=None, help="Directory for run artifacts")
    parser.add_argument("--no-artifacts", action="store_true", help="Skip writing JSON artifacts")
    parser.add_argument(
        "--log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config) if args.config else BenchmarkConfig()
    config = with_overrides(
        config,
        database=args.database,
        trials=args.trials,
        output_dir=args.output_dir,
    )
    backend = open_backend(config.database)
    try:
        report = BenchmarkHarness(config, backend).run()
    finally:
        backend.close()

    for line in format_report(report):
        print(line)
    if not args.no_artifacts:
        try:
            artifacts = write_run_artifacts(report, config.output_dir, use_subdir=config.use_run_subdir)
        except OSError as exc:
            message = f"could not write run artifacts to {config.output_dir}: {exc}"
            raise BenchmarkPhaseError("artifacts", message) from exc
        LOGGER.info("Run artifacts written to %s", artifacts.run_dir)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return run(args)
    except ConfigurationError as exc:
        LOGGER.error("Configuration error, no trial was started: %s", exc)
    except BenchmarkPhaseError as exc:
        LOGGER.error("Benchmark aborted during %s: %s", exc.phase, exc)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
