#!/usr/bin/env python3
"""Batch-insert comparison between the two entity tables, without lookups."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from pathlib import Path

from batch_insert_comparison import BatchInsertConfig, run_batch_insert_comparison
from benchmark_errors import ConfigurationError, StorageError
from storage_backend import ENTITIES_DB, MEMORY_TARGET, open_backend

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Batch-insert comparison between entity tables")
    parser.add_argument("--database", default=MEMORY_TARGET, help="SQLite database path or :memory:")
    parser.add_argument("--entities", type=int, default=10_000, help="Total entity rows")
    parser.add_argument("--batch-size", type=int, default=1_000, help="Rows per batch")
    parser.add_argument("--seed", type=int, default=42, help="Seed for referenced office identifiers")
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
        config = BatchInsertConfig(entity_count=args.entities, batch_size=args.batch_size, seed=args.seed)
        backend = open_backend(args.database)
        try:
            results = run_batch_insert_comparison(backend, config)
        finally:
            backend.close()
    except (ConfigurationError, StorageError) as exc:
        LOGGER.error("Batch insert comparison failed: %s", exc)
        return 1

    print("== BATCH INSERT COMPARISON ==")
    for result in results:
        label = "DB scenario" if result.table == ENTITIES_DB else "Det scenario"
        print(f"{label} batch insert: {result.elapsed_ms:,} ms | rows {result.rows_inserted:,}")
    print(f"Batch size: {config.batch_size:,}, Total: {config.entity_count:,}")

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        payload = {"config": asdict(config), "results": [asdict(result) for result in results]}
        payload["config"].update(tenant_id=str(config.tenant_id), site_id=str(config.site_id))
        args.output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
