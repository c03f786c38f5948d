"""Stable hashing for benchmark workloads and resolved configs."""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping


def stable_hash(payload: Any, *, exclude_keys: Iterable[str] = ()) -> str:
    """Compute a SHA-256 hex digest of a payload, ignoring ``exclude_keys``."""

    normalized = _strip_keys(_normalize_payload(payload), set(exclude_keys))
    encoded = json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def workload_digest(pairs: Iterable[Any]) -> str:
    """Digest a reference-pair workload so two runs can prove they saw the same input."""

    return stable_hash([_normalize_payload(pair) for pair in pairs])


def hash_file(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def _normalize_payload(payload: Any) -> Any:
    if is_dataclass(payload) and not isinstance(payload, type):
        return _normalize_payload(asdict(payload))
    if isinstance(payload, Mapping):
        return {str(key): _normalize_payload(value) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [_normalize_payload(value) for value in payload]
    if isinstance(payload, uuid.UUID):
        return str(payload)
    if isinstance(payload, Path):
        return str(payload)
    if isinstance(payload, bytes):
        return payload.hex()
    return payload


def _strip_keys(payload: Any, excluded: set[str]) -> Any:
    if not excluded:
        return payload
    if isinstance(payload, Mapping):
        return {
            key: _strip_keys(value, excluded)
            for key, value in payload.items()
            if key not in excluded
        }
    if isinstance(payload, list):
        return [_strip_keys(value, excluded) for value in payload]
    return payload


__all__ = ["hash_file", "stable_hash", "workload_digest"]
