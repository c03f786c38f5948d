"""Seeded synthetic workloads of entity reference pairs."""

from __future__ import annotations

import hashlib
import random

from resolution_strategies import ReferencePair

DEFAULT_FIRST_BUSINESS_CODE = 1000


def business_codes(address_count: int, first_code: int = DEFAULT_FIRST_BUSINESS_CODE) -> list[str]:
    """Business codes of the seeded address catalog, in seeding order."""

    if address_count <= 0:
        raise ValueError("address_count must be positive")
    return [str(first_code + offset) for offset in range(address_count)]


def generate_workload(
    seed: int,
    address_count: int,
    entity_count: int,
    *,
    first_code: int = DEFAULT_FIRST_BUSINESS_CODE,
) -> tuple[ReferencePair, ...]:
    """Draw ``entity_count`` reference pairs from the catalog with a fixed seed."""

    if address_count <= 0:
        raise ValueError("address_count must be positive")
    if entity_count < 0:
        raise ValueError("entity_count must be non-negative")
    rng = random.Random(seed)
    pairs: list[ReferencePair] = []
    for _ in range(entity_count):
        admin_code = str(first_code + rng.randrange(address_count))
        reg_code = str(first_code + rng.randrange(address_count))
        pairs.append(ReferencePair(admin_code=admin_code, reg_code=reg_code))
    return tuple(pairs)


def derive_seed(seed: int, component: str) -> int:
    """Derive an independent, reproducible seed for a named component."""

    if not component:
        raise ValueError("component must be non-empty")
    digest = hashlib.sha256(f"{seed}:{component}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=False)


__all__ = [
    "DEFAULT_FIRST_BUSINESS_CODE",
    "business_codes",
    "derive_seed",
    "generate_workload",
]
