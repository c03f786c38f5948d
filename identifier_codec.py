"""Conversion between the mixed-endian identifier layout and network byte order.

The native layout stores the first three identifier fields (4, 2 and 2 bytes)
little-endian and the trailing 8 bytes as-is. Hashing and any cross-platform
exchange use the canonical big-endian order.
"""

from __future__ import annotations

import uuid

from benchmark_errors import IdentifierEncodingError

IDENTIFIER_SIZE = 16

# (start, stop) of the byte groups stored reversed in the native layout.
_SWAPPED_FIELDS: tuple[tuple[int, int], ...] = ((0, 4), (4, 6), (6, 8))


def _validated(data: bytes) -> bytes:
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise IdentifierEncodingError(
            f"identifier must be bytes-like, got {type(data).__name__}"
        )
    raw = bytes(data)
    if len(raw) != IDENTIFIER_SIZE:
        raise IdentifierEncodingError(
            f"identifier must be {IDENTIFIER_SIZE} bytes, got {len(raw)}"
        )
    return raw


def _swap_fields(raw: bytes) -> bytes:
    swapped = bytearray(raw)
    for start, stop in _SWAPPED_FIELDS:
        swapped[start:stop] = raw[start:stop][::-1]
    return bytes(swapped)


def to_canonical_bytes(native: bytes) -> bytes:
    """Return the network-order bytes for a native-layout identifier."""

    return _swap_fields(_validated(native))


def from_canonical_bytes(canonical: bytes) -> bytes:
    """Return the native-layout bytes for network-order identifier bytes."""

    return _swap_fields(_validated(canonical))


def native_bytes(identifier: uuid.UUID) -> bytes:
    return from_canonical_bytes(identifier.bytes)


def identifier_from_native(native: bytes) -> uuid.UUID:
    return uuid.UUID(bytes=to_canonical_bytes(native))


__all__ = [
    "IDENTIFIER_SIZE",
    "from_canonical_bytes",
    "identifier_from_native",
    "native_bytes",
    "to_canonical_bytes",
]
