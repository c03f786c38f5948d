"""Namespaced, content-derived identifiers (RFC 4122 version 5)."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass

from benchmark_errors import IdentifierEncodingError
from identifier_codec import (
    IDENTIFIER_SIZE,
    from_canonical_bytes,
    identifier_from_native,
    native_bytes,
    to_canonical_bytes,
)

_VERSION = 5
_NAME_SEPARATOR = "|"


def derive_identifier(namespace: uuid.UUID, name: str) -> uuid.UUID:
    """Derive the version-5 identifier for ``name`` inside ``namespace``.

    The namespace is hashed in network byte order followed by the UTF-8 name.
    The first 16 digest bytes are stamped with the version nibble and the
    RFC 4122 variant bits, then converted back to the native layout.
    """

    try:
        encoded_name = name.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise IdentifierEncodingError(f"name is not UTF-8 encodable: {exc}") from exc

    namespace_bytes = to_canonical_bytes(native_bytes(namespace))
    digest = bytearray(hashlib.sha1(namespace_bytes + encoded_name).digest()[:IDENTIFIER_SIZE])
    digest[6] = (digest[6] & 0x0F) | (_VERSION << 4)
    digest[8] = (digest[8] & 0x3F) | 0x80
    return identifier_from_native(from_canonical_bytes(bytes(digest)))


def reference_name(tenant_id: uuid.UUID, site_id: uuid.UUID, business_code: str) -> str:
    """Build the name hashed for a (tenant, site, business code) reference."""

    # str(UUID) is the fixed-width lowercase hyphenated form, so the join is unambiguous.
    return _NAME_SEPARATOR.join((str(tenant_id), str(site_id), business_code))


@dataclass(frozen=True)
class DeterministicIdentifierGenerator:
    """Identifier generator bound to one entity-type namespace."""

    namespace: uuid.UUID

    def derive(self, name: str) -> uuid.UUID:
        return derive_identifier(self.namespace, name)

    def derive_reference(
        self,
        tenant_id: uuid.UUID,
        site_id: uuid.UUID,
        business_code: str,
    ) -> uuid.UUID:
        return derive_identifier(
            self.namespace,
            reference_name(tenant_id, site_id, business_code),
        )


__all__ = [
    "DeterministicIdentifierGenerator",
    "derive_identifier",
    "reference_name",
]
