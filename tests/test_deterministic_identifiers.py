"""Tests for namespaced deterministic identifier derivation."""

from __future__ import annotations

import sys
import uuid
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from benchmark_errors import IdentifierEncodingError
from deterministic_identifiers import DeterministicIdentifierGenerator, derive_identifier, reference_name

NAMESPACE = uuid.UUID("11111111-2222-3333-4444-555555555555")
TENANT = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
SITE = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")


def test_reference_name_uses_hyphenated_lowercase_text() -> None:
    name = reference_name(TENANT, SITE, "1000")
    assert name == "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa|bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb|1000"


def test_golden_vector() -> None:
    generator = DeterministicIdentifierGenerator(NAMESPACE)
    assert generator.derive_reference(TENANT, SITE, "1000") == uuid.UUID("faf87bb1-4ae4-5ea8-9382-df56f3557606")
    assert generator.derive_reference(TENANT, SITE, "1001") == uuid.UUID("d6472fdb-79d7-59ae-b44c-74802be23370")


def test_golden_native_layout() -> None:
    derived = derive_identifier(NAMESPACE, reference_name(TENANT, SITE, "1000"))
    assert derived.bytes_le == bytes.fromhex("b17bf8fae44aa85e9382df56f3557606")


def test_derivation_is_repeatable() -> None:
    name = reference_name(TENANT, SITE, "4242")
    assert derive_identifier(NAMESPACE, name) == derive_identifier(NAMESPACE, name)


def test_matches_standard_uuid5() -> None:
    assert derive_identifier(uuid.NAMESPACE_DNS, "python.org") == uuid.UUID("886313e1-3b8a-5372-9b90-0c9aee199e5d")
    for code in ("1000", "2999", "naïve-code", ""):
        name = reference_name(TENANT, SITE, code)
        assert derive_identifier(NAMESPACE, name) == uuid.uuid5(NAMESPACE, name)


def test_namespace_separates_identifier_spaces() -> None:
    name = reference_name(TENANT, SITE, "1000")
    other_namespace = uuid.UUID("99999999-2222-3333-4444-555555555555")
    assert derive_identifier(NAMESPACE, name) != derive_identifier(other_namespace, name)


def test_version_and_variant_bits() -> None:
    generator = DeterministicIdentifierGenerator(NAMESPACE)
    for code in range(1000, 1200):
        derived = generator.derive_reference(TENANT, SITE, str(code))
        canonical = derived.bytes
        assert canonical[6] >> 4 == 5
        assert canonical[8] >> 6 == 0b10
        assert derived.version == 5
        assert derived.variant == uuid.RFC_4122


def test_no_collisions_across_ten_thousand_triples() -> None:
    generator = DeterministicIdentifierGenerator(NAMESPACE)
    tenants = [uuid.UUID(int=index + 1) for index in range(10)]
    sites = [uuid.UUID(int=(index + 1) << 64) for index in range(10)]
    derived = {
        generator.derive_reference(tenant, site, str(code))
        for tenant in tenants
        for site in sites
        for code in range(100)
    }
    assert len(derived) == 10_000


def test_unencodable_name_raises() -> None:
    with pytest.raises(IdentifierEncodingError):
        derive_identifier(NAMESPACE, "bad\ud800name")
