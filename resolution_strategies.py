"""Foreign-key resolution strategies: storage lookups vs deterministic identifiers."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, Iterable, Sequence

from benchmark_errors import StorageError
from deterministic_identifiers import DeterministicIdentifierGenerator
from storage_backend import (
    ADDRESSES_DB,
    ADDRESSES_DET,
    ENTITIES_DB,
    ENTITIES_DET,
    StorageBackend,
    transaction,
)

LOGGER = logging.getLogger(__name__)

LOOKUP_STRATEGY = "lookup"
DETERMINISTIC_STRATEGY = "deterministic"


def utc_now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


@dataclass(frozen=True)
class TenantScope:
    """Tenant and site every reference in a run is scoped to."""

    tenant_id: uuid.UUID
    site_id: uuid.UUID


@dataclass(frozen=True)
class ReferencePair:
    """Business codes of the two addresses one entity references."""

    admin_code: str
    reg_code: str


@dataclass(frozen=True)
class ResolutionResult:
    elapsed_ms: int
    lookup_count: int
    rows_inserted: int


class ResolutionStrategy(ABC):
    """Seeds an address catalog and inserts entities referencing it.

    A batch runs inside a single transaction. Any failure rolls the batch back
    and propagates as :class:`StorageError`.
    """

    name: str = ""
    address_table: str = ""
    entity_table: str = ""

    def __init__(
        self,
        backend: StorageBackend,
        scope: TenantScope,
        *,
        clock: Callable[[], float] = perf_counter,
        now_ms: Callable[[], int] = utc_now_ms,
        entity_id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ) -> None:
        self._backend = backend
        self._scope = scope
        self._clock = clock
        self._now_ms = now_ms
        self._entity_id_factory = entity_id_factory
        self._lookup_count = 0

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def scope(self) -> TenantScope:
        return self._scope

    @abstractmethod
    def seed_catalog(self, business_codes: Iterable[str]) -> int:
        """Write one address record per business code and return the count."""

    @abstractmethod
    def _resolve_code(self, business_code: str) -> uuid.UUID:
        """Return the address identifier for a business code."""

    def resolve_and_insert_batch(self, pairs: Sequence[ReferencePair]) -> ResolutionResult:
        insert_sql = (
            f"INSERT INTO {self.entity_table} "
            "(id, tenant_id, site_id, admin_office_id, reg_office_id, created_at_utc) "
            "VALUES (?, ?, ?, ?, ?, ?)"
        )
        self._lookup_count = 0
        rows = 0
        start = self._clock()
        with transaction(self._backend) as backend:
            for pair in pairs:
                admin_id = self._resolve_code(pair.admin_code)
                reg_id = self._resolve_code(pair.reg_code)
                backend.execute(
                    insert_sql,
                    (
                        self._entity_id_factory(),
                        self._scope.tenant_id,
                        self._scope.site_id,
                        admin_id,
                        reg_id,
                        self._now_ms(),
                    ),
                )
                rows += 1
        elapsed_ms = int((self._clock() - start) * 1000)
        LOGGER.debug(
            "%s strategy inserted %d entities in %d ms with %d lookups",
            self.name,
            rows,
            elapsed_ms,
            self._lookup_count,
        )
        return ResolutionResult(elapsed_ms=elapsed_ms, lookup_count=self._lookup_count, rows_inserted=rows)

    def unresolved_references(self) -> int:
        """Count entities whose foreign keys do not join to an address in scope."""

        statement = f"""
            SELECT COUNT(*)
            FROM {self.entity_table} e
            LEFT JOIN {self.address_table} a
              ON a.id = e.admin_office_id AND a.tenant_id = e.tenant_id AND a.site_id = e.site_id
            LEFT JOIN {self.address_table} r
              ON r.id = e.reg_office_id AND r.tenant_id = e.tenant_id AND r.site_id = e.site_id
            WHERE a.id IS NULL OR r.id IS NULL
        """
        return int(self._backend.query_scalar(statement) or 0)

    def resolved_pairs(self) -> list[ReferencePair]:
        """Join entities back to the catalog, in insertion order."""

        statement = f"""
            SELECT a.business_code, r.business_code
            FROM {self.entity_table} e
            JOIN {self.address_table} a ON a.id = e.admin_office_id
            JOIN {self.address_table} r ON r.id = e.reg_office_id
            ORDER BY e.rowid
        """
        return [
            ReferencePair(admin_code=admin, reg_code=reg)
            for admin, reg in self._backend.query_rows(statement)
        ]


class LookupStrategy(ResolutionStrategy):
    """Backend-assigned address keys, one scalar lookup per reference."""

    name = LOOKUP_STRATEGY
    address_table = ADDRESSES_DB
    entity_table = ENTITIES_DB

    def seed_catalog(self, business_codes: Iterable[str]) -> int:
        statement = f"INSERT INTO {self.address_table} (tenant_id, site_id, business_code) VALUES (?, ?, ?)"
        with transaction(self._backend) as backend:
            return backend.execute_many(
                statement,
                ((self._scope.tenant_id, self._scope.site_id, code) for code in business_codes),
            )

    def _resolve_code(self, business_code: str) -> uuid.UUID:
        statement = (
            f"SELECT id FROM {self.address_table} "
            "WHERE tenant_id = ? AND site_id = ? AND business_code = ?"
        )
        address_id = self._backend.query_scalar(
            statement,
            (self._scope.tenant_id, self._scope.site_id, business_code),
        )
        self._lookup_count += 1
        if address_id is None:
            raise StorageError(f"No address with business code {business_code!r} in scope")
        return address_id


class DeterministicStrategy(ResolutionStrategy):
    """Address keys derived from (namespace, tenant, site, code); no lookups."""

    name = DETERMINISTIC_STRATEGY
    address_table = ADDRESSES_DET
    entity_table = ENTITIES_DET

    def __init__(
        self,
        backend: StorageBackend,
        scope: TenantScope,
        generator: DeterministicIdentifierGenerator,
        **kwargs: Any,
    ) -> None:
        super().__init__(backend, scope, **kwargs)
        self._generator = generator

    @property
    def generator(self) -> DeterministicIdentifierGenerator:
        return self._generator

    def seed_catalog(self, business_codes: Iterable[str]) -> int:
        statement = f"INSERT INTO {self.address_table} (id, tenant_id, site_id, business_code) VALUES (?, ?, ?, ?)"
        with transaction(self._backend) as backend:
            return backend.execute_many(
                statement,
                (
                    (self._resolve_code(code), self._scope.tenant_id, self._scope.site_id, code)
                    for code in business_codes
                ),
            )

    def _resolve_code(self, business_code: str) -> uuid.UUID:
        return self._generator.derive_reference(self._scope.tenant_id, self._scope.site_id, business_code)


__all__ = [
    "DETERMINISTIC_STRATEGY",
    "DeterministicStrategy",
    "LOOKUP_STRATEGY",
    "LookupStrategy",
    "ReferencePair",
    "ResolutionResult",
    "ResolutionStrategy",
    "TenantScope",
    "utc_now_ms",
]
