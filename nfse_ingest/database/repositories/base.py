from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date

from nfse_ingest.database.models import (
    DeduplicationStatistics,
    DocumentFilter,
    PersistedDocument,
)


class BaseDocumentRepository(ABC):
    """Contract for the relational store holding persisted NFS-e documents.

    Lookups return the oldest matching row (lowest id) when several match.
    Failures surface as DocumentStoreError; uniqueness violations on insert
    as DuplicateDocumentError.
    """

    @abstractmethod
    def insert_one(self, document: PersistedDocument) -> PersistedDocument:
        """Insert one row and return it with its new id."""

    @abstractmethod
    def insert_many(
        self, documents: Sequence[PersistedDocument]
    ) -> list[PersistedDocument]:
        """Insert all rows in one transaction, returning them in input order."""

    @abstractmethod
    def find(
        self, tenant_id: int, criteria: DocumentFilter | None = None
    ) -> list[PersistedDocument]:
        """List a tenant's documents, newest issue date first."""

    @abstractmethod
    def find_by_verification_code(
        self, tenant_id: int, verification_code: str
    ) -> PersistedDocument | None: ...

    @abstractmethod
    def find_by_composite_key(
        self, tenant_id: int, number: str, provider_tax_id: str, issue_day: date
    ) -> PersistedDocument | None: ...

    @abstractmethod
    def find_by_fingerprint(
        self, tenant_id: int, fingerprint: str
    ) -> PersistedDocument | None: ...

    @abstractmethod
    def find_matching(
        self,
        tenant_id: int,
        verification_codes: Sequence[str],
        numbers: Sequence[str],
        fingerprints: Sequence[str],
    ) -> list[PersistedDocument]:
        """Single disjunctive lookup used by batch duplicate detection."""

    @abstractmethod
    def statistics(self, tenant_id: int, days: int) -> DeduplicationStatistics: ...
