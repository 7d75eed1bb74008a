from collections.abc import Sequence
from dataclasses import fields, replace
from datetime import date
from typing import Any

import psycopg
from psycopg import errors
from psycopg.rows import dict_row

from nfse_ingest.database.connection import get_connection
from nfse_ingest.database.exceptions import DocumentStoreError, DuplicateDocumentError
from nfse_ingest.database.models import (
    DeduplicationStatistics,
    DocumentFilter,
    PersistedDocument,
)
from nfse_ingest.database.repositories.base import BaseDocumentRepository

COLUMNS: tuple[str, ...] = tuple(
    f.name for f in fields(PersistedDocument) if f.name != "id"
)
_SELECT = f"SELECT id, {', '.join(COLUMNS)} FROM nfse_documents"
_INSERT = (
    f"INSERT INTO nfse_documents ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join(f'%({c})s' for c in COLUMNS)}) "
    "RETURNING id"
)


def _params(document: PersistedDocument) -> dict[str, Any]:
    return {column: getattr(document, column) for column in COLUMNS}


def _to_document(row: dict[str, Any]) -> PersistedDocument:
    values = {column: row[column] for column in COLUMNS}
    values["competence_period"] = values["competence_period"].strip()
    return PersistedDocument(id=row["id"], **values)


class DocumentRepository(BaseDocumentRepository):
    """Database operations for the nfse_documents table."""

    def insert_one(self, document: PersistedDocument) -> PersistedDocument:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(_INSERT, _params(document))
                    row = cur.fetchone()
                conn.commit()
        except errors.UniqueViolation as exc:
            raise DuplicateDocumentError(
                f"Document {document.number} violates a uniqueness constraint"
            ) from exc
        except psycopg.Error as exc:
            raise DocumentStoreError(f"Failed to insert document: {exc}") from exc

        if row is None:
            raise DocumentStoreError("Insert returned no id")
        return replace(document, id=row[0])

    def insert_many(
        self, documents: Sequence[PersistedDocument]
    ) -> list[PersistedDocument]:
        if not documents:
            return []
        ids: list[int] = []
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.executemany(
                        _INSERT, [_params(d) for d in documents], returning=True
                    )
                    while True:
                        row = cur.fetchone()
                        if row is not None:
                            ids.append(row[0])
                        if not cur.nextset():
                            break
                conn.commit()
        except errors.UniqueViolation as exc:
            raise DuplicateDocumentError(
                f"Batch of {len(documents)} documents violates a uniqueness constraint"
            ) from exc
        except psycopg.Error as exc:
            raise DocumentStoreError(f"Failed to insert documents: {exc}") from exc

        if len(ids) != len(documents):
            raise DocumentStoreError(
                f"Inserted {len(ids)} ids for {len(documents)} documents"
            )
        return [replace(d, id=i) for d, i in zip(documents, ids)]

    def find(
        self, tenant_id: int, criteria: DocumentFilter | None = None
    ) -> list[PersistedDocument]:
        criteria = criteria or DocumentFilter()
        clauses = ["tenant_id = %s"]
        params: list[Any] = [tenant_id]
        if criteria.number:
            clauses.append("number = %s")
            params.append(criteria.number)
        if criteria.provider_tax_id:
            clauses.append("provider_tax_id = %s")
            params.append(criteria.provider_tax_id)
        if criteria.competence_period:
            clauses.append("competence_period = %s")
            params.append(criteria.competence_period)
        if criteria.issued_from:
            clauses.append("DATE(issue_date) >= %s")
            params.append(criteria.issued_from)
        if criteria.issued_to:
            clauses.append("DATE(issue_date) <= %s")
            params.append(criteria.issued_to)
        if not criteria.include_cancelled:
            clauses.append("NOT is_cancelled")
        params.extend([criteria.limit, criteria.offset])

        sql = (
            f"{_SELECT} WHERE {' AND '.join(clauses)} "
            "ORDER BY issue_date DESC, id DESC LIMIT %s OFFSET %s"
        )
        return self._fetch_all(sql, params)

    def find_by_verification_code(
        self, tenant_id: int, verification_code: str
    ) -> PersistedDocument | None:
        return self._fetch_first(
            f"{_SELECT} WHERE tenant_id = %s AND verification_code = %s "
            "AND verification_code <> '' ORDER BY id LIMIT 1",
            (tenant_id, verification_code),
        )

    def find_by_composite_key(
        self, tenant_id: int, number: str, provider_tax_id: str, issue_day: date
    ) -> PersistedDocument | None:
        return self._fetch_first(
            f"{_SELECT} WHERE tenant_id = %s AND number = %s "
            "AND provider_tax_id = %s AND DATE(issue_date) = %s ORDER BY id LIMIT 1",
            (tenant_id, number, provider_tax_id, issue_day),
        )

    def find_by_fingerprint(
        self, tenant_id: int, fingerprint: str
    ) -> PersistedDocument | None:
        return self._fetch_first(
            f"{_SELECT} WHERE tenant_id = %s AND fingerprint = %s "
            "ORDER BY id LIMIT 1",
            (tenant_id, fingerprint),
        )

    def find_matching(
        self,
        tenant_id: int,
        verification_codes: Sequence[str],
        numbers: Sequence[str],
        fingerprints: Sequence[str],
    ) -> list[PersistedDocument]:
        if not (verification_codes or numbers or fingerprints):
            return []
        return self._fetch_all(
            f"""
            {_SELECT}
            WHERE tenant_id = %s
              AND (verification_code = ANY(%s)
                   OR number = ANY(%s)
                   OR fingerprint = ANY(%s))
            ORDER BY id
            """,
            (tenant_id, list(verification_codes), list(numbers), list(fingerprints)),
        )

    def statistics(self, tenant_id: int, days: int) -> DeduplicationStatistics:
        try:
            with get_connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        """
                        SELECT COUNT(*) AS total_documents,
                               COUNT(DISTINCT verification_code) AS unique_documents,
                               COUNT(*) FILTER (WHERE is_cancelled) AS cancelled_documents,
                               COUNT(*) FILTER (WHERE is_substituted) AS substituted_documents
                        FROM nfse_documents
                        WHERE tenant_id = %s
                          AND created_at >= NOW() - make_interval(days => %s)
                        """,
                        (tenant_id, days),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise DocumentStoreError(f"Failed to compute statistics: {exc}") from exc

        row = row or {}
        return DeduplicationStatistics(
            total_documents=row.get("total_documents", 0),
            unique_documents=row.get("unique_documents", 0),
            cancelled_documents=row.get("cancelled_documents", 0),
            substituted_documents=row.get("substituted_documents", 0),
            period_days=days,
        )

    def _fetch_first(
        self, sql: str, params: Sequence[Any]
    ) -> PersistedDocument | None:
        rows = self._fetch_all(sql, params)
        return rows[0] if rows else None

    def _fetch_all(self, sql: str, params: Sequence[Any]) -> list[PersistedDocument]:
        try:
            with get_connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(sql, params)
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise DocumentStoreError(f"Document lookup failed: {exc}") from exc
        return [_to_document(row) for row in rows]
