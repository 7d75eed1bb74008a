from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from nfse_ingest.parser.models import ParsedCandidate

STATUS_PROCESSED = "processed"


@dataclass(frozen=True)
class PersistedDocument:
    """Represents a row from the nfse_documents table."""

    tenant_id: int
    number: str
    verification_code: str
    provider_tax_id: str
    taker_tax_id: str
    service_value: Decimal
    service_code: str
    issue_date: datetime
    municipal_registration: str
    competence: str
    competence_period: str
    rps_issue_date: datetime
    is_cancelled: bool
    is_substituted: bool
    fingerprint: str
    xml: str
    storage_key: str
    status: str
    processed_at: datetime
    rps_number: str = ""
    cnae_code: str = ""
    tax_base: Decimal = Decimal("0")
    iss_rate: Decimal = Decimal("0")
    iss_value: Decimal = Decimal("0")
    net_value: Decimal = Decimal("0")
    taker_name: str = ""
    provider_name: str = ""
    provider_trade_name: str = ""
    id: int | None = None

    @classmethod
    def from_candidate(
        cls,
        candidate: ParsedCandidate,
        *,
        tenant_id: int,
        storage_key: str,
        competence_period: str,
        processed_at: datetime,
    ) -> "PersistedDocument":
        return cls(
            tenant_id=tenant_id,
            number=candidate.number,
            verification_code=candidate.verification_code,
            provider_tax_id=candidate.provider_tax_id,
            taker_tax_id=candidate.taker_tax_id,
            service_value=candidate.service_value,
            service_code=candidate.service_code,
            issue_date=candidate.issue_date,
            municipal_registration=candidate.municipal_registration,
            competence=candidate.competence,
            competence_period=competence_period,
            rps_issue_date=candidate.rps_issue_date,
            is_cancelled=candidate.is_cancelled,
            is_substituted=candidate.is_substituted,
            fingerprint=candidate.fingerprint,
            xml=candidate.xml,
            storage_key=storage_key,
            status=STATUS_PROCESSED,
            processed_at=processed_at,
            rps_number=candidate.rps_number,
            cnae_code=candidate.cnae_code,
            tax_base=candidate.tax_base,
            iss_rate=candidate.iss_rate,
            iss_value=candidate.iss_value,
            net_value=candidate.net_value,
            taker_name=candidate.taker_name,
            provider_name=candidate.provider_name,
            provider_trade_name=candidate.provider_trade_name,
        )


@dataclass(frozen=True)
class DocumentFilter:
    """Optional criteria for listing a tenant's documents."""

    number: str | None = None
    provider_tax_id: str | None = None
    competence_period: str | None = None
    issued_from: date | None = None
    issued_to: date | None = None
    include_cancelled: bool = True
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True)
class DeduplicationStatistics:
    """Duplicate-related counts for one tenant over a trailing window."""

    total_documents: int
    unique_documents: int
    cancelled_documents: int
    substituted_documents: int
    period_days: int

    @property
    def potential_duplicates(self) -> int:
        return self.total_documents - self.unique_documents


@dataclass
class JobRecord:
    """Represents a row from the ingestion_jobs table."""

    id: int
    tenant_id: int
    start_date: date
    end_date: date
    status: str
    attempts: int
    error_message: str | None = None
    locked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
