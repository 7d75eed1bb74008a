from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import date

import pytest

from nfse_ingest.database.exceptions import DocumentStoreError, DuplicateDocumentError
from nfse_ingest.database.models import (
    DeduplicationStatistics,
    DocumentFilter,
    PersistedDocument,
)
from nfse_ingest.database.repositories.base import BaseDocumentRepository
from nfse_ingest.storage.base import BaseBlobStore
from nfse_ingest.storage.exceptions import BlobStoreError

_NFSE_TEMPLATE = """<?xml version="1.0" encoding="{encoding}"?>
<consultarNotaResponse xmlns="http://www.abrasf.org.br/nfse.xsd">
  <ListaNfse>
    <ComplNfse>
      <Nfse>
        <InfNfse>
          <Numero>{number}</Numero>
          <CodigoVerificacao>{verification_code}</CodigoVerificacao>
          <DataEmissao>{issue_date}</DataEmissao>
          <IdentificacaoRps>
            <Numero>{rps_number}</Numero>
          </IdentificacaoRps>
          <DataEmissaoRps>{rps_issue_date}</DataEmissaoRps>
          <Competencia>{competence}</Competencia>
          <Servico>
            <Valores>
              <ValorServicos>{service_value}</ValorServicos>
              <BaseCalculo>{service_value}</BaseCalculo>
              <Aliquota>0.05</Aliquota>
              <ValorIss>75.00</ValorIss>
              <ValorLiquidoNfse>1425.00</ValorLiquidoNfse>
            </Valores>
            <ItemListaServico>{service_code}</ItemListaServico>
            <CodigoCnae>6201501</CodigoCnae>
          </Servico>
          <PrestadorServico>
            <IdentificacaoPrestador>
              <Cnpj>{provider_tax_id}</Cnpj>
              <InscricaoMunicipal>123456</InscricaoMunicipal>
            </IdentificacaoPrestador>
            <RazaoSocial>{provider_name}</RazaoSocial>
            <NomeFantasia>Tech Maranhão</NomeFantasia>
          </PrestadorServico>
          <TomadorServico>
            <IdentificacaoTomador>
              <CpfCnpj>{taker_id_block}</CpfCnpj>
            </IdentificacaoTomador>
            <RazaoSocial>Cliente Exemplo</RazaoSocial>
          </TomadorServico>
        </InfNfse>
      </Nfse>{cancellation_block}{substitution_block}
    </ComplNfse>
  </ListaNfse>
</consultarNotaResponse>
"""

_CANCELLATION = """
      <NfseCancelamento>
        <Confirmacao>
          <InfConfirmacaoCancelamento>
            <Sucesso>true</Sucesso>
          </InfConfirmacaoCancelamento>
        </Confirmacao>
      </NfseCancelamento>"""

_SUBSTITUTION = """
      <NfseSubstituicao>
        <SubstituicaoNfse>{substituted_by}</SubstituicaoNfse>
      </NfseSubstituicao>"""


def build_nfse_xml(
    *,
    number: str = "250000062",
    verification_code: str = "ABC123XYZ",
    issue_date: str = "2025-08-15 10:30:00",
    rps_number: str = "77",
    rps_issue_date: str = "2025-08-15 09:00:00",
    competence: str = "082025",
    service_value: str = "1500.00",
    service_code: str = "1.05",
    provider_tax_id: str = "34.194.865/0001-58",
    provider_name: str = "Tecnologia Imperatriz LTDA",
    taker_cnpj: str = "12345678000199",
    taker_cpf: str = "",
    cancelled: bool = False,
    substituted_by: str = "",
    encoding: str = "UTF-8",
) -> str:
    if taker_cnpj:
        taker_id_block = f"<Cnpj>{taker_cnpj}</Cnpj>"
    else:
        taker_id_block = f"<Cpf>{taker_cpf}</Cpf>"
    return _NFSE_TEMPLATE.format(
        encoding=encoding,
        number=number,
        verification_code=verification_code,
        issue_date=issue_date,
        rps_number=rps_number,
        rps_issue_date=rps_issue_date,
        competence=competence,
        service_value=service_value,
        service_code=service_code,
        provider_tax_id=provider_tax_id,
        provider_name=provider_name,
        taker_id_block=taker_id_block,
        cancellation_block=_CANCELLATION if cancelled else "",
        substitution_block=(
            _SUBSTITUTION.format(substituted_by=substituted_by) if substituted_by else ""
        ),
    )


@pytest.fixture()
def nfse_xml() -> Callable[..., str]:
    """Factory for `consultarNotaResponse` documents with overridable fields."""
    return build_nfse_xml


class InMemoryDocumentRepository(BaseDocumentRepository):
    """List-backed stand-in for the documents table, ordered by id."""

    def __init__(self, enforce_unique: bool = True) -> None:
        self.documents: list[PersistedDocument] = []
        self.enforce_unique = enforce_unique
        self.fail_lookups = False
        self.fail_inserts = False
        self.find_matching_calls = 0
        self.insert_many_calls = 0
        self._next_id = 1

    def insert_one(self, document: PersistedDocument) -> PersistedDocument:
        if self.fail_inserts:
            raise DocumentStoreError("Failed to insert document: connection refused")
        self._check_unique(document, self.documents)
        stored = replace(document, id=self._next_id)
        self._next_id += 1
        self.documents.append(stored)
        return stored

    def insert_many(self, documents: Sequence[PersistedDocument]) -> list[PersistedDocument]:
        self.insert_many_calls += 1
        if self.fail_inserts:
            raise DocumentStoreError("Failed to insert documents: connection refused")
        staged: list[PersistedDocument] = []
        for document in documents:
            self._check_unique(document, self.documents + staged)
            staged.append(document)
        return [self.insert_one(d) for d in documents]

    def find(
        self, tenant_id: int, criteria: DocumentFilter | None = None
    ) -> list[PersistedDocument]:
        self._maybe_fail()
        criteria = criteria or DocumentFilter()
        rows = [d for d in self.documents if d.tenant_id == tenant_id]
        if criteria.number:
            rows = [d for d in rows if d.number == criteria.number]
        if not criteria.include_cancelled:
            rows = [d for d in rows if not d.is_cancelled]
        return rows[criteria.offset : criteria.offset + criteria.limit]

    def find_by_verification_code(
        self, tenant_id: int, verification_code: str
    ) -> PersistedDocument | None:
        self._maybe_fail()
        return self._first(
            lambda d: d.tenant_id == tenant_id
            and verification_code != ""
            and d.verification_code == verification_code
        )

    def find_by_composite_key(
        self, tenant_id: int, number: str, provider_tax_id: str, issue_day: date
    ) -> PersistedDocument | None:
        self._maybe_fail()
        return self._first(
            lambda d: d.tenant_id == tenant_id
            and d.number == number
            and d.provider_tax_id == provider_tax_id
            and d.issue_date.date() == issue_day
        )

    def find_by_fingerprint(
        self, tenant_id: int, fingerprint: str
    ) -> PersistedDocument | None:
        self._maybe_fail()
        return self._first(
            lambda d: d.tenant_id == tenant_id and d.fingerprint == fingerprint
        )

    def find_matching(
        self,
        tenant_id: int,
        verification_codes: Sequence[str],
        numbers: Sequence[str],
        fingerprints: Sequence[str],
    ) -> list[PersistedDocument]:
        self.find_matching_calls += 1
        self._maybe_fail()
        return [
            d
            for d in self.documents
            if d.tenant_id == tenant_id
            and (
                d.verification_code in verification_codes
                or d.number in numbers
                or d.fingerprint in fingerprints
            )
        ]

    def statistics(self, tenant_id: int, days: int) -> DeduplicationStatistics:
        self._maybe_fail()
        rows = [d for d in self.documents if d.tenant_id == tenant_id]
        return DeduplicationStatistics(
            total_documents=len(rows),
            unique_documents=len({d.verification_code for d in rows}),
            cancelled_documents=sum(1 for d in rows if d.is_cancelled),
            substituted_documents=sum(1 for d in rows if d.is_substituted),
            period_days=days,
        )

    def _first(self, predicate: Callable[[PersistedDocument], bool]) -> PersistedDocument | None:
        return next((d for d in self.documents if predicate(d)), None)

    def _maybe_fail(self) -> None:
        if self.fail_lookups:
            raise DocumentStoreError("Document lookup failed: connection reset")

    def _check_unique(
        self, document: PersistedDocument, existing: Sequence[PersistedDocument]
    ) -> None:
        if not self.enforce_unique or document.is_cancelled or document.is_substituted:
            return
        for other in existing:
            if other.tenant_id != document.tenant_id or other.is_cancelled or other.is_substituted:
                continue
            same_code = (
                document.verification_code != ""
                and other.verification_code == document.verification_code
            )
            same_key = (
                document.number != ""
                and document.provider_tax_id != ""
                and other.number == document.number
                and other.provider_tax_id == document.provider_tax_id
                and other.issue_date.date() == document.issue_date.date()
            )
            if same_code or same_key:
                raise DuplicateDocumentError(
                    f"Document {document.number} violates a uniqueness constraint"
                )


class RecordingBlobStore(BaseBlobStore):
    """Keeps uploads in memory; keys listed in `fail_keys` raise BlobStoreError."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.fail_keys: set[str] = set()
        self.fail_all = False

    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        if self.fail_all or key in self.fail_keys:
            raise BlobStoreError(f"failed to upload {bucket}/{key}: access denied")
        self.objects[(bucket, key)] = data
        self.content_types[(bucket, key)] = content_type


@pytest.fixture()
def document_repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture()
def blob_store() -> RecordingBlobStore:
    return RecordingBlobStore()
