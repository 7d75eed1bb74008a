import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from nfse_ingest.config.settings import Settings
from nfse_ingest.database.exceptions import DocumentStoreError, DuplicateDocumentError
from nfse_ingest.database.models import PersistedDocument
from nfse_ingest.database.repositories.base import BaseDocumentRepository
from nfse_ingest.database.repositories.document_repository import DocumentRepository
from nfse_ingest.dedup.detector import DuplicateDetector
from nfse_ingest.dedup.exceptions import DuplicateCheckError
from nfse_ingest.dedup.models import DuplicateVerdict
from nfse_ingest.encoding.normalizer import EncodingNormalizer
from nfse_ingest.extraction.extractor import BatchExtractor
from nfse_ingest.fetch.models import FetchEnvelope
from nfse_ingest.ingestion.models import BatchIngestionResult, IngestionResult
from nfse_ingest.ingestion.pipeline import IngestionContext, PipelineStep
from nfse_ingest.ingestion.steps import (
    XML_CONTENT_TYPE,
    BuildStorageKeyStep,
    CheckDuplicateStep,
    NormalizeEncodingStep,
    ParseStep,
    PersistDocumentStep,
    UploadBlobStep,
    build_document,
    require_candidate,
)
from nfse_ingest.logging.logger import Log
from nfse_ingest.parser.exceptions import DocumentParseError
from nfse_ingest.parser.models import ParsedCandidate, RawDocument
from nfse_ingest.parser.parser import NFSeParser
from nfse_ingest.storage.base import BaseBlobStore
from nfse_ingest.storage.exceptions import BlobStoreError
from nfse_ingest.storage.factory import BlobStoreFactory
from nfse_ingest.storage.path_builder import build_storage_key

_DOCUMENT_ERRORS = (DocumentParseError, DuplicateCheckError, BlobStoreError, DocumentStoreError)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _PendingWrite:
    index: int
    candidate: ParsedCandidate
    document: PersistedDocument


class IngestionOrchestrator:
    """Turns raw NFS-e XML into stored blobs plus deduplicated metadata rows.

    Single-document pipeline:
        normalize -> parse -> duplicate check -> storage key -> upload -> persist

    A duplicate stops the pipeline before any side effect. Batch mode runs the
    same stages phase by phase with one duplicate lookup and one insert.
    """

    def __init__(
        self,
        normalizer: EncodingNormalizer,
        parser: NFSeParser,
        detector: DuplicateDetector,
        repository: BaseDocumentRepository,
        blob_store: BaseBlobStore,
        bucket: str,
        extractor: BatchExtractor | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._normalizer = normalizer
        self._parser = parser
        self._detector = detector
        self._repository = repository
        self._blob_store = blob_store
        self._bucket = bucket
        self._extractor = extractor or BatchExtractor()
        self._clock = clock
        self._steps: list[PipelineStep] = [
            NormalizeEncodingStep(normalizer),
            ParseStep(parser),
            CheckDuplicateStep(detector),
            BuildStorageKeyStep(),
            UploadBlobStep(blob_store, bucket),
            PersistDocumentStep(repository, clock),
        ]

    def ingest_document(self, tenant_id: int, raw: RawDocument) -> IngestionResult:
        """Ingest one document. Failures are reported in the result, never raised."""
        started = time.perf_counter()
        Log.info("Processing XML document", tenant_id=tenant_id, filename=raw.filename)

        context = IngestionContext(tenant_id=tenant_id, raw=raw)
        try:
            for step in self._steps:
                context = step.run(context)
                if context.is_duplicate:
                    break
        except DuplicateDocumentError:
            result = self._resolve_conflict(context, started)
        except _DOCUMENT_ERRORS as exc:
            Log.error(
                "Failed to process XML document",
                tenant_id=tenant_id,
                filename=raw.filename,
                error=str(exc),
            )
            result = IngestionResult.failure(
                raw.filename, str(exc), processing_time=time.perf_counter() - started
            )
        else:
            result = self._context_result(context, started)

        Log.info(
            "Finished XML document",
            tenant_id=tenant_id,
            filename=raw.filename,
            success=result.success,
            is_duplicate=result.is_duplicate,
            document_id=result.document_id,
        )
        return result

    def ingest_batch(
        self, tenant_id: int, documents: Sequence[RawDocument]
    ) -> BatchIngestionResult:
        """Ingest many documents with one duplicate lookup and one insert.

        Results are returned in input order.

        Raises:
            DuplicateCheckError: if the batch duplicate lookup fails.
        """
        started = time.perf_counter()
        Log.info(
            "Starting batch XML processing",
            tenant_id=tenant_id,
            documents_count=len(documents),
        )
        results: list[IngestionResult | None] = [None] * len(documents)

        parsed: list[tuple[int, ParsedCandidate]] = []
        for index, raw in enumerate(documents):
            try:
                candidate = self._parser.parse(self._normalizer.normalize(raw.content))
            except DocumentParseError as exc:
                Log.error("Failed to parse XML", filename=raw.filename, error=str(exc))
                results[index] = IngestionResult.failure(raw.filename, str(exc))
                continue
            parsed.append((index, candidate))

        verdicts = self._detector.check_batch(tenant_id, [c for _, c in parsed])

        pending: list[_PendingWrite] = []
        repeats: list[tuple[int, DuplicateVerdict]] = []
        processed_at = self._clock()
        for (index, candidate), verdict in zip(parsed, verdicts):
            filename = documents[index].filename
            if verdict.is_duplicate and verdict.matched_batch_index is not None:
                original = parsed[verdict.matched_batch_index][0]
                repeats.append(
                    (index, replace(verdict, matched_batch_index=original))
                )
            elif verdict.is_duplicate:
                results[index] = IngestionResult.duplicate(
                    filename,
                    verdict,
                    verdict.matched_record.id if verdict.matched_record else None,
                )
            else:
                context = IngestionContext(
                    tenant_id=tenant_id,
                    raw=documents[index],
                    candidate=candidate,
                    storage_key=build_storage_key(candidate, filename),
                )
                pending.append(
                    _PendingWrite(index, candidate, build_document(context, processed_at))
                )

        self._write_pending(tenant_id, documents, pending, results)

        for index, verdict in repeats:
            results[index] = self._repeat_result(index, verdict, results, documents)

        final = [r for r in results if r is not None]
        batch = BatchIngestionResult.from_results(final, time.perf_counter() - started)
        Log.info(
            "Completed batch XML processing",
            tenant_id=tenant_id,
            total=batch.total_documents,
            processed=batch.processed_documents,
            duplicates=batch.duplicate_documents,
            errors=batch.error_documents,
            processing_time_ms=round(batch.processing_time * 1000),
            success_rate=f"{batch.success_rate:.2f}%",
        )
        return batch

    def ingest_envelope(self, tenant_id: int, envelope: FetchEnvelope) -> BatchIngestionResult:
        """Extract every container of a fetch envelope and ingest the documents.

        Containers that cannot be opened are counted as errors.
        """
        started = time.perf_counter()
        outcome = self._extractor.extract_envelope(envelope)
        batch = self.ingest_batch(tenant_id, outcome.documents)
        failures = [
            IngestionResult.failure(f"nfse_{failure.entry_number}.zip", failure.error)
            for failure in outcome.failures
        ]
        return BatchIngestionResult.from_results(
            batch.results + failures, time.perf_counter() - started
        )

    def _context_result(self, context: IngestionContext, started: float) -> IngestionResult:
        elapsed = time.perf_counter() - started
        if context.is_duplicate and context.verdict is not None:
            matched = context.verdict.matched_record
            return IngestionResult.duplicate(
                context.raw.filename,
                context.verdict,
                matched.id if matched else None,
                processing_time=elapsed,
            )
        document_id = context.document.id if context.document else None
        return IngestionResult.processed(
            context.raw.filename, document_id, context.storage_key, processing_time=elapsed
        )

    def _resolve_conflict(self, context: IngestionContext, started: float) -> IngestionResult:
        """A concurrent writer won the unique index; report its row as the match."""
        filename = context.raw.filename
        Log.warning(
            "Unique constraint hit on insert, re-checking duplicates",
            tenant_id=context.tenant_id,
            filename=filename,
            orphaned_key=context.storage_key,
        )
        try:
            verdict = self._detector.check(context.tenant_id, require_candidate(context))
        except DuplicateCheckError as exc:
            return IngestionResult.failure(
                filename, str(exc), processing_time=time.perf_counter() - started
            )
        context.verdict = verdict
        if not verdict.is_duplicate:
            return IngestionResult.failure(
                filename,
                "failed to save document: uniqueness conflict without a matching document",
                processing_time=time.perf_counter() - started,
            )
        return self._context_result(context, started)

    def _write_pending(
        self,
        tenant_id: int,
        documents: Sequence[RawDocument],
        pending: list[_PendingWrite],
        results: list[IngestionResult | None],
    ) -> None:
        if not pending:
            return

        written: list[str] = []
        try:
            for write in pending:
                self._blob_store.upload(
                    self._bucket,
                    write.document.storage_key,
                    write.candidate.xml.encode("utf-8"),
                    XML_CONTENT_TYPE,
                )
                written.append(write.document.storage_key)
        except BlobStoreError as exc:
            Log.error(
                "Failed to batch upload to storage",
                tenant_id=tenant_id,
                error=str(exc),
                orphaned_keys=written,
            )
            for write in pending:
                results[write.index] = IngestionResult.failure(
                    documents[write.index].filename, f"failed to store XML: {exc}"
                )
            return

        try:
            inserted = self._repository.insert_many([w.document for w in pending])
        except DuplicateDocumentError:
            Log.warning(
                "Batch insert hit a unique constraint, inserting one by one",
                tenant_id=tenant_id,
                documents_count=len(pending),
            )
            self._insert_individually(tenant_id, documents, pending, results)
            return
        except DocumentStoreError as exc:
            Log.error(
                "Failed to batch insert documents",
                tenant_id=tenant_id,
                error=str(exc),
                orphaned_keys=written,
            )
            for write in pending:
                results[write.index] = IngestionResult.failure(
                    documents[write.index].filename, f"failed to save document: {exc}"
                )
            return

        for write, document in zip(pending, inserted):
            results[write.index] = IngestionResult.processed(
                documents[write.index].filename, document.id, document.storage_key
            )

    def _insert_individually(
        self,
        tenant_id: int,
        documents: Sequence[RawDocument],
        pending: list[_PendingWrite],
        results: list[IngestionResult | None],
    ) -> None:
        for write in pending:
            filename = documents[write.index].filename
            try:
                document = self._repository.insert_one(write.document)
            except DuplicateDocumentError:
                results[write.index] = self._conflict_result(tenant_id, filename, write)
                continue
            except DocumentStoreError as exc:
                results[write.index] = IngestionResult.failure(
                    filename, f"failed to save document: {exc}"
                )
                continue
            results[write.index] = IngestionResult.processed(
                filename, document.id, document.storage_key
            )

    def _conflict_result(
        self, tenant_id: int, filename: str, write: _PendingWrite
    ) -> IngestionResult:
        try:
            verdict = self._detector.check(tenant_id, write.candidate)
        except DuplicateCheckError as exc:
            return IngestionResult.failure(filename, str(exc))
        if not verdict.is_duplicate:
            return IngestionResult.failure(
                filename,
                "failed to save document: uniqueness conflict without a matching document",
            )
        matched = verdict.matched_record
        return IngestionResult.duplicate(filename, verdict, matched.id if matched else None)

    @staticmethod
    def _repeat_result(
        index: int,
        verdict: DuplicateVerdict,
        results: list[IngestionResult | None],
        documents: Sequence[RawDocument],
    ) -> IngestionResult:
        """Result for a batch member that repeats an earlier member of the same batch."""
        filename = documents[index].filename
        original_index = verdict.matched_batch_index
        original = results[original_index] if original_index is not None else None
        if original is None or original.failed:
            reason = original.error if original else "not ingested"
            return IngestionResult.failure(
                filename, f"duplicate of an earlier batch document, which failed: {reason}"
            )
        return IngestionResult.duplicate(filename, verdict, original.document_id)


def build_orchestrator(settings: Settings) -> IngestionOrchestrator:
    """Build an IngestionOrchestrator with all required adapters."""
    repository = DocumentRepository()
    return IngestionOrchestrator(
        normalizer=EncodingNormalizer(),
        parser=NFSeParser(),
        detector=DuplicateDetector(repository),
        repository=repository,
        blob_store=BlobStoreFactory.create(settings),
        bucket=settings.blob_bucket,
    )
