from collections.abc import Callable
from datetime import datetime

from nfse_ingest.database.models import PersistedDocument
from nfse_ingest.database.repositories.base import BaseDocumentRepository
from nfse_ingest.dedup.detector import DuplicateDetector
from nfse_ingest.encoding.normalizer import EncodingNormalizer
from nfse_ingest.ingestion.pipeline import IngestionContext, PipelineStep
from nfse_ingest.logging.logger import Log
from nfse_ingest.parser.models import ParsedCandidate
from nfse_ingest.parser.parser import NFSeParser
from nfse_ingest.storage.base import BaseBlobStore
from nfse_ingest.storage.path_builder import build_storage_key, normalize_competence

XML_CONTENT_TYPE = "application/xml"


def require_candidate(context: IngestionContext) -> ParsedCandidate:
    if context.candidate is None:
        raise ValueError("IngestionContext.candidate must be set before this step")
    return context.candidate


def build_document(
    context: IngestionContext, processed_at: datetime
) -> PersistedDocument:
    candidate = require_candidate(context)
    return PersistedDocument.from_candidate(
        candidate,
        tenant_id=context.tenant_id,
        storage_key=context.storage_key,
        competence_period=normalize_competence(candidate.competence, candidate.issue_date),
        processed_at=processed_at,
    )


class NormalizeEncodingStep(PipelineStep):
    def __init__(self, normalizer: EncodingNormalizer) -> None:
        self._normalizer = normalizer

    def run(self, context: IngestionContext) -> IngestionContext:
        context.content = self._normalizer.normalize(context.raw.content)
        return context


class ParseStep(PipelineStep):
    def __init__(self, parser: NFSeParser) -> None:
        self._parser = parser

    def run(self, context: IngestionContext) -> IngestionContext:
        context.candidate = self._parser.parse(context.content)
        return context


class CheckDuplicateStep(PipelineStep):
    def __init__(self, detector: DuplicateDetector) -> None:
        self._detector = detector

    def run(self, context: IngestionContext) -> IngestionContext:
        context.verdict = self._detector.check(
            context.tenant_id, require_candidate(context)
        )
        return context


class BuildStorageKeyStep(PipelineStep):
    def run(self, context: IngestionContext) -> IngestionContext:
        context.storage_key = build_storage_key(
            require_candidate(context), context.raw.filename
        )
        return context


class UploadBlobStep(PipelineStep):
    def __init__(self, blob_store: BaseBlobStore, bucket: str) -> None:
        self._blob_store = blob_store
        self._bucket = bucket

    def run(self, context: IngestionContext) -> IngestionContext:
        candidate = require_candidate(context)
        self._blob_store.upload(
            self._bucket,
            context.storage_key,
            candidate.xml.encode("utf-8"),
            XML_CONTENT_TYPE,
        )
        Log.debug("Stored XML", bucket=self._bucket, storage_key=context.storage_key)
        return context


class PersistDocumentStep(PipelineStep):
    def __init__(
        self,
        repository: BaseDocumentRepository,
        clock: Callable[[], datetime],
    ) -> None:
        self._repository = repository
        self._clock = clock

    def run(self, context: IngestionContext) -> IngestionContext:
        document = build_document(context, self._clock())
        context.document = self._repository.insert_one(document)
        return context
