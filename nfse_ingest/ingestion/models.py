from collections.abc import Sequence
from dataclasses import dataclass, field

from nfse_ingest.dedup.models import DuplicateVerdict


@dataclass(frozen=True)
class IngestionResult:
    """Outcome of ingesting one raw document."""

    filename: str
    success: bool = False
    is_duplicate: bool = False
    document_id: int | None = None
    storage_key: str = ""
    verdict: DuplicateVerdict | None = None
    error: str | None = None
    processing_time: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def processed(
        cls,
        filename: str,
        document_id: int | None,
        storage_key: str,
        processing_time: float = 0.0,
    ) -> "IngestionResult":
        return cls(
            filename=filename,
            success=True,
            document_id=document_id,
            storage_key=storage_key,
            processing_time=processing_time,
        )

    @classmethod
    def duplicate(
        cls,
        filename: str,
        verdict: DuplicateVerdict,
        document_id: int | None,
        processing_time: float = 0.0,
    ) -> "IngestionResult":
        return cls(
            filename=filename,
            is_duplicate=True,
            document_id=document_id,
            verdict=verdict,
            processing_time=processing_time,
        )

    @classmethod
    def failure(
        cls, filename: str, error: str, processing_time: float = 0.0
    ) -> "IngestionResult":
        return cls(filename=filename, error=error, processing_time=processing_time)


@dataclass(frozen=True)
class BatchIngestionResult:
    """Counts and per-index outcomes of one batch invocation."""

    total_documents: int = 0
    processed_documents: int = 0
    duplicate_documents: int = 0
    error_documents: int = 0
    processing_time: float = 0.0
    results: list[IngestionResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Percentage of documents newly persisted."""
        if self.total_documents == 0:
            return 0.0
        return self.processed_documents / self.total_documents * 100

    @classmethod
    def from_results(
        cls, results: Sequence[IngestionResult], processing_time: float
    ) -> "BatchIngestionResult":
        return cls(
            total_documents=len(results),
            processed_documents=sum(1 for r in results if r.success),
            duplicate_documents=sum(1 for r in results if r.is_duplicate),
            error_documents=sum(1 for r in results if r.failed),
            processing_time=processing_time,
            results=list(results),
        )
