from abc import ABC, abstractmethod
from dataclasses import dataclass

from nfse_ingest.database.models import PersistedDocument
from nfse_ingest.dedup.models import DuplicateVerdict
from nfse_ingest.parser.models import ParsedCandidate, RawDocument


@dataclass(slots=True)
class IngestionContext:
    tenant_id: int
    raw: RawDocument
    content: bytes | str = b""
    candidate: ParsedCandidate | None = None
    verdict: DuplicateVerdict | None = None
    storage_key: str = ""
    document: PersistedDocument | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.verdict is not None and self.verdict.is_duplicate


class PipelineStep(ABC):
    @abstractmethod
    def run(self, context: IngestionContext) -> IngestionContext:
        raise NotImplementedError
