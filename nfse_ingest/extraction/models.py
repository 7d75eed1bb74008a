from dataclasses import dataclass, field

from nfse_ingest.parser.models import RawDocument


@dataclass(frozen=True)
class ContainerFailure:
    """A fetch entry whose container could not be extracted."""

    entry_number: int
    error: str


@dataclass
class ExtractionOutcome:
    documents: list[RawDocument] = field(default_factory=list)
    failures: list[ContainerFailure] = field(default_factory=list)
