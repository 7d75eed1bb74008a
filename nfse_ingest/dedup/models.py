from dataclasses import dataclass
from enum import Enum

from nfse_ingest.database.models import PersistedDocument


class MatchStrategy(str, Enum):
    """Duplicate matching strategies, most authoritative first."""

    VERIFICATION_CODE = "verification_code"
    COMPOSITE_KEY = "composite_key"
    FINGERPRINT = "fingerprint"
    NONE = "none"


@dataclass(frozen=True)
class DuplicateVerdict:
    """Outcome of checking one candidate against a tenant's documents.

    `matched_batch_index` is set instead of `matched_record` when the match is
    an earlier, not yet persisted candidate of the same batch.
    """

    is_duplicate: bool
    strategy: MatchStrategy
    reason: str
    matched_record: PersistedDocument | None = None
    matched_batch_index: int | None = None

    @classmethod
    def not_duplicate(cls) -> "DuplicateVerdict":
        return cls(is_duplicate=False, strategy=MatchStrategy.NONE, reason="no duplicates found")
