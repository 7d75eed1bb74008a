from nfse_ingest.dedup.detector import DuplicateDetector
from nfse_ingest.dedup.exceptions import DuplicateCheckError
from nfse_ingest.dedup.models import DuplicateVerdict, MatchStrategy

__all__ = ["DuplicateCheckError", "DuplicateDetector", "DuplicateVerdict", "MatchStrategy"]
