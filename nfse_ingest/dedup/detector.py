from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from nfse_ingest.database.exceptions import DocumentStoreError
from nfse_ingest.database.models import DeduplicationStatistics, PersistedDocument
from nfse_ingest.database.repositories.base import BaseDocumentRepository
from nfse_ingest.dedup.exceptions import DuplicateCheckError
from nfse_ingest.dedup.models import DuplicateVerdict, MatchStrategy
from nfse_ingest.logging.logger import Log
from nfse_ingest.parser.models import ParsedCandidate

CompositeKey = tuple[str, str, str]


def composite_key(number: str, provider_tax_id: str, issue_date: datetime) -> CompositeKey | None:
    """(number, provider, issue day); None when number or provider is blank."""
    if not number or not provider_tax_id:
        return None
    return (number, provider_tax_id, issue_date.date().isoformat())


@dataclass(frozen=True)
class _Match:
    record: PersistedDocument | None = None
    batch_index: int | None = None


class _LookupMaps:
    """In-memory index over existing rows and already-accepted batch candidates."""

    def __init__(self) -> None:
        self.by_code: dict[str, _Match] = {}
        self.by_composite: dict[CompositeKey, _Match] = {}
        self.by_fingerprint: dict[str, _Match] = {}

    def add(
        self,
        match: _Match,
        verification_code: str,
        key: CompositeKey | None,
        fingerprint: str,
    ) -> None:
        # First registration wins: rows arrive ordered by id, then candidates.
        if verification_code:
            self.by_code.setdefault(verification_code, match)
        if key is not None:
            self.by_composite.setdefault(key, match)
        if fingerprint:
            self.by_fingerprint.setdefault(fingerprint, match)


class DuplicateDetector:
    """Decides whether candidates already exist for a tenant.

    Strategies are tried in order and the first match wins:
    verification code, then (number, provider, issue day), then fingerprint.
    """

    def __init__(self, repository: BaseDocumentRepository) -> None:
        self._repository = repository

    def check(self, tenant_id: int, candidate: ParsedCandidate) -> DuplicateVerdict:
        """Check one candidate with up to three targeted lookups.

        Raises:
            DuplicateCheckError: if a lookup fails.
        """
        Log.debug(
            "Starting duplicate check",
            tenant_id=tenant_id,
            verification_code=candidate.verification_code,
            number=candidate.number,
        )
        try:
            verdict = self._check(tenant_id, candidate)
        except DocumentStoreError as exc:
            raise DuplicateCheckError(f"failed to check duplicates: {exc}") from exc

        if verdict.is_duplicate and verdict.matched_record is not None:
            Log.info(
                "Duplicate found",
                tenant_id=tenant_id,
                strategy=verdict.strategy.value,
                existing_id=verdict.matched_record.id,
            )
        return verdict

    def _check(self, tenant_id: int, candidate: ParsedCandidate) -> DuplicateVerdict:
        if candidate.verification_code:
            existing = self._repository.find_by_verification_code(
                tenant_id, candidate.verification_code
            )
            if existing is not None:
                return self._code_verdict(candidate, _Match(record=existing))

        key = composite_key(
            candidate.number, candidate.provider_tax_id, candidate.issue_date
        )
        if key is not None:
            existing = self._repository.find_by_composite_key(
                tenant_id,
                candidate.number,
                candidate.provider_tax_id,
                candidate.issue_date.date(),
            )
            if existing is not None:
                return self._composite_verdict(key, _Match(record=existing))

        if candidate.fingerprint:
            existing = self._repository.find_by_fingerprint(
                tenant_id, candidate.fingerprint
            )
            if existing is not None:
                return self._fingerprint_verdict(candidate, _Match(record=existing))

        return DuplicateVerdict.not_duplicate()

    def check_batch(
        self, tenant_id: int, candidates: Sequence[ParsedCandidate]
    ) -> list[DuplicateVerdict]:
        """Check many candidates with a single round trip to the store.

        Verdicts are returned in candidate order. A candidate that repeats an
        earlier candidate of the same batch is reported as a duplicate of it.

        Raises:
            DuplicateCheckError: if the batch lookup fails.
        """
        if not candidates:
            return []

        Log.info(
            "Starting batch duplicate check",
            tenant_id=tenant_id,
            documents_count=len(candidates),
        )

        codes = sorted({c.verification_code for c in candidates if c.verification_code})
        numbers = sorted({c.number for c in candidates if c.number})
        fingerprints = sorted({c.fingerprint for c in candidates if c.fingerprint})

        try:
            existing = self._repository.find_matching(
                tenant_id, codes, numbers, fingerprints
            )
        except DocumentStoreError as exc:
            raise DuplicateCheckError(f"failed to batch check duplicates: {exc}") from exc

        maps = _LookupMaps()
        for record in existing:
            maps.add(
                _Match(record=record),
                record.verification_code,
                composite_key(record.number, record.provider_tax_id, record.issue_date),
                record.fingerprint,
            )

        verdicts: list[DuplicateVerdict] = []
        for index, candidate in enumerate(candidates):
            key = composite_key(
                candidate.number, candidate.provider_tax_id, candidate.issue_date
            )
            verdict = self._probe(maps, candidate, key)
            if not verdict.is_duplicate:
                maps.add(
                    _Match(batch_index=index),
                    candidate.verification_code,
                    key,
                    candidate.fingerprint,
                )
            verdicts.append(verdict)

        Log.info(
            "Completed batch duplicate check",
            tenant_id=tenant_id,
            documents_count=len(candidates),
            existing_matches=len(existing),
            duplicates_found=sum(1 for v in verdicts if v.is_duplicate),
        )
        return verdicts

    def statistics(self, tenant_id: int, days: int) -> DeduplicationStatistics:
        try:
            return self._repository.statistics(tenant_id, days)
        except DocumentStoreError as exc:
            raise DuplicateCheckError(f"failed to get duplicate statistics: {exc}") from exc

    def _probe(
        self, maps: _LookupMaps, candidate: ParsedCandidate, key: CompositeKey | None
    ) -> DuplicateVerdict:
        if candidate.verification_code:
            match = maps.by_code.get(candidate.verification_code)
            if match is not None:
                return self._code_verdict(candidate, match)
        if key is not None:
            match = maps.by_composite.get(key)
            if match is not None:
                return self._composite_verdict(key, match)
        if candidate.fingerprint:
            match = maps.by_fingerprint.get(candidate.fingerprint)
            if match is not None:
                return self._fingerprint_verdict(candidate, match)
        return DuplicateVerdict.not_duplicate()

    @staticmethod
    def _code_verdict(candidate: ParsedCandidate, match: _Match) -> DuplicateVerdict:
        return DuplicateVerdict(
            is_duplicate=True,
            strategy=MatchStrategy.VERIFICATION_CODE,
            reason=f"matching verification code: {candidate.verification_code}",
            matched_record=match.record,
            matched_batch_index=match.batch_index,
        )

    @staticmethod
    def _composite_verdict(key: CompositeKey, match: _Match) -> DuplicateVerdict:
        number, provider, day = key
        return DuplicateVerdict(
            is_duplicate=True,
            strategy=MatchStrategy.COMPOSITE_KEY,
            reason=f"matching number: {number}, provider: {provider}, date: {day}",
            matched_record=match.record,
            matched_batch_index=match.batch_index,
        )

    @staticmethod
    def _fingerprint_verdict(
        candidate: ParsedCandidate, match: _Match
    ) -> DuplicateVerdict:
        return DuplicateVerdict(
            is_duplicate=True,
            strategy=MatchStrategy.FINGERPRINT,
            reason=f"matching document fingerprint: {candidate.fingerprint}",
            matched_record=match.record,
            matched_batch_index=match.batch_index,
        )
