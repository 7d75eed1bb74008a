from collections.abc import Callable

from nfse_ingest.config.settings import Settings
from nfse_ingest.database.models import JobRecord
from nfse_ingest.database.repositories.job_repository import JobRepository
from nfse_ingest.fetch.client import NfseApiClient
from nfse_ingest.fetch.credentials import BaseCredentialProvider
from nfse_ingest.ingestion.models import BatchIngestionResult
from nfse_ingest.ingestion.orchestrator import IngestionOrchestrator
from nfse_ingest.logging.logger import Log

CredentialResolver = Callable[[int], BaseCredentialProvider]


class JobRunner:
    """Run one fetch job, catch exceptions, and apply retry logic."""

    def __init__(
        self,
        orchestrator: IngestionOrchestrator,
        client: NfseApiClient,
        job_repo: JobRepository,
        credential_resolver: CredentialResolver,
        settings: Settings,
    ) -> None:
        self._orchestrator = orchestrator
        self._client = client
        self._job_repo = job_repo
        self._credential_resolver = credential_resolver
        self._settings = settings

    def run(self, job: JobRecord) -> None:
        """Execute a single job with error handling."""
        Log.info("Running job", job_id=job.id, attempt=job.attempts + 1)
        try:
            summaries = self._fetch_and_ingest(job)
            self._job_repo.mark_done(job.id)
            Log.info(
                "Job completed successfully",
                job_id=job.id,
                pages=len(summaries),
                processed=sum(s.processed_documents for s in summaries),
                duplicates=sum(s.duplicate_documents for s in summaries),
                errors=sum(s.error_documents for s in summaries),
            )
        except Exception as exc:
            self._handle_failure(job, exc)

    def _fetch_and_ingest(self, job: JobRecord) -> list[BatchIngestionResult]:
        """Walk every page of the job's date range, ingesting each as it arrives."""
        credentials = self._credential_resolver(job.tenant_id)
        summaries: list[BatchIngestionResult] = []
        page = 1
        while True:
            envelope = self._client.fetch_page(
                credentials, job.start_date, job.end_date, page
            )
            summaries.append(self._orchestrator.ingest_envelope(job.tenant_id, envelope))
            if page >= envelope.page_count:
                return summaries
            page += 1

    def _handle_failure(self, job: JobRecord, exc: Exception) -> None:
        """Increment attempts; mark failed if at max, otherwise back to pending."""
        Log.error("Job failed", job_id=job.id, error=str(exc))
        if job.attempts + 1 >= self._settings.max_job_attempts:
            self._job_repo.mark_failed(job.id, str(exc))
            Log.error("Job permanently failed", job_id=job.id, attempts=job.attempts + 1)
        else:
            self._job_repo.increment_attempts(job.id)
            Log.warning("Job will be retried", job_id=job.id, attempt=job.attempts + 1)
