import time

import psycopg

from nfse_ingest.config.settings import Settings
from nfse_ingest.database.connection import get_connection
from nfse_ingest.database.models import JobRecord
from nfse_ingest.database.repositories.job_repository import JobRepository
from nfse_ingest.logging.logger import Log
from nfse_ingest.worker.job_runner import JobRunner


class Worker:
    """Poll loop: sleep -> claim -> dispatch."""

    def __init__(
        self,
        job_repo: JobRepository,
        job_runner: JobRunner,
        settings: Settings,
    ) -> None:
        self._job_repo = job_repo
        self._job_runner = job_runner
        self._settings = settings

    def run(self, max_jobs: int | None = None) -> None:
        """Poll until interrupted, or until max_jobs jobs have run."""
        Log.info("Worker started, polling for fetch jobs")
        jobs_done = 0
        try:
            while max_jobs is None or jobs_done < max_jobs:
                job = self._try_claim_job()
                if job is None:
                    Log.debug("No jobs available, sleeping")
                    time.sleep(self._settings.job_poll_interval_seconds)
                    continue
                self._job_runner.run(job)
                jobs_done += 1
        except KeyboardInterrupt:
            Log.info("Worker shutting down gracefully")

    def _try_claim_job(self) -> JobRecord | None:
        """Claim the next pending job; database errors are logged and retried."""
        try:
            with get_connection() as conn:
                return self._job_repo.claim_next_job(conn)
        except (psycopg.Error, RuntimeError) as exc:
            Log.warning("Database error, will retry", error=str(exc))
            return None
