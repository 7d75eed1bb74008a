from nfse_ingest.config.settings import Settings
from nfse_ingest.database.connection import apply_schema, close_pool, get_connection, init_pool
from nfse_ingest.database.repositories.job_repository import JobRepository
from nfse_ingest.fetch.client import NfseApiClient
from nfse_ingest.fetch.credentials import EnvCredentialProvider
from nfse_ingest.ingestion.orchestrator import build_orchestrator
from nfse_ingest.logging.logger import Log
from nfse_ingest.worker.job_runner import JobRunner
from nfse_ingest.worker.worker import Worker


def main() -> None:
    """Entry point: initialize pool -> apply schema -> build dependencies -> poll."""
    settings = Settings()
    Log.configure(settings.log_level)
    init_pool(settings)

    client = NfseApiClient(
        base_url=settings.nfse_api_base_url,
        timeout_seconds=settings.nfse_api_timeout_seconds,
    )
    try:
        with get_connection() as conn:
            apply_schema(conn)

        credentials = EnvCredentialProvider(settings)
        orchestrator = build_orchestrator(settings)
        job_repo = JobRepository(settings.max_job_attempts)
        job_runner = JobRunner(
            orchestrator, client, job_repo, lambda _tenant_id: credentials, settings
        )
        worker = Worker(job_repo, job_runner, settings)
        worker.run()
    finally:
        client.close()
        close_pool()


if __name__ == "__main__":
    main()
