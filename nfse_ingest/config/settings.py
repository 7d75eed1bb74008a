from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_database: str = "nfse"
    db_username: str = "nfse"
    db_password: str = "secret"

    max_job_attempts: int = 3
    job_poll_interval_seconds: int = 5

    blob_backend: str = "s3"
    blob_bucket: str = "nfse-storage"
    blob_local_root: str = "/app/storage"

    s3_endpoint_url: str = ""
    s3_region: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""

    nfse_api_base_url: str = (
        "https://api-nfse-imperatriz-ma.prefeituramoderna.com.br/ws/services/xmlnfse"
    )
    nfse_api_timeout_seconds: int = 30
    nfse_api_login: str = ""
    nfse_api_password: str = ""
    nfse_api_token: str = ""
