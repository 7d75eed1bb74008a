from pathlib import Path

from nfse_ingest.config.settings import Settings
from nfse_ingest.storage.base import BaseBlobStore
from nfse_ingest.storage.local_adapter import LocalBlobStore
from nfse_ingest.storage.s3_adapter import S3BlobStore


class BlobStoreFactory:
    """Creates the blob store selected by `blob_backend`."""

    BACKENDS = ("s3", "local")

    @classmethod
    def create(cls, settings: Settings) -> BaseBlobStore:
        backend = settings.blob_backend.lower()
        if backend == "s3":
            return S3BlobStore(
                endpoint_url=settings.s3_endpoint_url or None,
                region=settings.s3_region or None,
                access_key=settings.s3_access_key or None,
                secret_key=settings.s3_secret_key or None,
            )
        if backend == "local":
            return LocalBlobStore(Path(settings.blob_local_root))
        raise ValueError(
            f"Unknown blob backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
