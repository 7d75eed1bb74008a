from abc import ABC, abstractmethod


class BaseBlobStore(ABC):
    """Contract for all blob storage adapters."""

    @abstractmethod
    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        """Store `data` under `bucket`/`key`, replacing any existing object.

        Raises:
            BlobStoreError: if the object cannot be written.
        """
