from pathlib import Path

from nfse_ingest.storage.base import BaseBlobStore
from nfse_ingest.storage.exceptions import BlobStoreError


class LocalBlobStore(BaseBlobStore):
    """Writes blobs to `{root}/{bucket}/{key}` on the local filesystem."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        path = self.resolve(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise BlobStoreError(f"failed to write {path}: {exc}") from exc

    def resolve(self, bucket: str, key: str) -> Path:
        path = (self._root / bucket / key).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise BlobStoreError(f"key escapes storage root: {key}")
        return path
