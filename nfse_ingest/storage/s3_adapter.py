from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from nfse_ingest.storage.base import BaseBlobStore
from nfse_ingest.storage.exceptions import BlobStoreError


class S3BlobStore(BaseBlobStore):
    """S3-compatible blob store (AWS S3 or MinIO through `endpoint_url`)."""

    def __init__(
        self,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
    ) -> None:
        client_kwargs: dict[str, Any] = {}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if region:
            client_kwargs["region_name"] = region
        if access_key:
            client_kwargs["aws_access_key_id"] = access_key
        if secret_key:
            client_kwargs["aws_secret_access_key"] = secret_key
        self._client = boto3.client("s3", **client_kwargs)

    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"failed to upload {bucket}/{key}: {exc}") from exc
