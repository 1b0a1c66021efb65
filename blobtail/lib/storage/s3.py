"""S3-compatible object store."""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Any, Dict, Iterator, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from blobtail.lib.errors import BlobReadError
from blobtail.lib.storage.base import ObjectDescriptor, ObjectPage, ObjectStore
from blobtail.lib.storage_config import get_config_value

logger = logging.getLogger(__name__)

__all__ = ["S3ObjectStore"]

DEFAULT_PAGE_SIZE = 1000
DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


class S3ObjectStore(ObjectStore):
    """S3-compatible object store using boto3.

    Supports AWS S3, MinIO, and any S3-compatible object storage. The
    container is the bucket name.

    Environment Variables:
        AWS_ACCESS_KEY_ID: AWS access key
        AWS_SECRET_ACCESS_KEY: AWS secret key
        AWS_REGION: AWS region
        AWS_ENDPOINT_URL: Custom S3 endpoint (for MinIO, LocalStack, etc.)

    Options:
        key, secret, region, endpoint_url: override the environment
        page_size: Keys requested per listing page (max 1000)
    """

    def __init__(self, client: Optional[Any] = None, **options: Any) -> None:
        super().__init__(**options)
        self.page_size = int(options.get("page_size") or DEFAULT_PAGE_SIZE)
        self.chunk_size = int(options.get("chunk_size") or DEFAULT_CHUNK_SIZE)
        self.client = client or self._build_client()

    @property
    def scheme(self) -> str:
        return "s3"

    def _build_client(self) -> Any:
        endpoint_url = get_config_value(self.options, "endpoint_url", "AWS_ENDPOINT_URL")
        access_key = get_config_value(self.options, "key", "AWS_ACCESS_KEY_ID")
        secret_key = get_config_value(self.options, "secret", "AWS_SECRET_ACCESS_KEY")
        region = get_config_value(self.options, "region", "AWS_REGION")

        session_kwargs: Dict[str, Any] = {}
        if access_key and secret_key:
            session_kwargs["aws_access_key_id"] = access_key
            session_kwargs["aws_secret_access_key"] = secret_key
        if region:
            session_kwargs["region_name"] = region

        client = boto3.client("s3", endpoint_url=endpoint_url or None, **session_kwargs)
        logger.debug("Created S3 client with endpoint: %s", endpoint_url or "default")
        return client

    def list_objects(
        self,
        container: str,
        prefix: str = "",
        continuation_token: Optional[str] = None,
    ) -> ObjectPage:
        """Fetch one ``ListObjectsV2`` page from the bucket."""
        params: Dict[str, Any] = {
            "Bucket": container,
            "Prefix": prefix,
            "MaxKeys": self.page_size,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        response = self.client.list_objects_v2(**params)

        objects = []
        for item in response.get("Contents", []):
            last_modified = item["LastModified"]
            if last_modified.tzinfo is None:
                last_modified = last_modified.replace(tzinfo=timezone.utc)
            objects.append(
                ObjectDescriptor(
                    name=item["Key"],
                    size=int(item["Size"]),
                    etag=item.get("ETag", ""),
                    last_modified=last_modified,
                )
            )

        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return objects, next_token

    def read_range(
        self,
        container: str,
        name: str,
        start: int,
        end: int,
    ) -> Iterator[bytes]:
        """Fetch bytes ``[start, end)`` with an HTTP Range request."""
        try:
            response = self.client.get_object(
                Bucket=container, Key=name, Range=f"bytes={start}-{end - 1}"
            )
            body = response["Body"]
            for chunk in iter(lambda: body.read(self.chunk_size), b""):
                yield chunk
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 range read failed [%s/%s]: %s", container, name, exc)
            raise BlobReadError(
                "Ranged get_object failed",
                container=container,
                blob_name=name,
                start=start,
                end=end,
                cause=exc,
            ) from exc
