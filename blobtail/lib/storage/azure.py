"""Azure Blob Storage object store."""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Any, Iterator, Optional

from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobProperties, BlobServiceClient

from blobtail.lib.errors import BlobReadError, ConfigurationError
from blobtail.lib.storage.base import ObjectDescriptor, ObjectPage, ObjectStore
from blobtail.lib.storage_config import get_config_value

logger = logging.getLogger(__name__)

__all__ = ["AzureBlobObjectStore"]

DEFAULT_PAGE_SIZE = 5000


class AzureBlobObjectStore(ObjectStore):
    """Azure Blob Storage object store.

    Lists blobs page by page with the SDK's continuation tokens and reads
    byte ranges with ranged downloads.

    Example:
        >>> store = AzureBlobObjectStore(connection_string="${AZURE_STORAGE_CONNECTION_STRING}")
        >>> objects, token = store.list_objects("insights-logs", "resourceId=/")

    Environment Variables:
        AZURE_STORAGE_CONNECTION_STRING: Full connection string
        AZURE_STORAGE_ACCOUNT: Storage account name
        AZURE_STORAGE_KEY: Storage account key
        AZURE_STORAGE_ACCOUNT_URL: Account URL for DefaultAzureCredential auth

    Options:
        connection_string: Full connection string
        account_name: Storage account name
        account_key: Storage account key
        account_url: Blob endpoint (defaults to the public cloud endpoint)
        page_size: Blobs requested per listing page
        timeout: Per-request server timeout in seconds
    """

    def __init__(
        self,
        client: Optional[BlobServiceClient] = None,
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.page_size = int(options.get("page_size") or DEFAULT_PAGE_SIZE)
        self.timeout = int(options.get("timeout") or 10)
        self._client = client or self._build_client()

    @property
    def scheme(self) -> str:
        return "azure"

    def _build_client(self) -> BlobServiceClient:
        """Build the BlobServiceClient using the first available credential."""
        connection_string = get_config_value(
            self.options, "connection_string", "AZURE_STORAGE_CONNECTION_STRING"
        )
        if connection_string:
            logger.debug("Azure blob store using connection string")
            return BlobServiceClient.from_connection_string(connection_string)

        account = get_config_value(self.options, "account_name", "AZURE_STORAGE_ACCOUNT")
        key = get_config_value(self.options, "account_key", "AZURE_STORAGE_KEY")
        account_url = get_config_value(
            self.options, "account_url", "AZURE_STORAGE_ACCOUNT_URL"
        )
        if not account_url and account:
            account_url = f"https://{account}.blob.core.windows.net"

        if account_url and key:
            logger.debug("Azure blob store using account key for %s", account_url)
            return BlobServiceClient(account_url=account_url, credential=key)

        if account_url:
            logger.debug("Azure blob store using DefaultAzureCredential for %s", account_url)
            return BlobServiceClient(
                account_url=account_url, credential=DefaultAzureCredential()
            )

        raise ConfigurationError(
            "Azure blob store needs a connection string, an account name or an account URL",
            field="store",
            suggestion="Set store.connection_string or AZURE_STORAGE_CONNECTION_STRING",
        )

    @staticmethod
    def _describe(blob: BlobProperties) -> ObjectDescriptor:
        last_modified = blob.last_modified
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)
        return ObjectDescriptor(
            name=blob.name,
            size=int(blob.size or 0),
            etag=blob.etag or "",
            last_modified=last_modified,
        )

    def list_objects(
        self,
        container: str,
        prefix: str = "",
        continuation_token: Optional[str] = None,
    ) -> ObjectPage:
        """Fetch one listing page from the container."""
        container_client = self._client.get_container_client(container)
        pager = container_client.list_blobs(
            name_starts_with=prefix or None,
            results_per_page=self.page_size,
            timeout=self.timeout,
        ).by_page(continuation_token=continuation_token or None)

        page = next(pager, None)
        objects = [self._describe(blob) for blob in page] if page is not None else []
        logger.debug(
            "Listed %d blobs in %s with prefix '%s'", len(objects), container, prefix
        )
        return objects, pager.continuation_token

    def read_range(
        self,
        container: str,
        name: str,
        start: int,
        end: int,
    ) -> Iterator[bytes]:
        """Download bytes ``[start, end)`` of a blob, yielding SDK chunks."""
        container_client = self._client.get_container_client(container)
        try:
            downloader = container_client.download_blob(
                name, offset=start, length=end - start, timeout=self.timeout
            )
            yield from downloader.chunks()
        except AzureError as exc:
            logger.error("Azure range read failed [%s/%s]: %s", container, name, exc)
            raise BlobReadError(
                "Ranged download failed",
                container=container,
                blob_name=name,
                start=start,
                end=end,
                cause=exc,
            ) from exc
