"""Cursor table on Azure Table Storage."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import AzureError, ResourceExistsError
from azure.data.tables import EdmType, EntityProperty, TableServiceClient, UpdateMode
from azure.identity import DefaultAzureCredential

from blobtail.lib.cursors.base import BYTE_OFFSET, CursorEntry, CursorPage, CursorStore
from blobtail.lib.errors import ConfigurationError, CursorStoreError
from blobtail.lib.storage_config import get_config_value

logger = logging.getLogger(__name__)

__all__ = ["TableCursorStore"]

DEFAULT_PAGE_SIZE = 1000

# Table service limit on PartitionKey and RowKey size. Encoded keys grow by 4/3,
# so blob names longer than about 760 UTF-8 bytes cannot be tracked.
MAX_KEY_LENGTH = 1024


class TableCursorStore(CursorStore):
    """Cursor table on Azure Table Storage (the "sincedb").

    The state account can differ from the account holding the blobs, so
    credentials are configured separately from the object store.

    Environment Variables:
        AZURE_STATE_CONNECTION_STRING: Full connection string
        AZURE_STATE_ACCOUNT: Storage account name
        AZURE_STATE_KEY: Storage account key
        AZURE_STATE_TABLE_URL: Table endpoint for DefaultAzureCredential auth

    Options:
        connection_string, account_name, account_key, endpoint: override the
        environment
        page_size: Entities requested per query page
    """

    def __init__(
        self,
        table_name: str,
        client: Optional[TableServiceClient] = None,
        **options: Any,
    ) -> None:
        super().__init__(table_name)
        self.options = options
        self.page_size = int(options.get("page_size") or DEFAULT_PAGE_SIZE)
        self._service = client or self._build_client()
        self._table = self._service.get_table_client(table_name)

    def _build_client(self) -> TableServiceClient:
        """Build the TableServiceClient using the first available credential."""
        connection_string = get_config_value(
            self.options, "connection_string", "AZURE_STATE_CONNECTION_STRING"
        )
        if connection_string:
            logger.debug("Cursor table using connection string")
            return TableServiceClient.from_connection_string(connection_string)

        account = get_config_value(self.options, "account_name", "AZURE_STATE_ACCOUNT")
        key = get_config_value(self.options, "account_key", "AZURE_STATE_KEY")
        endpoint = get_config_value(self.options, "endpoint", "AZURE_STATE_TABLE_URL")
        if not endpoint and account:
            endpoint = f"https://{account}.table.core.windows.net"

        if endpoint and account and key:
            logger.debug("Cursor table using account key for %s", endpoint)
            return TableServiceClient(
                endpoint=endpoint, credential=AzureNamedKeyCredential(account, key)
            )

        if endpoint:
            logger.debug("Cursor table using DefaultAzureCredential for %s", endpoint)
            return TableServiceClient(endpoint=endpoint, credential=DefaultAzureCredential())

        raise ConfigurationError(
            "Cursor table needs a connection string, an account name or an endpoint",
            field="cursor_store",
            suggestion="Set cursor_store.connection_string or AZURE_STATE_CONNECTION_STRING",
        )

    def ensure_table(self) -> None:
        try:
            self._service.create_table(self.table_name)
            logger.info("Created cursor table %s", self.table_name)
        except ResourceExistsError:
            logger.info("Cursor table %s already exists", self.table_name)

    def query_page(
        self,
        partition_key: str,
        continuation_token: Optional[str] = None,
    ) -> CursorPage:
        # Table tokens are dicts (next PartitionKey/RowKey); carry them as JSON text
        token = json.loads(continuation_token) if continuation_token else None
        pager = self._table.query_entities(
            query_filter="PartitionKey eq @pk",
            parameters={"pk": partition_key},
            results_per_page=self.page_size,
        ).by_page(continuation_token=token)

        page = next(pager, None)
        entries = [CursorEntry.from_entity(entity) for entity in page] if page is not None else []

        next_token = pager.continuation_token
        return entries, json.dumps(next_token) if next_token else None

    def upsert(self, entry: CursorEntry) -> None:
        if len(entry.row_key) > MAX_KEY_LENGTH:
            raise CursorStoreError(
                f"Encoded blob name is {len(entry.row_key)} characters; table row keys allow {MAX_KEY_LENGTH}",
                container=entry.partition_key,
                blob_name=entry.blob_name,
                table=self.table_name,
                suggestion="Shorten the blob name or track this blob with the local cursor store",
            )
        entity: Dict[str, Any] = entry.to_entity()
        entity[BYTE_OFFSET] = EntityProperty(entry.byte_offset, EdmType.INT64)
        try:
            self._table.upsert_entity(entity=entity, mode=UpdateMode.MERGE)
        except AzureError as exc:
            raise CursorStoreError(
                "Cursor upsert failed",
                container=entry.partition_key,
                blob_name=entry.blob_name,
                table=self.table_name,
                cause=exc,
            ) from exc
