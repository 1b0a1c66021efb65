"""Object store abstraction for blob-tail.

Provides a unified listing and range-read interface over different
backends: Azure Blob Storage, AWS S3 (or compatible), and a local directory.

Usage:
    from blobtail.lib.storage import get_object_store

    store = get_object_store({"type": "azure", "connection_string": "${AZURE_STORAGE_CONNECTION_STRING}"})
    store = get_object_store({"type": "s3", "region": "eu-west-1"})
    store = get_object_store({"type": "local", "root": "./data/blobs"})
"""

from __future__ import annotations

from typing import Any, Dict

from blobtail.lib.errors import ConfigurationError
from blobtail.lib.storage.base import ObjectDescriptor, ObjectPage, ObjectStore
from blobtail.lib.storage.local import LocalObjectStore

__all__ = [
    "ObjectDescriptor",
    "ObjectPage",
    "ObjectStore",
    "LocalObjectStore",
    "get_object_store",
]


def get_object_store(options: Dict[str, Any]) -> ObjectStore:
    """Build the object store described by a ``store`` config section.

    Cloud SDKs are imported lazily so a local run does not need them.

    Args:
        options: Store options; ``type`` selects the backend and the rest
            are passed to its constructor

    Returns:
        ObjectStore instance for the selected backend
    """
    options = dict(options)
    store_type = options.pop("type", "azure")

    if store_type == "azure":
        from blobtail.lib.storage.azure import AzureBlobObjectStore

        return AzureBlobObjectStore(**options)
    elif store_type == "s3":
        from blobtail.lib.storage.s3 import S3ObjectStore

        return S3ObjectStore(**options)
    elif store_type == "local":
        root = options.pop("root", None)
        if not root:
            raise ConfigurationError("store.root is required for local storage", field="store.root")
        return LocalObjectStore(root, **options)

    raise ConfigurationError(
        f"Unsupported store type: '{store_type}'. Use 'azure', 's3' or 'local'",
        field="store.type",
        value=store_type,
    )
