"""blob-tail: incremental ingestion of append-only log blobs."""

__version__ = "0.1.0"
