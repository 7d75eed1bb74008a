class BlobStoreError(Exception):
    """Raised when a blob cannot be written to the configured store."""
