class ExtractionError(Exception):
    """Raised when a compressed container cannot be decoded or opened."""
