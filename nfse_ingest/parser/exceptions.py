class DocumentParseError(Exception):
    """Raised when an NFS-e document cannot be parsed."""
