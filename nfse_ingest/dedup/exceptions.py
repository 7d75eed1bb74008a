class DuplicateCheckError(Exception):
    """Raised when existing documents cannot be looked up."""
