class FetchError(Exception):
    """Raised when the municipal API cannot be queried or answers badly."""
