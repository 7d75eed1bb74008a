class DocumentStoreError(Exception):
    """Raised when the relational store rejects or fails an operation."""


class DuplicateDocumentError(DocumentStoreError):
    """Raised when an insert violates a document uniqueness constraint."""
