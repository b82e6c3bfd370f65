"""Exception classes raised by the document store."""


class StoreError(Exception):
    """
    Base exception class for all document store errors.
    """
    pass


class DuplicateKeyError(StoreError):
    """
    Raised when an insert or update violates the _id key or a unique index.
    """
    pass


class InvalidDocumentError(StoreError):
    """
    Raised when a document holds a value the store cannot encode.
    """
    pass


class InvalidQueryError(StoreError):
    """
    Raised for malformed filters, projections, sorts or update documents.
    """
    pass


class IndexConflictError(StoreError):
    """
    Raised when an index name is reused with a different key pattern.
    """
    pass
