class DocumentStoreError(Exception):
    """Base exception for document store operations."""
    pass


class DocumentExistsError(DocumentStoreError):
    """Raised when inserting a key that is already present."""
    pass


class DocumentMissingError(DocumentStoreError):
    """Raised when replacing a key that is not present."""
    pass


class CasMismatchError(DocumentStoreError):
    """Raised when a conditional write loses against a concurrent writer."""
    pass


class StoreTimeoutError(DocumentStoreError):
    """Raised when the store does not answer within the caller-side timeout."""
    pass
