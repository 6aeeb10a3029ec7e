"""Storage error definitions."""

from ..common.errors import PackIngestError


class StorageError(PackIngestError):
    """A blob store operation failed."""
    pass


class BlobNotFoundError(StorageError):
    """The requested blob does not exist."""
    pass


class DocumentStoreError(PackIngestError):
    """A document store read failed."""
    pass


class CommitError(DocumentStoreError):
    """A batched write could not be committed; nothing was applied."""
    pass
