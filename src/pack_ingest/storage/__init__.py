"""Blob and document storage backends."""

from .blob_store import BlobStore, LocalBlobStore, S3BlobStore
from .document_store import Document, DocumentStore, SQLiteDocumentStore, WriteBatch
from .errors import BlobNotFoundError, CommitError, DocumentStoreError, StorageError

__all__ = [
    'BlobStore',
    'LocalBlobStore',
    'S3BlobStore',
    'Document',
    'DocumentStore',
    'SQLiteDocumentStore',
    'WriteBatch',
    'BlobNotFoundError',
    'CommitError',
    'DocumentStoreError',
    'StorageError',
]
