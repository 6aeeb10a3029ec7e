"""Ingestion error definitions and error classification."""

import errno
import subprocess

from ..common.errors import PackIngestError, ToolNotFoundError
from ..storage.errors import CommitError, StorageError


class ArchiveError(PackIngestError):
    """Base exception for archive reading errors."""
    pass


class CorruptArchiveError(ArchiveError):
    """The archive's structural metadata cannot be parsed. Fatal for the job."""
    pass


class UnsupportedArchiveError(ArchiveError):
    """The archive container format is not recognized."""
    pass


class EntryReadError(ArchiveError):
    """One entry's bytes could not be read. Soft failure for that entry."""
    pass


class InsufficientScratchSpaceError(PackIngestError):
    """Not enough local scratch space to stage an entry."""
    pass


class PackNotFoundError(PackIngestError):
    """No pack record exists with the given identifier."""
    pass


def classify_error(error: Exception) -> str:
    """
    Classify an exception into a short category for reporting.

    Args:
        error: Exception to classify

    Returns:
        One of: corrupt_archive, unsupported_archive, entry_read, tool_missing,
        tool_timeout, scratch_space, storage, commit, permission, io, unknown
    """
    if isinstance(error, CorruptArchiveError):
        return 'corrupt_archive'
    if isinstance(error, UnsupportedArchiveError):
        return 'unsupported_archive'
    if isinstance(error, EntryReadError):
        return 'entry_read'
    if isinstance(error, ToolNotFoundError):
        return 'tool_missing'
    if isinstance(error, subprocess.TimeoutExpired):
        return 'tool_timeout'
    if isinstance(error, InsufficientScratchSpaceError):
        return 'scratch_space'
    if isinstance(error, CommitError):
        return 'commit'
    if isinstance(error, StorageError):
        return 'storage'
    if isinstance(error, PermissionError):
        return 'permission'
    if isinstance(error, OSError):
        if getattr(error, 'errno', None) == errno.ENOSPC:
            return 'scratch_space'
        return 'io'
    return 'unknown'
