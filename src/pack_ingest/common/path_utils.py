"""Path utilities for archive entry and storage paths."""

import unicodedata
from pathlib import PurePosixPath
from typing import List


def normalize_path(path: PurePosixPath | str) -> str:
    """
    Normalize an archive entry path for comparison and storage keys.

    Applies:
    - Unicode NFC normalization so composed and decomposed names compare equal
    - Forward slash conversion (archives written on Windows use backslashes)

    Args:
        path: Path object or string to normalize

    Returns:
        Normalized path string with forward slashes

    Examples:
        >>> normalize_path("Pack\\\\Fire\\\\before.mp4")
        'Pack/Fire/before.mp4'
    """
    normalized = unicodedata.normalize('NFC', str(path))
    return normalized.replace('\\', '/')


def split_segments(path: str) -> List[str]:
    """Split a normalized path into non-empty segments."""
    return [segment for segment in normalize_path(path).split('/') if segment]


def join_key(*parts: str) -> str:
    """Join storage key parts with single forward slashes."""
    return '/'.join(part.strip('/') for part in parts if part and part.strip('/'))
