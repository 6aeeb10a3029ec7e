"""Entry classification against a category's allow-list.

Pure functions only: nothing here touches storage or the filesystem.
"""

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .categories import Category, TABLE_EXTENSION, TABLE_FOLDER_NAME, VIDEO_EXTENSIONS
from ..common.path_utils import normalize_path

# Prefix macOS uses for AppleDouble resource-fork files
SHADOW_PREFIX = '._'
# Folder macOS Archive Utility adds alongside the real content
SHADOW_FOLDER = '__MACOSX'


class EntryRole(Enum):
    """What an accepted entry becomes."""

    MEDIA = 'media'        # overlay or sound effect
    TABLE = 'table'        # lookup-table file
    PREVIEW = 'preview'    # before/after clip of a lookup-table pack


class SkipReason(Enum):
    DIRECTORY = 'directory'
    SHADOW_FILE = 'shadow_file'
    UNSUPPORTED_EXTENSION = 'unsupported_extension'
    OUTSIDE_TABLE_FOLDER = 'outside_table_folder'


@dataclass(frozen=True)
class Accept:
    path: str
    extension: str
    base_name: str
    role: EntryRole


@dataclass(frozen=True)
class Skip:
    path: str
    reason: SkipReason


Classification = Union[Accept, Skip]


def is_shadow_path(path: str) -> bool:
    """True if any segment of ``path`` is a resource-fork shadow name."""
    for segment in normalize_path(path).split('/'):
        if segment.startswith(SHADOW_PREFIX) or segment == SHADOW_FOLDER:
            return True
    return False


def in_table_folder(path: str) -> bool:
    """True if some enclosing folder is named 'cube' (any case)."""
    folders = normalize_path(path).split('/')[:-1]
    return any(folder.lower() == TABLE_FOLDER_NAME for folder in folders)


def classify_entry(path: str, category: Category, is_dir: bool = False) -> Classification:
    """Classify one archive entry.

    Args:
        path: Entry path relative to the archive root
        category: Active pack category
        is_dir: Whether the container marks the entry as a directory

    Returns:
        Accept with the lower-cased extension and the file's base name,
        or Skip with the reason
    """
    normalized = normalize_path(path)

    if is_dir or normalized.endswith('/'):
        return Skip(normalized, SkipReason.DIRECTORY)

    if is_shadow_path(normalized):
        return Skip(normalized, SkipReason.SHADOW_FILE)

    base_name = posixpath.basename(normalized)
    extension = posixpath.splitext(base_name)[1].lower()

    if category is Category.LUTS:
        if extension == TABLE_EXTENSION:
            if not in_table_folder(normalized):
                return Skip(normalized, SkipReason.OUTSIDE_TABLE_FOLDER)
            return Accept(normalized, extension, base_name, EntryRole.TABLE)
        if extension in VIDEO_EXTENSIONS:
            return Accept(normalized, extension, base_name, EntryRole.PREVIEW)
        return Skip(normalized, SkipReason.UNSUPPORTED_EXTENSION)

    if extension in category.media_extensions:
        return Accept(normalized, extension, base_name, EntryRole.MEDIA)

    return Skip(normalized, SkipReason.UNSUPPORTED_EXTENSION)
