"""Pack categories, extension allow-lists and content types."""

import re
from enum import Enum
from typing import FrozenSet, Tuple


IMAGE_EXTENSIONS: FrozenSet[str] = frozenset({
    '.png', '.jpg', '.jpeg', '.gif', '.webp', '.tiff', '.tif',
})

VIDEO_EXTENSIONS: FrozenSet[str] = frozenset({
    '.mov', '.mp4', '.avi', '.mkv', '.webm', '.m4v',
})

OVERLAY_EXTENSIONS: FrozenSet[str] = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS

AUDIO_EXTENSIONS: FrozenSet[str] = frozenset({
    '.mp3', '.wav', '.aiff', '.m4a', '.ogg', '.flac',
})

ZIP_SUFFIXES: Tuple[str, ...] = ('.zip',)

# Compound suffixes come before '.tar'
TAR_SUFFIXES: Tuple[str, ...] = ('.tar.gz', '.tar.bz2', '.tar.xz', '.tgz', '.tbz2', '.txz', '.tar')

ARCHIVE_SUFFIXES: Tuple[str, ...] = ZIP_SUFFIXES + TAR_SUFFIXES

TABLE_EXTENSION = '.cube'

# Table files are only accepted inside a folder with this name (any case)
TABLE_FOLDER_NAME = 'cube'

CONTENT_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.tiff': 'image/tiff',
    '.tif': 'image/tiff',
    '.mov': 'video/quicktime',
    '.mp4': 'video/mp4',
    '.avi': 'video/x-msvideo',
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.m4v': 'video/x-m4v',
    '.mp3': 'audio/mpeg',
    '.wav': 'audio/wav',
    '.aiff': 'audio/aiff',
    '.m4a': 'audio/mp4',
    '.ogg': 'audio/ogg',
    '.flac': 'audio/flac',
    '.cube': 'application/octet-stream',
    '.zip': 'application/zip',
}

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


class Category(Enum):
    """Pack category.

    Each value is (display label, storage folder).
    """

    OVERLAYS = ('Overlays & Transitions', 'overlays')
    SFX = ('SFX & Plugins', 'sfx')
    LUTS = ('LUTs & Presets', 'luts')

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def folder(self) -> str:
        return self.value[1]

    @property
    def media_extensions(self) -> FrozenSet[str]:
        """Extensions accepted as media artifacts."""
        if self is Category.OVERLAYS:
            return OVERLAY_EXTENSIONS
        if self is Category.SFX:
            return AUDIO_EXTENSIONS
        return VIDEO_EXTENSIONS

    @property
    def child_collections(self) -> Tuple[str, ...]:
        if self is Category.OVERLAYS:
            return ('overlays',)
        if self is Category.SFX:
            return ('soundEffects',)
        return ('lutPreviews', 'lutFiles')

    @classmethod
    def parse(cls, value: 'str | Category') -> 'Category':
        """Resolve a label, folder name or enum name to a Category.

        Raises:
            ValueError: If the value names no category
        """
        if isinstance(value, Category):
            return value
        needle = str(value).strip().lower()
        for category in cls:
            if needle in (category.label.lower(), category.folder, category.name.lower()):
                return category
        raise ValueError(f"Unknown category: {value!r}")


def content_type_for(extension: str) -> str:
    """Content type for a file extension (with or without the dot)."""
    ext = extension.lower()
    if not ext.startswith('.'):
        ext = f'.{ext}'
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def title_from_filename(file_name: str) -> str:
    """Derive a display title from an archive file name.

    >>> title_from_filename('neon-glow_overlays.zip')
    'Neon Glow Overlays'
    """
    words = re.sub(r'[-_]', ' ', strip_archive_suffix(file_name)).split(' ')
    return ' '.join(word[:1].upper() + word[1:].lower() for word in words)


def strip_archive_suffix(file_name: str) -> str:
    """The archive name without its zip or tar suffix."""
    lower = file_name.lower()
    for suffix in ARCHIVE_SUFFIXES:
        if lower.endswith(suffix):
            return file_name[:-len(suffix)]
    return file_name


def pack_name_from_filename(file_name: str) -> str:
    """Storage folder name of a pack: the archive name without extension."""
    return strip_archive_suffix(file_name)
