"""Forward-only archive reading.

Entries are yielded one at a time in storage order and their bytes are
streamed, never buffered whole. Zip archives keep their directory at the
end of the file, so a remote zip is first spooled to the job's scratch
directory in chunks; tar archives are decoded directly from the source
stream.
"""

import logging
import shutil
import tarfile
import zipfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional

from .categories import TAR_SUFFIXES, ZIP_SUFFIXES
from .errors import CorruptArchiveError, EntryReadError, UnsupportedArchiveError
from ..common.path_utils import normalize_path
from ..storage.blob_store import BlobStore
from ..storage.errors import StorageError

logger = logging.getLogger(__name__)


class ArchiveFormat(Enum):
    """Supported archive formats."""
    ZIP = "zip"
    TAR = "tar"


def detect_format(name: str) -> ArchiveFormat:
    """Detect archive format from a file name.

    Raises:
        UnsupportedArchiveError: If the name has no supported suffix
    """
    lower = name.lower()
    if lower.endswith(ZIP_SUFFIXES):
        return ArchiveFormat.ZIP
    if lower.endswith(TAR_SUFFIXES):
        return ArchiveFormat.TAR
    raise UnsupportedArchiveError(f"Unsupported archive format: {name}", archive=name)


class ArchiveSource(ABC):
    """A byte source for an archive."""

    @property
    @abstractmethod
    def name(self) -> str:
        """File name of the archive (used for format detection and titles)."""

    @abstractmethod
    def open(self) -> BinaryIO:
        """Open a new forward-only stream from the beginning of the archive."""

    def local_path(self) -> Optional[Path]:
        """Path of a seekable local copy, if the source is one."""
        return None


class LocalArchiveSource(ArchiveSource):
    """Archive stored on the local filesystem."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def name(self) -> str:
        return self.path.name

    def open(self) -> BinaryIO:
        try:
            return open(self.path, 'rb')
        except OSError as e:
            raise CorruptArchiveError(f"Cannot open archive {self.path}: {e}", archive=str(self.path)) from e

    def local_path(self) -> Optional[Path]:
        return self.path

    def __repr__(self) -> str:
        return f"LocalArchiveSource({str(self.path)!r})"


class BlobArchiveSource(ArchiveSource):
    """Archive streamed from the blob store."""

    def __init__(self, store: BlobStore, blob_path: str):
        self.store = store
        self.blob_path = blob_path

    @property
    def name(self) -> str:
        return self.blob_path.rstrip('/').rsplit('/', 1)[-1]

    def open(self) -> BinaryIO:
        try:
            return self.store.open_read(self.blob_path)
        except StorageError as e:
            raise CorruptArchiveError(f"Cannot open archive {self.blob_path}: {e.message}",
                                      archive=self.blob_path) from e

    def __repr__(self) -> str:
        return f"BlobArchiveSource({self.blob_path!r})"


@dataclass
class ArchiveEntry:
    """One archive member.

    The stream returned by open() is only valid until the reader advances
    to the next entry.
    """

    path: str
    is_dir: bool
    size: Optional[int]
    _opener: Callable[[], Optional[BinaryIO]] = field(repr=False, default=lambda: None)

    def open(self) -> BinaryIO:
        stream = self._opener()
        if stream is None:
            raise EntryReadError(f"Entry has no content: {self.path}", entry=self.path)
        return stream

    def copy_to(self, destination: Path, chunk_size: int = 1024 * 1024) -> int:
        """Stream the entry's bytes into ``destination``.

        Returns:
            Number of bytes written

        Raises:
            EntryReadError: If the entry's data is damaged
        """
        written = 0
        try:
            with self.open() as source, open(destination, 'wb') as target:
                while True:
                    chunk = source.read(chunk_size)
                    if not chunk:
                        break
                    target.write(chunk)
                    written += len(chunk)
        except (zipfile.BadZipFile, zlib.error, tarfile.TarError, EOFError) as e:
            raise EntryReadError(f"Cannot read {self.path}: {e}", entry=self.path) from e
        return written


class ArchiveStreamReader:
    """Lazily yields the entries of an archive in storage order.

    Usage:
        with ArchiveStreamReader(source, scratch_dir) as reader:
            for entry in reader:
                ...

    The reader is single-pass: iterate it once, or re-open the source with
    a new reader.
    """

    def __init__(self, source: ArchiveSource, scratch_dir: Path, chunk_size: int = 1024 * 1024):
        self.source = source
        self.scratch_dir = Path(scratch_dir)
        self.chunk_size = chunk_size
        self.format = detect_format(source.name)
        self._zip: Optional[zipfile.ZipFile] = None
        self._zip_members: list = []
        self._stream: Optional[BinaryIO] = None
        self._spooled: Optional[Path] = None
        self._consumed = False

    @property
    def total_entries(self) -> Optional[int]:
        """Number of entries when known up front (zip), else None."""
        if self._zip is not None:
            return len(self._zip_members)
        return None

    def open(self) -> 'ArchiveStreamReader':
        if self.format is ArchiveFormat.ZIP:
            self._open_zip()
        else:
            self._stream = self.source.open()
        logger.info(f"Opened archive: {{'source': {self.source!r}, 'format': {self.format.value!r}, 'entries': {self.total_entries}}}")
        return self

    def _open_zip(self) -> None:
        path = self.source.local_path()
        if path is None:
            path = self._spool()
        try:
            self._zip = zipfile.ZipFile(path)
        except (zipfile.BadZipFile, OSError, EOFError) as e:
            raise CorruptArchiveError(f"Cannot parse zip archive {self.source.name}: {e}",
                                      archive=self.source.name) from e
        self._zip_members = sorted(self._zip.infolist(), key=lambda info: info.header_offset)

    def _spool(self) -> Path:
        """Copy a remote zip to scratch space in chunks."""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        target = self.scratch_dir / f"source-{self.source.name}"
        self._spooled = target
        try:
            with self.source.open() as stream, open(target, 'wb') as out:
                shutil.copyfileobj(stream, out, self.chunk_size)
        except OSError as e:
            raise CorruptArchiveError(f"Cannot read archive {self.source.name}: {e}",
                                      archive=self.source.name) from e
        logger.debug(f"Spooled archive: {{'path': {str(target)!r}, 'bytes': {target.stat().st_size}}}")
        return target

    def __iter__(self) -> Iterator[ArchiveEntry]:
        if self._consumed:
            raise RuntimeError("ArchiveStreamReader can only be iterated once")
        self._consumed = True
        if self._zip is None and self._stream is None:
            self.open()
        if self.format is ArchiveFormat.ZIP:
            return self._iter_zip()
        return self._iter_tar()

    def _iter_zip(self) -> Iterator[ArchiveEntry]:
        archive = self._zip
        for info in self._zip_members:
            yield ArchiveEntry(
                path=normalize_path(info.filename),
                is_dir=info.is_dir(),
                size=info.file_size,
                _opener=lambda info=info: archive.open(info),
            )

    def _iter_tar(self) -> Iterator[ArchiveEntry]:
        try:
            archive = tarfile.open(fileobj=self._stream, mode='r|*')
        except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
            raise CorruptArchiveError(f"Cannot parse tar archive {self.source.name}: {e}",
                                      archive=self.source.name) from e

        members = iter(archive)
        while True:
            try:
                member = next(members)
            except StopIteration:
                break
            except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
                raise CorruptArchiveError(f"Cannot parse tar archive {self.source.name}: {e}",
                                          archive=self.source.name) from e

            if not (member.isfile() or member.isdir()):
                logger.debug(f"Ignoring tar member: {{'path': {member.name!r}, 'type': {member.type!r}}}")
                continue

            yield ArchiveEntry(
                path=normalize_path(member.name) + ('/' if member.isdir() else ''),
                is_dir=member.isdir(),
                size=member.size,
                _opener=lambda member=member: archive.extractfile(member),
            )

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        if self._spooled is not None:
            self._spooled.unlink(missing_ok=True)
            self._spooled = None

    def __enter__(self) -> 'ArchiveStreamReader':
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
