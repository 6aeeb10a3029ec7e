"""Pipelined transform-and-upload of staged archive entries.

The job thread decodes entries one by one and hands each staged file to
the writer. Transform and upload run on a thread pool while the job thread
goes on decoding; a pending counter bounds how many entries are in flight
and tells the job when everything has drained. Workers report back through
a queue so only the job thread aggregates results.
"""

import logging
import posixpath
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from queue import Empty, Queue
from typing import FrozenSet, List, Optional

from .categories import Category, VIDEO_EXTENSIONS, content_type_for
from .classifier import Accept, EntryRole
from .errors import classify_error
from .models import MediaArtifact
from .transcoder import TranscodeStatus, Transcoder
from ..common.errors import PackIngestError
from ..common.path_utils import join_key, split_segments
from ..storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

ASSETS_ROOT = 'assets'
PREVIEW_SUFFIX = '_720p.mp4'
TABLE_FOLDER = 'CUBE'
SOUNDS_FOLDER = 'sounds'


class PendingTracker:
    """Counting wait-group with an upper bound.

    acquire() blocks while ``limit`` operations are pending; wait_drained()
    blocks until none are.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._pending = 0
        self._condition = threading.Condition()

    @property
    def pending(self) -> int:
        with self._condition:
            return self._pending

    def acquire(self, timeout: Optional[float] = None) -> bool:
        with self._condition:
            if not self._condition.wait_for(lambda: self._pending < self.limit, timeout=timeout):
                return False
            self._pending += 1
            return True

    def release(self) -> None:
        with self._condition:
            if self._pending == 0:
                raise RuntimeError("release() called with nothing pending")
            self._pending -= 1
            self._condition.notify_all()

    def wait_drained(self, timeout: Optional[float] = None) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self._pending == 0, timeout=timeout)


def storage_folder(pack_name: str, category: Category) -> str:
    """Blob prefix owned by one pack."""
    return join_key(ASSETS_ROOT, category.folder, pack_name)


def destination_path(pack_name: str, category: Category, relative_path: str,
                     role: EntryRole, file_name: Optional[str] = None) -> str:
    """Deterministic blob path for an accepted entry.

    Args:
        pack_name: Pack storage name
        category: Pack category
        relative_path: Entry path inside the archive
        role: Classification role of the entry
        file_name: Uploaded file name when it differs from the entry's
            (a converted container)
    """
    segments = split_segments(relative_path)
    name = file_name or segments[-1]
    root = storage_folder(pack_name, category)

    if category is Category.SFX:
        return join_key(root, SOUNDS_FOLDER, name)
    if category is Category.LUTS:
        if role is EntryRole.TABLE:
            return join_key(root, TABLE_FOLDER, name)
        # Unit clips are usually named before/after, keep their folder
        if len(segments) >= 2:
            return join_key(root, segments[-2], name)
        return join_key(root, name)
    return join_key(root, name)


def preview_path_for(storage_path: str) -> str:
    """Blob path of the reduced-resolution rendition of a video."""
    stem = posixpath.splitext(storage_path)[0]
    return f"{stem}{PREVIEW_SUFFIX}"


@dataclass
class StagedEntry:
    """An accepted entry staged in its own scratch subdirectory."""

    sequence: int
    accept: Accept
    local_path: Path

    @property
    def relative_path(self) -> str:
        return self.accept.path

    @property
    def file_name(self) -> str:
        return self.accept.base_name


@dataclass
class EntryOutcome:
    """Result of transforming and uploading one staged entry."""

    entry: StagedEntry
    artifact: Optional[MediaArtifact] = None
    converted: bool = False
    preview_generated: bool = False
    duration_extracted: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def uploaded(self) -> bool:
        return self.artifact is not None


@dataclass(frozen=True)
class WritePlan:
    """Per-pack settings the workers need."""

    pack_name: str
    category: Category
    convert_extensions: FrozenSet[str] = frozenset({'.mov'})

    def needs_conversion(self, accept: Accept) -> bool:
        return accept.role is not EntryRole.TABLE and accept.extension in self.convert_extensions

    def wants_preview(self, accept: Accept) -> bool:
        return (self.category is Category.OVERLAYS
                and accept.role is EntryRole.MEDIA
                and accept.extension in VIDEO_EXTENSIONS)

    def wants_duration(self, accept: Accept) -> bool:
        return self.category is Category.SFX


class PipelinedWriter:
    """Runs transform and upload for staged entries on a thread pool."""

    def __init__(
        self,
        blob_store: BlobStore,
        transcoder: Transcoder,
        plan: WritePlan,
        max_pending: int = 4,
        worker_threads: int = 4,
    ):
        self.blob_store = blob_store
        self.transcoder = transcoder
        self.plan = plan
        self.tracker = PendingTracker(max_pending)
        self.outcomes: "Queue[EntryOutcome]" = Queue()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, min(worker_threads, max_pending)),
            thread_name_prefix='pack-writer',
        )
        self._closed = False
        logger.info(f"Started writer: {{'max_pending': {max_pending}, 'worker_threads': {worker_threads}}}")

    def submit(self, staged: StagedEntry) -> None:
        """Queue a staged entry. Blocks while the pending limit is reached."""
        if self._closed:
            raise RuntimeError("writer is closed")
        self.tracker.acquire()
        try:
            self._executor.submit(self._run, staged)
        except BaseException:
            self.tracker.release()
            raise

    def poll(self) -> List[EntryOutcome]:
        """Outcomes completed so far, without blocking."""
        ready = []
        while True:
            try:
                ready.append(self.outcomes.get_nowait())
            except Empty:
                return ready

    def wait_drained(self, timeout: Optional[float] = None) -> bool:
        return self.tracker.wait_drained(timeout)

    def close(self) -> None:
        """Wait for in-flight work and stop the pool."""
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=True)

    def __enter__(self) -> 'PipelinedWriter':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _run(self, staged: StagedEntry) -> None:
        outcome = EntryOutcome(entry=staged)
        try:
            self._process(staged, outcome)
        except Exception as e:
            category = classify_error(e)
            reason = e.message if isinstance(e, PackIngestError) else str(e)
            logger.warning(f"Entry failed: {{'file': {staged.file_name!r}, 'category': {category!r}, 'error': {reason!r}}}")
            outcome.artifact = None
            outcome.errors.append(f"Error processing {staged.file_name}: {reason}")
        finally:
            self._cleanup(staged)
            self.outcomes.put(outcome)
            self.tracker.release()

    def _process(self, staged: StagedEntry, outcome: EntryOutcome) -> None:
        accept = staged.accept
        plan = self.plan
        upload_source = staged.local_path
        file_name = accept.base_name
        extension = accept.extension

        if plan.needs_conversion(accept):
            converted = staged.local_path.with_name(f"{staged.local_path.stem}-converted.mp4")
            result = self.transcoder.convert(staged.local_path, converted)
            if result.ok:
                upload_source = result.output
                file_name = f"{posixpath.splitext(accept.base_name)[0]}.mp4"
                extension = '.mp4'
                outcome.converted = True
            else:
                reason = ('ffmpeg not available' if result.status is TranscodeStatus.UNAVAILABLE
                          else f'ffmpeg failed: {result.detail}')
                logger.warning(f"Conversion skipped: {{'file': {accept.base_name!r}, 'reason': {reason!r}}}")
                outcome.errors.append(f"Could not convert {accept.base_name} ({reason})")

        storage_path = destination_path(
            plan.pack_name, plan.category, accept.path, accept.role,
            file_name if outcome.converted else None,
        )

        preview_storage_path = None
        if plan.wants_preview(accept):
            preview_storage_path = self._render_preview(upload_source, storage_path)
            outcome.preview_generated = preview_storage_path is not None

        duration = None
        if plan.wants_duration(accept):
            probe = self.transcoder.probe_duration(upload_source)
            duration = probe.seconds if probe.ok else 0
            outcome.duration_extracted = duration > 0

        self.blob_store.write(storage_path, upload_source, content_type_for(extension))

        outcome.artifact = MediaArtifact(
            file_name=file_name,
            storage_path=storage_path,
            file_type=extension.lstrip('.'),
            source_path=accept.path,
            preview_path=preview_storage_path,
            duration=duration,
        )

    def _render_preview(self, source: Path, storage_path: str) -> Optional[str]:
        rendition = source.with_name(f"{source.stem}{PREVIEW_SUFFIX}")
        try:
            result = self.transcoder.render_preview(source, rendition)
            if not result.ok:
                logger.debug(f"Preview not generated: {{'file': {source.name!r}, 'status': {result.status.value!r}}}")
                return None
            target = preview_path_for(storage_path)
            self.blob_store.write(target, result.output, 'video/mp4')
            return target
        except PackIngestError as e:
            logger.warning(f"Preview upload failed: {{'file': {source.name!r}, 'error': {e.message!r}}}")
            return None
        finally:
            rendition.unlink(missing_ok=True)

    @staticmethod
    def _cleanup(staged: StagedEntry) -> None:
        """Delete the entry's scratch directory and everything derived in it."""
        try:
            shutil.rmtree(staged.local_path.parent)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove scratch files: {{'path': {str(staged.local_path.parent)!r}, 'error': {str(e)!r}}}")
