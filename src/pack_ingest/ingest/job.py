"""One ingestion run, from archive to committed records.

IngestionJob.run() is a generator of frames. It walks

    PENDING -> UPLOADING -> EXTRACTING -> TRANSFORMING -> SYNCHRONIZING -> COMPLETED

and jumps to FAILED on a fatal error (unreadable archive, failed archive
upload, failed commit). Per-entry failures only add to the result's error
list. The job's scratch directory is removed however the run ends,
including when the consumer stops iterating early.
"""

import logging
import posixpath
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import psutil

from .archive_reader import (
    ArchiveEntry, ArchiveSource, ArchiveStreamReader, BlobArchiveSource, LocalArchiveSource,
)
from .categories import Category, content_type_for, pack_name_from_filename, title_from_filename
from .classifier import Accept, EntryRole, Skip, classify_entry
from .context import IngestContext
from .errors import EntryReadError, InsufficientScratchSpaceError, classify_error
from .models import MediaArtifact, Pack, PreviewPair, ProcessingResult
from .pairing import PreviewCandidate, group_preview_pairs, match_table_files
from .progress import ErrorFrame, Frame, Phase, ProgressReporter, ResultFrame
from .synchronizer import LUT_PREVIEWS, MetadataSynchronizer, TableAssignment
from .writer import EntryOutcome, PipelinedWriter, StagedEntry, WritePlan, storage_folder
from ..common.errors import PackIngestError
from ..common.path_utils import join_key
from ..storage.document_store import Document
from ..storage.errors import StorageError

logger = logging.getLogger(__name__)

THUMBNAIL_NAME = 'preview'
PREVIEW_CLIP_NAME = 'preview-clip'
DEFAULT_THUMBNAIL = 'preview.png'


class JobState(Enum):
    PENDING = 'pending'
    UPLOADING = 'uploading'
    EXTRACTING = 'extracting'
    TRANSFORMING = 'transforming'
    SYNCHRONIZING = 'synchronizing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class _Mode(Enum):
    FULL = 'full'
    TABLE_FILL = 'table_fill'


@dataclass
class SideAsset:
    """A thumbnail or preview clip supplied next to the archive.

    Exactly one of ``local_path`` and ``blob_path`` is set.
    """

    file_name: str
    local_path: Optional[Path] = None
    blob_path: Optional[str] = None

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.file_name)[1].lower()


@dataclass
class IngestRequest:
    """What to ingest and where it comes from."""

    source: ArchiveSource
    category: Category
    title: Optional[str] = None
    upload_archive: bool = True
    thumbnail: Optional[SideAsset] = None
    preview_clip: Optional[SideAsset] = None

    @property
    def archive_name(self) -> str:
        return self.source.name


class IngestionJob:
    """Runs one ingestion request against an IngestContext."""

    def __init__(self, context: IngestContext, request: IngestRequest):
        self.context = context
        self.request = request
        self.state = JobState.PENDING
        self.synchronizer = MetadataSynchronizer(context.document_store)
        self.reporter = ProgressReporter()
        self.result = ProcessingResult()
        self.pack_name = pack_name_from_filename(request.archive_name)
        self.scratch_dir: Optional[Path] = None
        self._mode = _Mode.FULL
        self._existing_previews: List[Document] = []
        self._staged_originals: List[str] = []

    def _transition(self, state: JobState) -> None:
        logger.info(f"Job state: {{'from': {self.state.value!r}, 'to': {state.value!r}, 'archive': {self.request.archive_name!r}}}")
        self.state = state

    def run(self) -> Iterator[Frame]:
        """Run the job, yielding progress frames and one terminal frame."""
        try:
            scratch_root = self.context.scratch_root
            scratch_root.mkdir(parents=True, exist_ok=True)
            self.scratch_dir = Path(tempfile.mkdtemp(prefix='job-', dir=scratch_root))
            yield from self._run()
        except PackIngestError as e:
            self._transition(JobState.FAILED)
            logger.error(f"Job failed: {{'category': {classify_error(e)!r}, 'error': {e.message!r}}}", exc_info=True)
            yield ErrorFrame(e.message)
        except Exception as e:
            self._transition(JobState.FAILED)
            logger.exception(f"Job failed unexpectedly: {{'error': {str(e)!r}}}")
            yield ErrorFrame(str(e) or 'Processing failed')
        finally:
            if self.scratch_dir is not None:
                shutil.rmtree(self.scratch_dir, ignore_errors=True)
                logger.debug(f"Removed scratch directory: {{'path': {str(self.scratch_dir)!r}}}")

    def _run(self) -> Iterator[Frame]:
        request = self.request
        category = request.category

        self._transition(JobState.UPLOADING)
        yield self.reporter.frame(5, 'Uploading archive...', Phase.UPLOADING)

        archive_location = self._archive_location()
        pack_id = self.synchronizer.resolve_pack_id(archive_location)
        self.result.pack_id = pack_id

        if self.synchronizer.is_processed(pack_id, category):
            skipped = self._plan_rerun(pack_id)
            if skipped is not None:
                self.result.skipped = skipped
                logger.info(f"Pack already processed: {{'pack_id': {pack_id!r}, 'skipped': {skipped}}}")
                self._transition(JobState.COMPLETED)
                yield self.reporter.complete('Pack already processed')
                yield ResultFrame(self.result)
                return

        if self._mode is _Mode.FULL and request.upload_archive:
            self._upload_archive(archive_location)

        pack = self._build_pack(pack_id, archive_location)

        yield self.reporter.frame(10, 'Creating pack record...', Phase.UPLOADING)

        self._transition(JobState.EXTRACTING)
        yield self.reporter.frame(15, 'Extracting archive...', Phase.PROCESSING)

        outcomes = yield from self._extract_and_write()

        self._transition(JobState.SYNCHRONIZING)
        yield self.reporter.frame(85, 'Saving records...', Phase.PROCESSING)

        if self._mode is _Mode.TABLE_FILL:
            self._synchronize_table_fill(pack, outcomes)
        else:
            self._synchronize(pack, outcomes)
        self._release_staged_originals()

        self._transition(JobState.COMPLETED)
        yield self.reporter.complete()
        yield ResultFrame(self.result)

    def _archive_location(self) -> str:
        source = self.request.source
        if isinstance(source, BlobArchiveSource):
            return source.blob_path
        return join_key('assets', self.request.category.folder, self.request.archive_name)

    def _plan_rerun(self, pack_id: str) -> Optional[int]:
        """Decide what a re-run does.

        Returns:
            Number of skipped records if the pack needs no work, else None
            (the job continues in table-fill mode)
        """
        children = self.synchronizer.existing_children(pack_id, self.request.category)
        total = sum(len(docs) for docs in children.values())

        if self.request.category is Category.LUTS:
            previews = children.get(LUT_PREVIEWS, [])
            if any(not doc.data.get('lutFilePath') for doc in previews):
                self._mode = _Mode.TABLE_FILL
                self._existing_previews = previews
                logger.info(f"Filling missing table files: {{'pack_id': {pack_id!r}, 'previews': {len(previews)}}}")
                return None

        return total

    def _upload_archive(self, location: str) -> None:
        local = self.request.source.local_path()
        if local is None:
            return
        try:
            self.context.blob_store.write(location, local, content_type_for('.zip'))
        except StorageError as e:
            raise PackIngestError(f"Could not store archive: {e.message}", location=location) from e
        logger.info(f"Stored archive: {{'location': {location!r}}}")

    def _build_pack(self, pack_id: str, archive_location: str) -> Pack:
        request = self.request
        if self._mode is _Mode.TABLE_FILL:
            existing = self.synchronizer.get_pack(pack_id)
            data = existing.data if existing else {}
            return Pack(
                id=pack_id,
                title=data.get('title') or request.title or title_from_filename(request.archive_name),
                category=request.category,
                storage_path=archive_location,
                pack_name=data.get('packName', self.pack_name),
                thumbnail_path=data.get('thumbnailPath'),
                preview_clip_path=data.get('previewClipPath'),
            )

        return Pack(
            id=pack_id,
            title=request.title or title_from_filename(request.archive_name),
            category=request.category,
            storage_path=archive_location,
            pack_name=self.pack_name,
            thumbnail_path=self._store_thumbnail(),
            preview_clip_path=self._store_side_asset(request.preview_clip, PREVIEW_CLIP_NAME),
        )

    def _store_thumbnail(self) -> Optional[str]:
        if self.request.thumbnail is not None:
            return self._store_side_asset(self.request.thumbnail, THUMBNAIL_NAME)

        fallback = join_key(storage_folder(self.pack_name, self.request.category), DEFAULT_THUMBNAIL)
        try:
            if self.context.blob_store.exists(fallback):
                return fallback
        except StorageError as e:
            logger.warning(f"Thumbnail lookup failed: {{'path': {fallback!r}, 'error': {e.message!r}}}")
        return None

    def _store_side_asset(self, asset: Optional[SideAsset], base_name: str) -> Optional[str]:
        """Place a side-channel asset next to the pack's files.

        Blob inputs are copied. Originals under the staging prefix are
        deleted only after the pack is committed. Failures are recorded and
        leave the path unset.
        """
        if asset is None:
            return None

        store = self.context.blob_store
        destination = join_key(storage_folder(self.pack_name, self.request.category),
                               f"{base_name}{asset.extension}")
        try:
            if asset.local_path is not None:
                store.write(destination, asset.local_path, content_type_for(asset.extension))
            elif asset.blob_path and asset.blob_path != destination:
                store.copy(asset.blob_path, destination)
                if asset.blob_path.startswith(self.context.settings.staging_prefix):
                    self._staged_originals.append(asset.blob_path)
        except StorageError as e:
            self.result.add_error(asset.file_name, e.message)
            return None
        return destination

    def _release_staged_originals(self) -> None:
        """Delete staged side-asset uploads that now live next to the pack."""
        for path in self._staged_originals:
            try:
                self.context.blob_store.delete(path)
            except StorageError as e:
                logger.warning(f"Staged upload not removed: {{'path': {path!r}, 'error': {e.message!r}}}")
        self._staged_originals = []

    def _extract_and_write(self):
        """Decode, classify, stage and hand off every entry.

        Returns the drained outcomes ordered by archive position.
        """
        context = self.context
        settings = context.settings
        category = self.request.category
        plan = WritePlan(self.pack_name, category, context.convert_extensions)
        outcomes: List[EntryOutcome] = []

        with ArchiveStreamReader(self.request.source, self.scratch_dir, settings.io_chunk_size) as reader, \
                PipelinedWriter(context.blob_store, context.transcoder, plan,
                                max_pending=settings.max_pending,
                                worker_threads=settings.worker_threads) as writer:
            total = reader.total_entries
            visited = 0
            sequence = 0
            self._transition(JobState.TRANSFORMING)

            for entry in reader:
                visited += 1
                classification = classify_entry(entry.path, category, entry.is_dir)
                if isinstance(classification, Skip):
                    logger.debug(f"Skipped entry: {{'path': {classification.path!r}, 'reason': {classification.reason.value!r}}}")
                    continue
                if self._mode is _Mode.TABLE_FILL and classification.role is not EntryRole.TABLE:
                    continue

                self.result.files_processed += 1
                sequence += 1
                try:
                    staged = self._stage(entry, classification, sequence, writer)
                except (EntryReadError, InsufficientScratchSpaceError, OSError) as e:
                    reason = e.message if isinstance(e, PackIngestError) else str(e)
                    logger.warning(f"Entry not staged: {{'file': {classification.base_name!r}, 'category': {classify_error(e)!r}, 'error': {reason!r}}}")
                    self.result.add_error(classification.base_name, reason)
                    continue

                writer.submit(staged)
                for outcome in writer.poll():
                    outcomes.append(self._absorb(outcome))
                    yield self.reporter.entry_frame(
                        visited, total, f"Processed {len(outcomes)}/{self.result.files_processed} files..."
                    )

            writer.wait_drained()
            for outcome in writer.poll():
                outcomes.append(self._absorb(outcome))
                yield self.reporter.entry_frame(
                    visited, total, f"Processed {len(outcomes)}/{self.result.files_processed} files..."
                )

        outcomes.sort(key=lambda outcome: outcome.entry.sequence)
        return outcomes

    def _stage(self, entry: ArchiveEntry, accept: Accept, sequence: int, writer: PipelinedWriter) -> StagedEntry:
        """Copy an entry's bytes into its own scratch subdirectory."""
        entry_dir = self.scratch_dir / 'entries' / f"{sequence:05d}"
        self._ensure_scratch_space(entry.size or 0, writer)
        entry_dir.mkdir(parents=True)
        local_path = entry_dir / f"entry{accept.extension}"
        try:
            entry.copy_to(local_path, self.context.settings.io_chunk_size)
        except BaseException:
            shutil.rmtree(entry_dir, ignore_errors=True)
            raise
        return StagedEntry(sequence=sequence, accept=accept, local_path=local_path)

    def _ensure_scratch_space(self, size: int, writer: PipelinedWriter) -> None:
        reserve = self.context.settings.min_free_disk_mb * 1024 * 1024
        needed = size + reserve
        if psutil.disk_usage(str(self.scratch_dir)).free >= needed:
            return
        # In-flight entries release their scratch files when they finish
        writer.wait_drained()
        free = psutil.disk_usage(str(self.scratch_dir)).free
        if free < needed:
            raise InsufficientScratchSpaceError(
                f"Not enough scratch space ({free} bytes free, {needed} needed)",
                free=free, needed=needed,
            )

    def _absorb(self, outcome: EntryOutcome) -> EntryOutcome:
        result = self.result
        result.errors.extend(outcome.errors)
        if outcome.converted:
            result.conversions_completed += 1
        if outcome.preview_generated:
            result.previews_generated += 1
        if outcome.duration_extracted:
            result.durations_extracted += 1
        return outcome

    def _synchronize(self, pack: Pack, outcomes: List[EntryOutcome]) -> None:
        artifacts: List[MediaArtifact] = []
        candidates: List[PreviewCandidate] = []
        tables: Dict[str, MediaArtifact] = {}

        for outcome in outcomes:
            if not outcome.uploaded:
                continue
            role = outcome.entry.accept.role
            if role is EntryRole.PREVIEW:
                candidates.append(PreviewCandidate(outcome.entry.relative_path, outcome.artifact.storage_path))
            elif role is EntryRole.TABLE:
                tables[outcome.artifact.storage_path] = outcome.artifact
                artifacts.append(outcome.artifact)
            else:
                artifacts.append(outcome.artifact)

        pairs: List[PreviewPair] = []
        if pack.category is Category.LUTS:
            pairs = self._pair_previews(candidates, list(tables.values()))

        self.result.documents_created = self.synchronizer.commit_pack(pack, artifacts, pairs)
        self.result.lut_previews_created = len(pairs)

    def _pair_previews(self, candidates: List[PreviewCandidate], tables: List[MediaArtifact]) -> List[PreviewPair]:
        report = group_preview_pairs(candidates, pack_name=self.pack_name)

        for pair in report.incomplete:
            self.result.skipped_units.append({
                'unit': pair.unit,
                'reason': 'incomplete',
                'missing': pair.missing_sides(),
            })
            logger.info(f"Incomplete preview unit: {{'unit': {pair.unit!r}, 'missing': {pair.missing_sides()!r}}}")
        for path in report.unrecognized:
            self.result.skipped_units.append({'path': path, 'reason': 'no_before_after_side'})
        for path in report.duplicates:
            self.result.skipped_units.append({'path': path, 'reason': 'duplicate_side'})

        by_name = {artifact.file_name: artifact for artifact in tables}
        matches = match_table_files(list(by_name), [pair.unit for pair in report.pairs])
        pairs_by_unit = {pair.unit: pair for pair in report.pairs}
        for match in matches.matches:
            pairs_by_unit[match.unit].table_path = by_name[match.table_name].storage_path
            logger.debug(f"Matched table file: {{'table': {match.table_name!r}, 'unit': {match.unit!r}, 'tier': {match.tier.value!r}}}")

        self.result.table_files_matched = len(matches.matches)
        self.result.unmatched_table_files = list(matches.unmatched)
        return report.pairs

    def _synchronize_table_fill(self, pack: Pack, outcomes: List[EntryOutcome]) -> None:
        tables: Dict[str, MediaArtifact] = {}
        for outcome in outcomes:
            if outcome.uploaded:
                tables[outcome.artifact.file_name] = outcome.artifact

        lacking: Dict[str, Document] = {}
        associated: Dict[str, Document] = {}
        for doc in self._existing_previews:
            target = associated if doc.data.get('lutFilePath') else lacking
            target.setdefault(doc.data.get('lutName', ''), doc)

        matches = match_table_files(list(tables), list(lacking))
        assignments = [
            TableAssignment(lacking[match.unit].id, match.unit, tables[match.table_name].storage_path)
            for match in matches.matches
        ]

        # Existing associations are never changed; report differing candidates
        leftovers = match_table_files(matches.unmatched, list(associated))
        for match in leftovers.matches:
            current = associated[match.unit].data.get('lutFilePath')
            candidate = tables[match.table_name].storage_path
            if current != candidate:
                logger.warning(f"Table file conflict, keeping existing: {{'unit': {match.unit!r}, 'existing': {current!r}, 'candidate': {candidate!r}}}")
                self.result.skipped_units.append({
                    'unit': match.unit,
                    'reason': 'table_file_conflict',
                    'existing': current,
                    'candidate': candidate,
                })

        self.result.unmatched_table_files = list(leftovers.unmatched)
        self.result.table_files_matched = len(assignments)
        self.result.skipped = len(self._existing_previews) - len(assignments)
        self.result.documents_created = self.synchronizer.fill_table_files(pack, assignments, list(tables.values()))


def ingest_local_archive(context: IngestContext, archive: Path, category: Category, **kwargs) -> Iterator[Frame]:
    """Convenience wrapper: ingest an archive file from local disk."""
    request = IngestRequest(source=LocalArchiveSource(archive), category=category, **kwargs)
    return IngestionJob(context, request).run()
