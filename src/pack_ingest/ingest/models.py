"""Record and result types for pack ingestion."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .categories import Category


@dataclass
class Pack:
    """One archive submission and its catalog entry."""

    id: str
    title: str
    category: Category
    storage_path: str
    pack_name: str
    thumbnail_path: Optional[str] = None
    preview_clip_path: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        data = {
            'title': self.title,
            'category': self.category.label,
            'storagePath': self.storage_path,
            'packName': self.pack_name,
            'fileType': self.storage_path.rsplit('.', 1)[-1].lower() if '.' in self.storage_path else '',
        }
        if self.thumbnail_path:
            data['thumbnailPath'] = self.thumbnail_path
        if self.preview_clip_path:
            data['previewClipPath'] = self.preview_clip_path
        return data


@dataclass
class MediaArtifact:
    """One uploaded file belonging to a pack."""

    file_name: str
    storage_path: str
    file_type: str
    source_path: str
    preview_path: Optional[str] = None
    duration: Optional[int] = None

    def to_document(self, pack: Pack) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'packId': pack.id,
            'packTitle': pack.title,
            'fileName': self.file_name,
            'storagePath': self.storage_path,
            'fileType': self.file_type,
        }
        if self.preview_path:
            data['previewStoragePath'] = self.preview_path
        if self.duration is not None:
            data['duration'] = self.duration
        return data


@dataclass
class PreviewPair:
    """A before/after unit, optionally associated with a table file."""

    unit: str
    before_path: Optional[str] = None
    after_path: Optional[str] = None
    table_path: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.before_path and self.after_path)

    @property
    def table_file_name(self) -> Optional[str]:
        if not self.table_path:
            return None
        return self.table_path.rsplit('/', 1)[-1]

    def missing_sides(self) -> List[str]:
        return [side for side, value in (('before', self.before_path), ('after', self.after_path))
                if not value]

    def to_document(self, pack: Pack) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'packId': pack.id,
            'packTitle': pack.title,
            'lutName': self.unit,
            'beforeVideoPath': self.before_path,
            'afterVideoPath': self.after_path,
            'lutFilePath': self.table_path,
            'fileName': self.table_file_name,
        }
        return data


@dataclass
class ProcessingResult:
    """Aggregated outcome of one ingestion run. Never persisted."""

    pack_id: Optional[str] = None
    files_processed: int = 0
    conversions_completed: int = 0
    previews_generated: int = 0
    durations_extracted: int = 0
    lut_previews_created: int = 0
    table_files_matched: int = 0
    documents_created: int = 0
    skipped: int = 0
    skipped_units: List[Dict[str, Any]] = field(default_factory=list)
    unmatched_table_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add_error(self, file_name: str, reason: str) -> None:
        self.errors.append(f"Error processing {file_name}: {reason}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'packId': self.pack_id,
            'filesProcessed': self.files_processed,
            'conversionsCompleted': self.conversions_completed,
            'previewsGenerated': self.previews_generated,
            'durationsExtracted': self.durations_extracted,
            'lutPreviewsCreated': self.lut_previews_created,
            'tableFilesMatched': self.table_files_matched,
            'documentsCreated': self.documents_created,
            'skipped': self.skipped,
            'skippedUnits': list(self.skipped_units),
            'unmatchedTableFiles': list(self.unmatched_table_files),
            'errors': list(self.errors),
        }
