"""Archive pack ingestion pipeline."""

from .categories import Category, content_type_for, title_from_filename
from .context import IngestContext, build_context
from .job import IngestRequest, IngestionJob, JobState, SideAsset
from .models import MediaArtifact, Pack, PreviewPair, ProcessingResult
from .progress import ErrorFrame, ProgressFrame, ResultFrame, encode_frame

__all__ = [
    'Category',
    'content_type_for',
    'title_from_filename',
    'IngestContext',
    'build_context',
    'IngestRequest',
    'IngestionJob',
    'JobState',
    'SideAsset',
    'MediaArtifact',
    'Pack',
    'PreviewPair',
    'ProcessingResult',
    'ErrorFrame',
    'ProgressFrame',
    'ResultFrame',
    'encode_frame',
]
