"""Collaborators shared by ingestion jobs."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet

from .transcoder import Transcoder, build_transcoder
from .tool_checker import log_tool_status, require_tool
from ..common.config_utils import expand_path_variables
from ..config import IngestSettings, PackIngestConfig
from ..storage.blob_store import BlobStore, LocalBlobStore, S3BlobStore
from ..storage.document_store import DocumentStore, SQLiteDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class IngestContext:
    """Stores, transcoder and settings, built once and passed to each job.

    Tests construct this directly with fakes.
    """

    blob_store: BlobStore
    document_store: DocumentStore
    transcoder: Transcoder
    settings: IngestSettings = field(default_factory=IngestSettings)
    convert_extensions: FrozenSet[str] = frozenset({'.mov'})

    @property
    def scratch_root(self) -> Path:
        return Path(expand_path_variables(self.settings.scratch_directory))

    def close(self) -> None:
        self.document_store.close()


def build_blob_store(config: PackIngestConfig) -> BlobStore:
    storage = config.storage
    if storage.backend == 's3':
        logger.info(f"Using S3 blob store: {{'bucket': {storage.s3_bucket!r}, 'endpoint': {storage.s3_endpoint_url!r}}}")
        return S3BlobStore(
            bucket=storage.s3_bucket,
            region=storage.s3_region,
            endpoint_url=storage.s3_endpoint_url,
            access_key_id=storage.s3_access_key_id,
            secret_access_key=storage.s3_secret_access_key,
            max_pool_connections=storage.s3_max_pool_connections,
        )
    root = Path(expand_path_variables(storage.local_root))
    logger.info(f"Using local blob store: {{'root': {str(root)!r}}}")
    return LocalBlobStore(root, chunk_size=config.ingest.io_chunk_size)


def build_context(config: PackIngestConfig) -> IngestContext:
    """Create the shared collaborators from configuration.

    Raises:
        ToolNotFoundError: If transcoding is required and a tool is missing
    """
    transcoder = config.transcoder
    log_tool_status(transcoder.ffmpeg_path, transcoder.ffprobe_path, enabled=transcoder.enabled)
    if transcoder.enabled and transcoder.required:
        require_tool('ffmpeg', transcoder.ffmpeg_path)
        require_tool('ffprobe', transcoder.ffprobe_path)

    db_path = Path(expand_path_variables(config.database.path))
    return IngestContext(
        blob_store=build_blob_store(config),
        document_store=SQLiteDocumentStore(db_path),
        transcoder=build_transcoder(config.transcoder),
        settings=config.ingest,
        convert_extensions=frozenset(config.transcoder.convert_extensions),
    )
