"""Configuration models for pack ingestion."""

from typing import List, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .common import LoggingConfig
from .common.config_utils import auto_detect_io_workers


class StorageConfig(BaseModel):
    """Blob store configuration."""

    model_config = ConfigDict(extra='forbid')

    backend: Literal["local", "s3"] = Field(
        default="local",
        description="Blob store backend"
    )
    local_root: str = Field(
        default="${USER_DATA}/blobs",
        description="Root directory for the local blob store"
    )
    s3_bucket: str | None = Field(default=None, description="S3 bucket name")
    s3_region: str | None = Field(default=None, description="S3 region")
    s3_endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint (MinIO, Cloudflare R2, ...)"
    )
    s3_access_key_id: str | None = Field(default=None, description="S3 access key")
    s3_secret_access_key: str | None = Field(default=None, description="S3 secret key")
    s3_max_pool_connections: int = Field(
        default=16,
        ge=1,
        description="Connection pool size for the S3 client"
    )

    @model_validator(mode='after')
    def require_bucket_for_s3(self) -> 'StorageConfig':
        if self.backend == "s3" and not self.s3_bucket:
            raise ValueError("storage.s3_bucket is required when backend is 's3'")
        return self


class DatabaseConfig(BaseModel):
    """Document store configuration."""

    model_config = ConfigDict(extra='forbid')

    path: str = Field(
        default="${USER_DATA}/catalog.db",
        description="Path to the SQLite document store"
    )


class TranscoderConfig(BaseModel):
    """External transcoding utility configuration."""

    model_config = ConfigDict(extra='forbid')

    enabled: bool = Field(
        default=True,
        description="Use ffmpeg/ffprobe when available"
    )
    required: bool = Field(
        default=False,
        description="Refuse to start when ffmpeg or ffprobe is missing"
    )
    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg executable")
    ffprobe_path: str = Field(default="ffprobe", description="ffprobe executable")
    timeout_seconds: int = Field(
        default=600,
        ge=1,
        description="Timeout for one conversion or preview render"
    )
    probe_timeout_seconds: int = Field(
        default=30,
        ge=1,
        description="Timeout for one duration probe"
    )
    preview_height: int = Field(
        default=720,
        ge=16,
        description="Height of generated preview renditions"
    )
    convert_extensions: List[str] = Field(
        default_factory=lambda: [".mov"],
        description="Video containers re-encoded to MP4"
    )

    @field_validator('convert_extensions', mode='before')
    @classmethod
    def normalize_extensions(cls, v):
        if isinstance(v, str):
            v = [v]
        return [e.lower() if e.startswith('.') else f".{e.lower()}" for e in v]


class IngestSettings(BaseModel):
    """Pipeline tuning."""

    model_config = ConfigDict(extra='forbid')

    scratch_directory: str = Field(
        default="${TEMP}/pack-ingest",
        description="Parent directory for per-job scratch space"
    )
    max_pending: int = Field(
        default=4,
        ge=1,
        description="Maximum per-entry operations in flight"
    )
    worker_threads: int = Field(
        default_factory=auto_detect_io_workers,
        ge=1,
        description="Threads running transform and upload work"
    )
    io_chunk_size: int = Field(
        default=1024 * 1024,
        ge=4096,
        description="Chunk size for copying entry bytes"
    )
    min_free_disk_mb: int = Field(
        default=256,
        ge=0,
        description="Free scratch space to keep in reserve"
    )
    staging_prefix: str = Field(
        default="uploads/",
        description="Blob prefix of pre-uploaded side-channel assets, deleted once the pack is committed"
    )


class ApiConfig(BaseModel):
    """HTTP surface configuration."""

    model_config = ConfigDict(extra='forbid')

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")
    admin_tokens: List[str] = Field(
        default_factory=list,
        description="Bearer tokens accepted for operator endpoints"
    )
    enable_cors: bool = Field(default=False, description="Enable CORS middleware")
    cors_origins: List[str] = Field(default_factory=list, description="Allowed CORS origins")

    @field_validator('admin_tokens', 'cors_origins', mode='before')
    @classmethod
    def split_strings(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


class PackIngestConfig(BaseModel):
    """Root configuration for pack ingestion."""

    model_config = ConfigDict(extra='forbid')

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    transcoder: TranscoderConfig = Field(default_factory=TranscoderConfig)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    api: ApiConfig = Field(default_factory=ApiConfig)
