"""Logging settings for pack-ingest."""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# Client libraries that log every request at INFO
DEFAULT_QUIET_LOGGERS = ["botocore", "boto3", "s3transfer", "urllib3", "multipart"]


class LoggingConfig(BaseModel):
    """Console and rotating log file settings."""

    model_config = ConfigDict(extra='forbid')

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level"
    )
    format: Literal["simple", "json"] = Field(
        default="json",
        description="Console format; the log file is always JSON"
    )
    file: str | None = Field(default=None, description="Optional log file path (${VAR} expanded)")
    max_file_mb: int = Field(default=10, ge=1, description="Size at which the log file rotates")
    backup_count: int = Field(default=5, ge=0, description="Rotated log files to keep")
    quiet_loggers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_QUIET_LOGGERS),
        description="Loggers held at WARNING regardless of level"
    )

    @field_validator('level', 'format', mode='before')
    @classmethod
    def normalize_case(cls, v, info: ValidationInfo):
        """Level is upper-cased, format lower-cased."""
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == 'level' else v.lower()
