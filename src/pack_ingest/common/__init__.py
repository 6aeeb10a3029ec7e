"""Common utilities for pack-ingest."""

from .config import ConfigLoader
from .logging import setup_logging, get_logger, LogContext
from .logging_config import LoggingConfig
from .errors import (
    PackIngestError, FileProcessingError, ToolNotFoundError,
    ConfigurationError
)
from .path_utils import normalize_path, split_segments

__all__ = [
    'ConfigLoader',
    'LoggingConfig',
    'setup_logging',
    'get_logger',
    'LogContext',
    'PackIngestError',
    'FileProcessingError',
    'ToolNotFoundError',
    'ConfigurationError',
    'normalize_path',
    'split_segments',
]
