"""Base error definitions for pack_ingest."""

from typing import Any, Dict


class PackIngestError(Exception):
    """Base exception for all pack_ingest errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context


class FileProcessingError(PackIngestError):
    """Base exception for per-file processing errors."""
    pass


class ToolNotFoundError(FileProcessingError):
    """Required external tool is not available."""
    pass


class ConfigurationError(PackIngestError):
    """Configuration is missing or inconsistent."""
    pass
