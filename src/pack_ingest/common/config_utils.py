"""Configuration utilities."""

import os
import tempfile
import platformdirs
from pathlib import Path


def expand_path_variables(path: str) -> str:
    """Expand ${VAR} variables in paths.

    Supported variables:
        ${USER_HOME}: User's home directory
        ${USER_DATA}: User data directory for pack-ingest
        ${USER_CACHE}: User cache directory for pack-ingest
        ${USER_LOGS}: User log directory for pack-ingest
        ${TEMP}: Temporary directory

    Args:
        path: Path string with variables

    Returns:
        Expanded path string
    """
    if not isinstance(path, str):
        return path

    replacements = {
        "${USER_HOME}": str(Path.home()),
        "${USER_DATA}": platformdirs.user_data_dir("pack-ingest", appauthor=False),
        "${USER_CACHE}": platformdirs.user_cache_dir("pack-ingest", appauthor=False),
        "${USER_LOGS}": platformdirs.user_log_dir("pack-ingest", appauthor=False),
        "${TEMP}": tempfile.gettempdir(),
    }

    for var, value in replacements.items():
        path = path.replace(var, value)

    return path


def auto_detect_io_workers(multiplier: float = 2.0, min_workers: int = 2) -> int:
    """Auto-detect number of I/O worker threads.

    Args:
        multiplier: Multiplier for CPU count
        min_workers: Minimum number of workers

    Returns:
        Number of I/O workers
    """
    cpu_count = os.cpu_count() or 4
    return max(min_workers, int(cpu_count * multiplier))
