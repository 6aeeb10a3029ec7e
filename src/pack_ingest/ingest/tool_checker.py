"""Tool availability checker for the external transcoding utilities."""

import shutil
import logging
from typing import Dict

from ..common.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


def check_tool_availability(ffmpeg_path: str = 'ffmpeg', ffprobe_path: str = 'ffprobe') -> Dict[str, bool]:
    """
    Check availability of the external media tools.

    Returns:
        Dictionary mapping tool names to availability status:
        - 'ffmpeg': container conversion and preview renditions
        - 'ffprobe': duration probing
    """
    return {
        'ffmpeg': shutil.which(ffmpeg_path) is not None,
        'ffprobe': shutil.which(ffprobe_path) is not None,
    }


def require_tool(tool_name: str, executable: str) -> None:
    """
    Raise error if a tool is not available.

    Raises:
        ToolNotFoundError: If the tool is not on PATH, with installation instructions
    """
    if shutil.which(executable) is None:
        raise ToolNotFoundError(
            f"Tool '{tool_name}' is not available.\n\n{get_installation_instructions(tool_name)}",
            tool=tool_name,
            executable=executable,
        )


def log_tool_status(ffmpeg_path: str = 'ffmpeg', ffprobe_path: str = 'ffprobe', enabled: bool = True) -> Dict[str, bool]:
    """Log which media capabilities are available and return the status map."""
    if not enabled:
        logger.info("Tool disabled: {'tool': 'ffmpeg', 'reason': 'config'}")
        return {'ffmpeg': False, 'ffprobe': False}

    tools = check_tool_availability(ffmpeg_path, ffprobe_path)
    capabilities = {
        'ffmpeg': 'container conversion and preview renditions',
        'ffprobe': 'duration probing',
    }
    for tool, available in tools.items():
        if available:
            logger.info(f"Tool available: {{'tool': {tool!r}, 'capability': {capabilities[tool]!r}}}")
        else:
            logger.warning(f"Tool not found: {{'tool': {tool!r}, 'degraded': {capabilities[tool]!r}}}")
    return tools


def get_installation_instructions(tool_name: str) -> str:
    """Get installation instructions for a missing tool."""
    ffmpeg_instructions = (
        "{tool} is part of FFmpeg. Install it:\n"
        "  - Windows: Download from https://ffmpeg.org/download.html\n"
        "  - macOS: brew install ffmpeg\n"
        "  - Linux: sudo apt-get install ffmpeg (Debian/Ubuntu)\n"
        "           sudo yum install ffmpeg (RHEL/CentOS)"
    )
    if tool_name in ('ffmpeg', 'ffprobe'):
        return ffmpeg_instructions.format(tool=tool_name)
    return f"Please install {tool_name}"
