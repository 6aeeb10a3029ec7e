"""Health check endpoint."""

from fastapi import APIRouter, Request

from ... import __version__
from ...common import get_logger
from ...ingest.tool_checker import check_tool_availability

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    transcoder = request.app.state.config.transcoder

    logger.debug("Health check requested")

    tools = check_tool_availability(transcoder.ffmpeg_path, transcoder.ffprobe_path)
    return {
        "status": "healthy",
        "version": __version__,
        "transcoding": transcoder.enabled,
        "tools": tools,
    }
