"""Media transforms delegated to ffmpeg and ffprobe.

Every operation is best effort. Callers get a typed result that tells
"tool not installed" apart from "tool ran and failed"; nothing here raises
for a failed transform.
"""

import logging
import math
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol

from ..config import TranscoderConfig

logger = logging.getLogger(__name__)


class TranscodeStatus(Enum):
    OK = 'ok'
    UNAVAILABLE = 'unavailable'
    FAILED = 'failed'


@dataclass(frozen=True)
class TranscodeResult:
    status: TranscodeStatus
    output: Optional[Path] = None
    detail: str = ''

    @property
    def ok(self) -> bool:
        return self.status is TranscodeStatus.OK


@dataclass(frozen=True)
class ProbeResult:
    status: TranscodeStatus
    seconds: int = 0  # 0 means unknown, not zero-length

    @property
    def ok(self) -> bool:
        return self.status is TranscodeStatus.OK


class Transcoder(Protocol):
    """Capability interface for media transforms."""

    def convert(self, source: Path, target: Path) -> TranscodeResult:
        """Re-encode ``source`` into an H.264/AAC MP4 at ``target``."""
        ...

    def render_preview(self, source: Path, target: Path) -> TranscodeResult:
        """Write a reduced-resolution MP4 of ``source`` to ``target``."""
        ...

    def probe_duration(self, source: Path) -> ProbeResult:
        """Duration of ``source`` in whole seconds."""
        ...


class NullTranscoder:
    """Transcoder used when transforms are disabled: always unavailable."""

    def convert(self, source: Path, target: Path) -> TranscodeResult:
        return TranscodeResult(TranscodeStatus.UNAVAILABLE, detail='transcoding disabled')

    def render_preview(self, source: Path, target: Path) -> TranscodeResult:
        return TranscodeResult(TranscodeStatus.UNAVAILABLE, detail='transcoding disabled')

    def probe_duration(self, source: Path) -> ProbeResult:
        return ProbeResult(TranscodeStatus.UNAVAILABLE)


class FfmpegTranscoder:
    """Transcoder shelling out to ffmpeg/ffprobe."""

    def __init__(
        self,
        ffmpeg_path: str = 'ffmpeg',
        ffprobe_path: str = 'ffprobe',
        timeout_seconds: int = 600,
        probe_timeout_seconds: int = 30,
        preview_height: int = 720,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout_seconds = timeout_seconds
        self.probe_timeout_seconds = probe_timeout_seconds
        self.preview_height = preview_height

    @classmethod
    def from_config(cls, config: TranscoderConfig) -> 'FfmpegTranscoder':
        return cls(
            ffmpeg_path=config.ffmpeg_path,
            ffprobe_path=config.ffprobe_path,
            timeout_seconds=config.timeout_seconds,
            probe_timeout_seconds=config.probe_timeout_seconds,
            preview_height=config.preview_height,
        )

    def convert_args(self, source: Path, target: Path) -> List[str]:
        return [
            self.ffmpeg_path, '-i', str(source),
            '-c:v', 'libx264', '-c:a', 'aac',
            '-preset', 'medium', '-crf', '23',
            '-movflags', '+faststart',
            '-y', str(target),
        ]

    def preview_args(self, source: Path, target: Path) -> List[str]:
        return [
            self.ffmpeg_path, '-i', str(source),
            '-vf', f'scale=-2:{self.preview_height}',
            '-c:v', 'libx264', '-preset', 'fast', '-crf', '23',
            '-c:a', 'aac', '-b:a', '128k',
            '-movflags', '+faststart',
            '-y', str(target),
        ]

    def probe_args(self, source: Path) -> List[str]:
        return [
            self.ffprobe_path, '-v', 'error',
            '-show_entries', 'format=duration',
            '-of', 'default=noprint_wrappers=1:nokey=1',
            str(source),
        ]

    def _run_encoder(self, args: List[str], target: Path, operation: str) -> TranscodeResult:
        if shutil.which(self.ffmpeg_path) is None:
            return TranscodeResult(TranscodeStatus.UNAVAILABLE, detail=f'{self.ffmpeg_path} not found')

        try:
            subprocess.run(
                args,
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                check=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError:
            return TranscodeResult(TranscodeStatus.UNAVAILABLE, detail=f'{self.ffmpeg_path} not found')
        except subprocess.CalledProcessError as e:
            stderr_tail = (e.stderr or '').strip().splitlines()[-1:] or ['']
            logger.warning(f"ffmpeg failed: {{'operation': {operation!r}, 'returncode': {e.returncode}, 'stderr': {stderr_tail[0]!r}}}")
            target.unlink(missing_ok=True)
            return TranscodeResult(TranscodeStatus.FAILED, detail=f'exit code {e.returncode}')
        except subprocess.TimeoutExpired:
            logger.warning(f"ffmpeg timed out: {{'operation': {operation!r}, 'timeout': {self.timeout_seconds}}}")
            target.unlink(missing_ok=True)
            return TranscodeResult(TranscodeStatus.FAILED, detail=f'timed out after {self.timeout_seconds}s')

        if not target.exists() or target.stat().st_size == 0:
            return TranscodeResult(TranscodeStatus.FAILED, detail='no output produced')

        return TranscodeResult(TranscodeStatus.OK, output=target)

    def convert(self, source: Path, target: Path) -> TranscodeResult:
        return self._run_encoder(self.convert_args(source, target), target, 'convert')

    def render_preview(self, source: Path, target: Path) -> TranscodeResult:
        return self._run_encoder(self.preview_args(source, target), target, 'preview')

    def probe_duration(self, source: Path) -> ProbeResult:
        if shutil.which(self.ffprobe_path) is None:
            return ProbeResult(TranscodeStatus.UNAVAILABLE)

        try:
            result = subprocess.run(
                self.probe_args(source),
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                check=True,
                timeout=self.probe_timeout_seconds,
            )
        except FileNotFoundError:
            return ProbeResult(TranscodeStatus.UNAVAILABLE)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.debug(f"ffprobe failed: {{'file': {source.name!r}, 'error': {str(e)!r}}}")
            return ProbeResult(TranscodeStatus.FAILED)

        return parse_duration(result.stdout)


def parse_duration(output: str) -> ProbeResult:
    """Parse ffprobe's bare duration output into whole seconds."""
    text = output.strip()
    try:
        seconds = float(text)
    except ValueError:
        return ProbeResult(TranscodeStatus.FAILED)
    if not math.isfinite(seconds) or seconds < 0:
        return ProbeResult(TranscodeStatus.FAILED)
    return ProbeResult(TranscodeStatus.OK, seconds=int(round(seconds)))


def build_transcoder(config: TranscoderConfig) -> Transcoder:
    """Transcoder for the given configuration."""
    if not config.enabled:
        return NullTranscoder()
    return FfmpegTranscoder.from_config(config)
