"""Progress frames streamed to the caller of an ingestion job."""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .models import ProcessingResult

logger = logging.getLogger(__name__)


class Phase(Enum):
    UPLOADING = 'uploading'
    PROCESSING = 'processing'
    COMPLETED = 'completed'


@dataclass(frozen=True)
class ProgressFrame:
    progress: float
    step: str
    status: Optional[Phase] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'progress': self.progress, 'step': self.step}
        if self.status is not None:
            data['status'] = self.status.value
        return data


@dataclass(frozen=True)
class ResultFrame:
    results: ProcessingResult

    def to_dict(self) -> Dict[str, Any]:
        return {'complete': True, 'results': self.results.to_dict()}


@dataclass(frozen=True)
class ErrorFrame:
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.error}


Frame = Union[ProgressFrame, ResultFrame, ErrorFrame]


def encode_frame(frame: Frame) -> str:
    """Serialize a frame as one NDJSON line."""
    return json.dumps(frame.to_dict(), separators=(',', ':')) + '\n'


class ProgressReporter:
    """Builds progress frames with a non-decreasing percentage.

    The processing phase maps entry completions onto the 20-80 band so
    callers see steady movement regardless of archive size.
    """

    PROCESSING_START = 20.0
    PROCESSING_SPAN = 60.0

    def __init__(self) -> None:
        self._last = 0.0

    @property
    def last(self) -> float:
        return self._last

    def frame(self, progress: float, step: str, status: Optional[Phase] = None) -> ProgressFrame:
        value = max(0.0, min(100.0, float(progress)))
        value = max(value, self._last)
        self._last = value
        return ProgressFrame(round(value, 1), step, status)

    def entry_frame(self, done: int, total: Optional[int], step: str) -> ProgressFrame:
        """Frame for ``done`` completed entries out of ``total`` (None if unknown)."""
        if total:
            fraction = min(1.0, done / total)
        else:
            # Unknown total: approach the end of the band without reaching it
            fraction = done / (done + 10.0)
        return self.frame(self.PROCESSING_START + self.PROCESSING_SPAN * fraction, step, Phase.PROCESSING)

    def complete(self, step: str = 'Processing complete!') -> ProgressFrame:
        return self.frame(100.0, step, Phase.COMPLETED)
