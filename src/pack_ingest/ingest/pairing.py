"""Before/after grouping and table-file matching.

All functions here are pure. Name inference is heuristic, so each step is
a small function with its own tests rather than logic inlined into the
ingestion loop.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import PreviewPair
from ..common.path_utils import split_segments

logger = logging.getLogger(__name__)

BEFORE = 'before'
AFTER = 'after'

# Checked in order; the first matching suffix wins
_SIDE_SUFFIXES: Tuple[Tuple[str, str], ...] = (
    ('-before', BEFORE),
    ('_before', BEFORE),
    ('-after', AFTER),
    ('_after', AFTER),
)


def split_side(stem: str) -> Tuple[str, Optional[str]]:
    """Split a file stem into (base name, side).

    >>> split_side('Thermal-before')
    ('Thermal', 'before')
    >>> split_side('after')
    ('', 'after')
    >>> split_side('glow')
    ('glow', None)
    """
    lower = stem.lower()
    for suffix, side in _SIDE_SUFFIXES:
        if lower.endswith(suffix):
            return _trim_base(stem[:-len(suffix)]), side
    for side in (BEFORE, AFTER):
        if lower.endswith(side):
            return _trim_base(stem[:-len(side)]), side
    return stem, None


def _trim_base(base: str) -> str:
    return base.rstrip(' -_.')


def detect_side(stem: str) -> Optional[str]:
    """Side of a clip inside a unit folder: suffix first, then any mention."""
    _, side = split_side(stem)
    if side:
        return side
    lower = stem.lower()
    if BEFORE in lower:
        return BEFORE
    if AFTER in lower:
        return AFTER
    return None


def clean_unit_name(base: str) -> str:
    """Unit name for a file placed directly in the pack."""
    return re.sub(r'[_\s]+', '-', base).strip('-')


@dataclass(frozen=True)
class UnitRef:
    unit: str
    side: str


def infer_unit(relative_path: str, pack_name: str) -> Optional[UnitRef]:
    """Infer the preview unit and side of a clip from its archive path.

    - three or more segments: the enclosing folder is the unit
    - two segments: the folder is the unit when the file is a bare
      before/after clip, otherwise the file sits directly in the pack
    - one segment: the file sits directly in the pack

    A file directly in the pack named just before/after belongs to a unit
    named after the pack.

    Returns:
        UnitRef, or None if no side can be recognized
    """
    segments = split_segments(relative_path)
    if not segments:
        return None

    stem = posixpath.splitext(segments[-1])[0]

    if len(segments) >= 3:
        side = detect_side(stem)
        return UnitRef(segments[-2], side) if side else None

    base, side = split_side(stem)
    if side is None:
        return None

    if len(segments) == 2 and base == '':
        return UnitRef(segments[0], side)

    return UnitRef(clean_unit_name(base) or pack_name, side)


def normalize_name(name: str) -> str:
    """Normalize a name for matching.

    >>> normalize_name('  Thermal_Vision  ')
    'thermal-vision'
    """
    lowered = name.lower()
    lowered = re.sub(r'[_\s]+', '-', lowered)
    lowered = re.sub(r'-+', '-', lowered)
    return lowered.strip('-')


@dataclass(frozen=True)
class PreviewCandidate:
    """An uploaded clip that may belong to a preview unit."""

    relative_path: str
    storage_path: str


@dataclass
class PairingReport:
    pairs: List[PreviewPair] = field(default_factory=list)
    incomplete: List[PreviewPair] = field(default_factory=list)
    unrecognized: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)


def group_preview_pairs(candidates: Iterable[PreviewCandidate], pack_name: str) -> PairingReport:
    """Group clips into before/after units.

    Units are keyed by normalized name and keep the spelling of the first
    clip seen. Only units with both sides are returned in ``pairs``.
    """
    units: Dict[str, PreviewPair] = {}
    report = PairingReport()

    for candidate in candidates:
        ref = infer_unit(candidate.relative_path, pack_name)
        if ref is None:
            report.unrecognized.append(candidate.relative_path)
            continue

        key = normalize_name(ref.unit)
        pair = units.setdefault(key, PreviewPair(unit=ref.unit))
        if ref.side == BEFORE:
            if pair.before_path:
                report.duplicates.append(candidate.relative_path)
                continue
            pair.before_path = candidate.storage_path
        else:
            if pair.after_path:
                report.duplicates.append(candidate.relative_path)
                continue
            pair.after_path = candidate.storage_path

    for pair in units.values():
        if pair.complete:
            report.pairs.append(pair)
        else:
            report.incomplete.append(pair)

    if report.duplicates:
        logger.warning(f"Duplicate preview clips ignored: {{'paths': {report.duplicates!r}}}")

    return report


class MatchTier(Enum):
    EXACT = 'exact'
    CONTAINS = 'contains'


@dataclass(frozen=True)
class Match:
    table_name: str
    unit: str
    tier: MatchTier


@dataclass
class MatchReport:
    matches: List[Match] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)

    def unit_for(self, table_name: str) -> Optional[str]:
        for match in self.matches:
            if match.table_name == table_name:
                return match.unit
        return None


def table_stem(table_name: str) -> str:
    return posixpath.splitext(posixpath.basename(table_name))[0]


def match_table_files(table_names: Sequence[str], unit_names: Sequence[str]) -> MatchReport:
    """Match table files to preview units.

    Exact normalized equality is tried for every table file before any
    containment match, so a containment match can never take a unit that
    another table file matches exactly. Each unit receives at most one
    table file. Ties go to the earlier unit in ``unit_names``.
    """
    normalized_units = [(unit, normalize_name(unit)) for unit in unit_names]
    taken: set = set()
    by_table: Dict[int, Match] = {}

    for index, table_name in enumerate(table_names):
        wanted = normalize_name(table_stem(table_name))
        for unit, normalized in normalized_units:
            if unit not in taken and wanted and normalized == wanted:
                by_table[index] = Match(table_name, unit, MatchTier.EXACT)
                taken.add(unit)
                break

    for index, table_name in enumerate(table_names):
        if index in by_table:
            continue
        wanted = normalize_name(table_stem(table_name))
        if not wanted:
            continue
        for unit, normalized in normalized_units:
            if unit in taken or not normalized:
                continue
            if wanted in normalized or normalized in wanted:
                by_table[index] = Match(table_name, unit, MatchTier.CONTAINS)
                taken.add(unit)
                break

    report = MatchReport()
    for index, table_name in enumerate(table_names):
        if index in by_table:
            report.matches.append(by_table[index])
        else:
            report.unmatched.append(table_name)
    return report
