"""Map selected clips to final cut points.

Word-index boundaries are resolved through the transcript word timings, then
each boundary is pulled onto a nearby silence edge so cuts land between
sentences rather than mid-breath.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from clipora.config import settings
from clipora.pipeline.selection import TimestampCandidate, WordIndexCandidate
from clipora.services.transcription import Word
from clipora.utils.ffmpeg import SilenceInterval

logger = logging.getLogger(__name__)


@dataclass
class MappedClip:
    """A clip with final start/end seconds and its selection metadata."""
    start_time: float
    end_time: float
    raw_start: float
    raw_end: float
    title: str = ""
    hook: str = ""
    hook_score: Optional[float] = None
    strategic_rank: int = 0
    rationale: str = ""

    @property
    def duration(self) -> float:
        return round(self.end_time - self.start_time, 3)


def snap_to_silence(
    timestamp: float,
    silences: Sequence[SilenceInterval],
    window: Optional[float] = None,
) -> float:
    """
    Move a timestamp to the closest silence edge within window seconds.

    Both edges of each interval are candidates; the earliest edge wins a tie.
    A timestamp with no edge in range is returned unchanged.
    """
    window = settings.snap_window_seconds if window is None else window
    best = None
    best_distance = None
    for silence in silences:
        for edge in (silence.start, silence.end):
            distance = abs(edge - timestamp)
            if distance > window:
                continue
            if best is None or distance < best_distance or (distance == best_distance and edge < best):
                best = edge
                best_distance = distance
    return timestamp if best is None else best


def _snap_pair(
    raw_start: float,
    raw_end: float,
    silences: Sequence[SilenceInterval],
    window: Optional[float],
    video_duration: Optional[float],
    min_duration: Optional[float],
) -> tuple:
    start = snap_to_silence(raw_start, silences, window)
    end = snap_to_silence(raw_end, silences, window)

    if video_duration is not None:
        start = max(0.0, min(start, video_duration))
        end = max(0.0, min(end, video_duration))
        raw_start = max(0.0, min(raw_start, video_duration))
        raw_end = max(0.0, min(raw_end, video_duration))

    if end <= start:
        return raw_start, raw_end
    if min_duration is not None and end - start < min_duration <= raw_end - raw_start:
        return raw_start, raw_end
    return start, end


def map_word_clip(
    candidate: WordIndexCandidate,
    words: Sequence[Word],
    silences: Sequence[SilenceInterval],
    window: Optional[float] = None,
    video_duration: Optional[float] = None,
) -> MappedClip:
    """Resolve a word-index clip to seconds and snap both ends."""
    raw_start = words[candidate.start_word_index].start
    raw_end = words[candidate.end_word_index].end
    start, end = _snap_pair(raw_start, raw_end, silences, window, video_duration, None)
    return MappedClip(
        start_time=start,
        end_time=end,
        raw_start=raw_start,
        raw_end=raw_end,
        title=candidate.title,
        hook=candidate.hook,
        hook_score=candidate.hook_score,
        strategic_rank=candidate.strategic_rank,
        rationale=candidate.rationale,
    )


def map_timestamp_clip(
    candidate: TimestampCandidate,
    silences: Sequence[SilenceInterval],
    window: Optional[float] = None,
    video_duration: Optional[float] = None,
    min_duration: Optional[float] = None,
) -> MappedClip:
    """Snap a second-granularity clip; keeps the raw bounds if snapping would shrink it below min_duration."""
    raw_start = candidate.start_time_seconds
    raw_end = candidate.end_time_seconds
    start, end = _snap_pair(raw_start, raw_end, silences, window, video_duration, min_duration)
    return MappedClip(
        start_time=start,
        end_time=end,
        raw_start=raw_start,
        raw_end=raw_end,
        title=candidate.title,
        hook=candidate.hook,
        hook_score=candidate.hook_score,
        strategic_rank=candidate.strategic_rank,
        rationale=candidate.rationale,
    )


def resolve_overlaps(clips: Sequence[MappedClip]) -> List[MappedClip]:
    """
    Undo snapping where it made neighbouring clips overlap.

    Selected clips never overlap before snapping, so falling back to the raw
    bounds of the two touching ends restores the ordering.
    """
    ordered = sorted(clips, key=lambda c: c.start_time)
    for prev, current in zip(ordered, ordered[1:]):
        if current.start_time < prev.end_time:
            logger.debug(
                f"Snapped clips overlap ({prev.end_time:.2f} > {current.start_time:.2f}); using raw bounds"
            )
            prev.end_time = prev.raw_end
            current.start_time = current.raw_start
    return ordered


def map_word_clips(
    candidates: Sequence[WordIndexCandidate],
    words: Sequence[Word],
    silences: Sequence[SilenceInterval],
    window: Optional[float] = None,
    video_duration: Optional[float] = None,
) -> List[MappedClip]:
    mapped = [map_word_clip(c, words, silences, window, video_duration) for c in candidates]
    return resolve_overlaps(mapped)


def map_timestamp_clips(
    candidates: Sequence[TimestampCandidate],
    silences: Sequence[SilenceInterval],
    window: Optional[float] = None,
    video_duration: Optional[float] = None,
    min_duration: Optional[float] = None,
) -> List[MappedClip]:
    mapped = [
        map_timestamp_clip(c, silences, window, video_duration, min_duration)
        for c in candidates
    ]
    return resolve_overlaps(mapped)
