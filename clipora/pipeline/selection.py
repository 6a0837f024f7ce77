"""Clip selection with a generative model.

The model proposes clip boundaries; everything it returns is treated as an
untrusted payload. It is parsed into pydantic models, checked against the
structural rules (ordering, range, minimum length, no overlap), and the
whole call is retried once before the failure reaches the caller.

Three prompt variants share the same validation and retry core:

* word-index: video + indexed transcript, boundaries are word positions
* timestamp: video + transcript + current clips + creator feedback (re-analysis)
* text-only: transcript + shot timestamps, used when no word timings exist
"""
import json
import logging
import math
from typing import Any, Callable, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from clipora.config import settings
from clipora.errors import ClipValidationError
from clipora.services.gemini import GenerativeModelClient, parse_json_payload
from clipora.services.transcription import Word
from clipora.utils.retry import retry_async

logger = logging.getLogger(__name__)


# =============================================================================
# Candidate schemas
# =============================================================================

class WordIndexCandidate(BaseModel):
    """A clip proposed as an inclusive range of transcript word positions."""
    start_word_index: int
    end_word_index: int
    title: str = ""
    hook: str = ""
    hook_score: Optional[float] = None
    strategic_rank: int = 0
    rationale: str = ""


class TimestampCandidate(BaseModel):
    """A clip proposed directly in seconds."""
    start_time_seconds: float
    end_time_seconds: float
    title: str = ""
    hook: str = ""
    hook_score: Optional[float] = None
    strategic_rank: int = 0
    rationale: str = ""


class WordIndexSelection(BaseModel):
    clips: List[WordIndexCandidate]


class TimestampSelection(BaseModel):
    clips: List[TimestampCandidate]


# =============================================================================
# Policy
# =============================================================================

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def target_clip_count(duration_seconds: float) -> int:
    """One clip per three minutes of video, bounded to [3, 15]."""
    minutes = duration_seconds / 60
    count = round_half_up(minutes / 3)
    return max(settings.min_target_clips, min(settings.max_target_clips, count))


# =============================================================================
# Parsing and validation
# =============================================================================

def parse_selection(text: str, schema: type) -> list:
    """Decode and schema-check a model response, returning its clips."""
    try:
        payload = parse_json_payload(text)
    except ValueError as e:
        raise ClipValidationError(str(e))

    if not isinstance(payload, dict) or not isinstance(payload.get("clips"), list) or not payload["clips"]:
        raise ClipValidationError("Empty or invalid clips array")

    try:
        return schema.model_validate(payload).clips
    except ValidationError as e:
        raise ClipValidationError(f"Clip payload does not match schema: {e.error_count()} errors")


def validate_word_clips(
    clips: Sequence[WordIndexCandidate],
    word_count: int,
    min_words: Optional[int] = None,
) -> None:
    """
    Check word-index clips against the transcript.

    Raises:
        ClipValidationError: On empty output, inverted or out-of-range indices,
            clips shorter than min_words, or overlapping clips
    """
    min_words = settings.min_clip_words if min_words is None else min_words
    if not clips:
        raise ClipValidationError("Empty or invalid clips array")

    for clip in clips:
        start, end = clip.start_word_index, clip.end_word_index
        if start >= end:
            raise ClipValidationError(f"Invalid word indices: start={start} end={end}")
        if start < 0 or end >= word_count:
            raise ClipValidationError(
                f"Invalid word indices: start={start} end={end} word_count={word_count}"
            )
        if end - start + 1 < min_words:
            raise ClipValidationError(
                f"Clip too short: {end - start + 1} words (minimum {min_words})"
            )

    ordered = sorted(clips, key=lambda c: c.start_word_index)
    for prev, current in zip(ordered, ordered[1:]):
        if current.start_word_index <= prev.end_word_index:
            raise ClipValidationError(
                f"Clips overlap: clip ending at word {prev.end_word_index} overlaps "
                f"with clip starting at word {current.start_word_index}"
            )


def validate_timestamp_clips(
    clips: Sequence[TimestampCandidate],
    video_duration: float,
    min_seconds: Optional[float] = None,
) -> None:
    """
    Check second-granularity clips against the video duration.

    Raises:
        ClipValidationError: On empty output, inverted or out-of-range bounds,
            clips shorter than min_seconds, or overlapping clips
    """
    min_seconds = settings.min_clip_seconds if min_seconds is None else min_seconds
    if not clips:
        raise ClipValidationError("Empty or invalid clips array")

    for clip in clips:
        start, end = clip.start_time_seconds, clip.end_time_seconds
        if start >= end:
            raise ClipValidationError(f"Invalid timestamps: start={start} end={end}")
        if start < 0 or end > video_duration:
            raise ClipValidationError(
                f"Timestamp out of range: start={start} end={end} max={video_duration}"
            )
        if end - start < min_seconds:
            raise ClipValidationError(
                f"Clip too short: {end - start:.1f}s (minimum {min_seconds:g}s)"
            )

    ordered = sorted(clips, key=lambda c: c.start_time_seconds)
    for prev, current in zip(ordered, ordered[1:]):
        if current.start_time_seconds < prev.end_time_seconds:
            raise ClipValidationError(
                f"Clips overlap: clip ending at {prev.end_time_seconds} overlaps "
                f"with clip starting at {current.start_time_seconds}"
            )


# =============================================================================
# Prompts
# =============================================================================

CLIP_FIELDS = """- title: short descriptive title for the clip (3-8 words)
- hook: the opening line or hook text of the clip
- hook_score: 1-10 rating for viral potential (10 = extremely viral)
- strategic_rank: posting order (1 = post first)
- rationale: one sentence explaining why this clip is valuable"""


def _script_section(script: Optional[str]) -> str:
    if not script:
        return ""
    return f"ORIGINAL SCRIPT (creator's intended narrative):\n{script}\n\n"


def format_indexed_transcript(words: Sequence[Word]) -> str:
    return " ".join(f"[{i}] {w.word}" for i, w in enumerate(words))


def build_word_index_prompt(
    words: Sequence[Word],
    video_duration: float,
    target_count: int,
    script: Optional[str] = None,
    min_words: Optional[int] = None,
) -> str:
    min_words = settings.min_clip_words if min_words is None else min_words
    return f"""You are a viral content strategist and editor. Watch the video and read its transcript, then identify the {target_count} most engaging clips suitable for TikTok, Instagram Reels, and YouTube Shorts.

{_script_section(script)}TOTAL VIDEO DURATION: {video_duration} seconds

TRANSCRIPT (each word is prefixed with its index):
{format_indexed_transcript(words)}

For each clip, provide:
- start_word_index: index of the first word of the clip
- end_word_index: index of the last word of the clip
{CLIP_FIELDS}

CRITICAL RULES:
- Each clip MUST be a COMPLETE, SELF-CONTAINED segment with a full topic, story, argument, or bit.
- Each clip must span at least {min_words} words.
- Word indices must be between 0 and {len(words) - 1}.
- start_word_index must be less than end_word_index for every clip.
- Clips must not overlap.
- Use the VIDEO to assess visual engagement, energy, pacing, and where topics naturally begin and end.
- Use the TRANSCRIPT to identify compelling verbal content.

Return ONLY a valid JSON object."""


def _field(clip: Any, key: str) -> Any:
    if isinstance(clip, dict):
        return clip.get(key)
    return getattr(clip, key, None)


def summarize_clips(clips: Sequence[Any]) -> List[dict]:
    """Describe existing clips (ORM rows or dicts) for the re-analysis prompt."""
    return [
        {
            "index": index,
            "title": _field(clip, "title"),
            "start_time_seconds": _field(clip, "start_time"),
            "end_time_seconds": _field(clip, "end_time"),
            "hook": _field(clip, "hook"),
            "hook_score": _field(clip, "hook_score"),
            "rationale": _field(clip, "rationale"),
        }
        for index, clip in enumerate(clips, start=1)
    ]


def build_reanalysis_prompt(
    transcription: str,
    video_duration: float,
    current_clips: Sequence[Any],
    feedback: str,
    target_count: int,
) -> str:
    current = json.dumps(summarize_clips(current_clips), indent=2)
    return f"""You are a viral content strategist. You previously analyzed this video and identified clips.
The creator has given feedback on how to improve the clip selection.

TRANSCRIPT:
{transcription}

TOTAL VIDEO DURATION: {video_duration} seconds

CURRENT CLIPS:
{current}

CREATOR'S FEEDBACK: "{feedback}"

Re-analyze the video and provide {target_count} improved clips based on the feedback.
Incorporate the creator's suggestions while maintaining high viral potential.

For each clip, provide:
- start_time_seconds: start time as a decimal number (e.g. 12.5)
- end_time_seconds: end time as a decimal number (e.g. 45.3)
{CLIP_FIELDS}

CRITICAL RULES:
- Each clip MUST be a COMPLETE, SELF-CONTAINED segment with a full topic, story, argument, or bit.
- Clip duration should be 30-90 seconds. Longer is better than cutting off early.
- Clips must not overlap.
- All timestamps must be within 0 and {video_duration}.
- start_time_seconds must be less than end_time_seconds for every clip.
- Use the VIDEO to assess visual engagement, energy, pacing, and where topics naturally begin and end.
- Use the TRANSCRIPT to identify compelling verbal content.
- Prioritize the creator's feedback while maintaining quality.

Return ONLY a valid JSON object."""


def build_text_prompt(
    transcription: str,
    shot_timestamps: Sequence[Any],
    video_duration: float,
    target_count: int,
    script: Optional[str] = None,
) -> str:
    shots = [s.to_dict() if hasattr(s, "to_dict") else s for s in shot_timestamps[: settings.max_prompt_shots]]
    return f"""You are a viral content strategist and editor. Given the following information about a video, identify the {target_count} most engaging clips suitable for TikTok, Instagram Reels, and YouTube Shorts.

{_script_section(script)}VIDEO TRANSCRIPTION:
{transcription}

SHOT CHANGE TIMESTAMPS (seconds):
{json.dumps(shots)}

TOTAL VIDEO DURATION: {video_duration} seconds

For each clip, provide:
- start_time_seconds: precise start in seconds (decimal)
- end_time_seconds: precise end in seconds (decimal)
{CLIP_FIELDS}

PRIORITIZE moments with:
- Strong emotional language or reactions
- Surprising statements or revelations
- Questions that create curiosity gaps
- Key moments from the script's intended narrative
- Natural beginning/end points at shot changes

Clips must not overlap, must last at least {settings.min_clip_seconds:g} seconds, and must start and end within the video duration.

Return ONLY a valid JSON object."""


# =============================================================================
# Selector
# =============================================================================

class ClipSelector:
    """Runs a selection prompt through the model until a valid clip set comes back."""

    def __init__(
        self,
        model_client: Optional[GenerativeModelClient] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.model_client = model_client or GenerativeModelClient()
        self.max_attempts = settings.selection_max_attempts if max_attempts is None else max_attempts
        self.timeout = settings.selection_timeout_seconds if timeout is None else timeout

    async def _select(
        self,
        label: str,
        prompt: str,
        schema: type,
        check: Callable[[list], None],
        video_uri: Optional[str] = None,
    ) -> list:
        async def attempt() -> list:
            text = await self.model_client.generate_json(
                prompt,
                response_schema=schema,
                video_uri=video_uri,
                model=settings.selection_model,
                temperature=settings.selection_temperature,
            )
            clips = parse_selection(text, schema)
            check(clips)
            return clips

        clips = await retry_async(
            attempt,
            max_attempts=self.max_attempts,
            timeout=self.timeout,
            label=label,
        )
        logger.info(f"{label} identified {len(clips)} clips")
        return clips

    async def select_word_clips(
        self,
        video_uri: str,
        words: Sequence[Word],
        video_duration: float,
        script: Optional[str] = None,
    ) -> List[WordIndexCandidate]:
        """
        Select clips as word-index ranges over the transcript.

        Raises:
            ClipValidationError: If the transcript is too short to hold a clip,
                or every attempt returned an invalid clip set
            SelectionTimeoutError: If the final attempt timed out
        """
        if len(words) < settings.min_clip_words:
            raise ClipValidationError(
                f"Transcript has {len(words)} words; at least {settings.min_clip_words} are needed for a clip"
            )

        prompt = build_word_index_prompt(words, video_duration, target_clip_count(video_duration), script)
        return await self._select(
            "Word-index clip selection",
            prompt,
            WordIndexSelection,
            lambda clips: validate_word_clips(clips, len(words)),
            video_uri=video_uri,
        )

    async def select_timestamp_clips(
        self,
        video_uri: Optional[str],
        transcription: str,
        video_duration: float,
        current_clips: Sequence[Any],
        feedback: str,
    ) -> List[TimestampCandidate]:
        """Re-select clips in seconds, steering the model with creator feedback."""
        prompt = build_reanalysis_prompt(
            transcription,
            video_duration,
            current_clips,
            feedback,
            target_clip_count(video_duration),
        )
        return await self._select(
            "Clip re-analysis",
            prompt,
            TimestampSelection,
            lambda clips: validate_timestamp_clips(clips, video_duration),
            video_uri=video_uri,
        )

    async def select_from_text(
        self,
        transcription: str,
        shot_timestamps: Sequence[Any],
        video_duration: float,
        script: Optional[str] = None,
    ) -> List[TimestampCandidate]:
        """Select clips in seconds from the plain transcript and shot changes."""
        prompt = build_text_prompt(
            transcription,
            shot_timestamps,
            video_duration,
            target_clip_count(video_duration),
            script,
        )
        return await self._select(
            "Text-only clip selection",
            prompt,
            TimestampSelection,
            lambda clips: validate_timestamp_clips(clips, video_duration),
        )
