"""Sound-design suggestions from the assistant model, with deterministic fallbacks."""
import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel

from clipora.config import settings
from clipora.services.gemini import GenerativeModelClient, parse_json_payload

logger = logging.getLogger(__name__)

MAX_LABEL_CHARS = 15
TRANSCRIPT_EXCERPT_CHARS = 600


class SoundIdea(BaseModel):
    label: str
    prompt: str


class SoundSuggestions(BaseModel):
    tone: str
    vibe: str
    sfx: List[SoundIdea]
    music: List[SoundIdea]


class TimedSoundIdea(BaseModel):
    timestamp_seconds: float = 0.0
    label: str = "SFX"
    prompt: str = "sound effect"
    duration_seconds: float = 2.0


@dataclass
class PlannedSfx:
    """A sound effect placed at a moment of a clip, not yet generated."""
    timestamp_seconds: float
    label: str
    prompt: str
    duration_seconds: float


FALLBACK_SUGGESTIONS = SoundSuggestions(
    tone="energetic",
    vibe="dynamic engaging content",
    sfx=[
        SoundIdea(label="Impact Hit", prompt="powerful bass impact hit with reverb tail sound effect"),
        SoundIdea(label="Whoosh", prompt="cinematic whoosh swipe transition sound effect"),
        SoundIdea(label="Crowd Cheer", prompt="crowd cheering and gasping reaction sound effect"),
    ],
    music=[
        SoundIdea(
            label="Hype Beat",
            prompt="upbeat trap hip hop background beat with bass drops, no lyrics, background music",
        ),
        SoundIdea(
            label="Cinematic Rise",
            prompt="orchestral swell building to triumphant peak, no lyrics, background music",
        ),
    ],
)

FALLBACK_TIMED_SFX = [
    PlannedSfx(0.3, "Intro Boom", "deep bass impact hit sound effect", 2.0),
    PlannedSfx(2.0, "Whoosh", "cinematic whoosh transition sound effect", 1.0),
    PlannedSfx(4.0, "Crowd Wow", "crowd amazed wow reaction sound effect", 2.0),
]


def clamp_sfx_timestamp(timestamp: float, clip_duration: float) -> float:
    """Keep a sound start inside the clip, at least half a second before its end."""
    return max(0.0, min(timestamp, clip_duration - 0.5))


def clamp_sfx_duration(duration: float) -> float:
    return max(settings.min_sfx_duration, min(duration, settings.max_sfx_duration))


def _clip_info(title: Optional[str], rationale: Optional[str], duration: float, excerpt: str) -> str:
    return (
        "CLIP INFO:\n"
        f"- Title: {title or 'Untitled'}\n"
        f"- Duration: {duration} seconds\n"
        f'- Transcript excerpt: "{excerpt or "N/A"}"\n'
        f"- Rationale: {rationale or 'N/A'}"
    )


def build_suggestions_prompt(
    title: Optional[str],
    rationale: Optional[str],
    hook_score: Optional[float],
    duration: float,
    excerpt: str,
) -> str:
    return f"""You are a TikTok sound designer. Analyze this video clip and suggest specific sound effect and background music prompts to make it more engaging and viral.

{_clip_info(title, rationale, duration, excerpt)}
- Hook Score: {hook_score if hook_score is not None else 'N/A'}/10

Return a JSON object with "tone" (one or two words), "vibe" (a short punchy phrase), "sfx" and "music" lists of {{"label", "prompt"}}.

Rules:
- sfx: exactly 3 suggestions, each prompt ends with "sound effect"
- music: exactly 2 suggestions, each prompt ends with "no lyrics, background music"
- Keep label under {MAX_LABEL_CHARS} characters
- Make prompts specific and evocative, matching the clip's tone"""


def build_timed_sfx_prompt(
    title: Optional[str],
    rationale: Optional[str],
    duration: float,
    excerpt: str,
) -> str:
    return f"""You are a TikTok sound designer. Analyze this video clip and identify exactly 2-4 specific moments that need a sound effect to make it more engaging and viral.

{_clip_info(title, rationale, duration, excerpt)}

Return a JSON array of {{"timestamp_seconds", "label", "prompt", "duration_seconds"}}.

Rules:
- Return exactly 2-4 items
- timestamp_seconds must be a number >= 0 and < {duration}
- duration_seconds must be between {settings.min_sfx_duration} and {settings.max_sfx_duration}
- label must be under {MAX_LABEL_CHARS} characters
- prompt must end with "sound effect" and be specific and evocative
- Space the timestamps throughout the clip for best effect"""


class SoundAnalyzer:
    """Asks the assistant model where and what sounds a clip needs."""

    def __init__(self, model_client: Optional[GenerativeModelClient] = None):
        self.model_client = model_client or GenerativeModelClient()

    async def suggest_sounds(
        self,
        title: Optional[str],
        rationale: Optional[str],
        hook_score: Optional[float],
        duration: float,
        transcript: Optional[str],
    ) -> SoundSuggestions:
        """Tone, vibe and prompt ideas for 3 effects and 2 music beds."""
        excerpt = (transcript or "")[:TRANSCRIPT_EXCERPT_CHARS]
        prompt = build_suggestions_prompt(title, rationale, hook_score, duration, excerpt)
        try:
            text = await self.model_client.generate_json(
                prompt,
                response_schema=SoundSuggestions,
                model=settings.assistant_model,
            )
            suggestions = SoundSuggestions.model_validate(parse_json_payload(text))
        except Exception as e:
            logger.error(f"Sound suggestion failed, using fallback: {e}")
            return FALLBACK_SUGGESTIONS.model_copy(deep=True)

        for idea in suggestions.sfx + suggestions.music:
            idea.label = idea.label[:MAX_LABEL_CHARS]
        return suggestions

    async def plan_timed_sfx(
        self,
        title: Optional[str],
        rationale: Optional[str],
        duration: Optional[float],
        transcript: Optional[str],
    ) -> List[PlannedSfx]:
        """Pick 2-4 moments of a clip for sound effects, clamped to the clip."""
        clip_duration = duration or 10.0
        excerpt = (transcript or "")[:TRANSCRIPT_EXCERPT_CHARS]
        prompt = build_timed_sfx_prompt(title, rationale, clip_duration, excerpt)
        try:
            text = await self.model_client.generate_json(
                prompt,
                response_schema=List[TimedSoundIdea],
                model=settings.assistant_model,
            )
            payload = parse_json_payload(text)
            if not isinstance(payload, list) or not 2 <= len(payload) <= 4:
                raise ValueError("expected 2-4 sound effect items")
            ideas = [TimedSoundIdea.model_validate(item) for item in payload]
        except Exception as e:
            logger.error(f"Timed SFX analysis failed, using fallback: {e}")
            return [self._clamp(item, clip_duration) for item in FALLBACK_TIMED_SFX]

        return [
            PlannedSfx(
                timestamp_seconds=clamp_sfx_timestamp(idea.timestamp_seconds, clip_duration),
                label=(idea.label or "SFX")[:MAX_LABEL_CHARS],
                prompt=idea.prompt or "sound effect",
                duration_seconds=clamp_sfx_duration(idea.duration_seconds),
            )
            for idea in ideas
        ]

    @staticmethod
    def _clamp(item: PlannedSfx, clip_duration: float) -> PlannedSfx:
        return PlannedSfx(
            timestamp_seconds=clamp_sfx_timestamp(item.timestamp_seconds, clip_duration),
            label=item.label,
            prompt=item.prompt,
            duration_seconds=item.duration_seconds,
        )
