"""Long-form edit guidance: compare the creator's script with what was recorded."""
import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from clipora.config import settings
from clipora.services.gemini import GenerativeModelClient, parse_json_payload

logger = logging.getLogger(__name__)


class SuggestionType(str, Enum):
    PATTERN_INTERRUPT = "pattern_interrupt"
    B_ROLL = "b_roll"
    ON_SCREEN_GRAPHIC = "on_screen_graphic"
    PACING_EDIT = "pacing_edit"


class EditSuggestion(BaseModel):
    timestamp_seconds: float
    type: SuggestionType
    suggestion: str


class EditGuidance(BaseModel):
    overall_feedback: str
    suggestions: List[EditSuggestion] = []


def build_edit_guidance_prompt(script: str, transcription: str) -> str:
    return f"""Analyze the provided script and the final video transcription. Identify discrepancies and suggest edits for the long-form video to improve pacing and engagement. Provide a list of timestamps where a pattern interrupt, B-roll, or on-screen graphic should be added to maintain viewer attention.

Return a JSON object with "overall_feedback" (string) and "suggestions": a list of {{"timestamp_seconds": number, "type": "pattern_interrupt" | "b_roll" | "on_screen_graphic" | "pacing_edit", "suggestion": string}}.

SCRIPT:
{script}

TRANSCRIPTION:
{transcription}"""


async def generate_edit_guidance(
    model_client: GenerativeModelClient,
    script: str,
    transcription: str,
) -> Optional[dict]:
    """
    Ask the assistant model for edit guidance.

    Returns the guidance as a plain dict, or None when the model output is
    unusable. Call failures propagate; the job treats them as non-fatal.
    """
    text = await model_client.generate_json(
        build_edit_guidance_prompt(script, transcription),
        response_schema=EditGuidance,
        model=settings.assistant_model,
    )
    try:
        guidance = EditGuidance.model_validate(parse_json_payload(text))
    except ValueError as e:
        logger.error(f"Failed to parse edit guidance response: {e}")
        return None
    return guidance.model_dump(mode="json")
