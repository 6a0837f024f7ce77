"""ElevenLabs sound generation."""
import logging

import httpx

from clipora.config import settings
from clipora.errors import AudioGenerationError, ConfigurationError

logger = logging.getLogger(__name__)

SOUND_GENERATION_PATH = "/v1/sound-generation"


async def generate_audio(text: str, duration_seconds: float) -> bytes:
    """
    Generate a sound effect or music bed from a text prompt.

    Args:
        text: Prompt describing the sound
        duration_seconds: Requested length; callers cap it per sound type

    Returns:
        MP3 audio bytes

    Raises:
        ConfigurationError: If no API key is configured
        AudioGenerationError: If the service rejects the request or is unreachable
    """
    if not settings.eleven_labs_api_key:
        raise ConfigurationError("Missing required configuration: eleven_labs_api_key")

    url = f"{settings.eleven_labs_base_url.rstrip('/')}{SOUND_GENERATION_PATH}"
    payload = {
        "text": text,
        "duration_seconds": duration_seconds,
        "prompt_influence": settings.sound_prompt_influence,
    }
    headers = {
        "xi-api-key": settings.eleven_labs_api_key,
        "Content-Type": "application/json",
    }

    logger.info(f"Generating {duration_seconds:.1f}s of audio: {text[:80]!r}")
    try:
        async with httpx.AsyncClient(timeout=settings.eleven_labs_timeout_seconds) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise AudioGenerationError(f"ElevenLabs request failed: {e}")

    if response.status_code < 200 or response.status_code >= 300:
        raise AudioGenerationError(
            f"ElevenLabs API error {response.status_code}: {response.text[:500]}"
        )

    return response.content
