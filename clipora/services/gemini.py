"""Generative model client (Gemini on Vertex AI through google-genai)."""
import json
import logging
from typing import Any, Optional

from google import genai
from google.genai import types

from clipora.config import settings

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence around a JSON payload, if present."""
    text = (text or "").strip()
    if "```json" in text:
        text = text.split("```json", 1)[1].split("```", 1)[0]
    elif text.startswith("```"):
        text = text.split("```", 1)[1].split("```", 1)[0]
    return text.strip()


def parse_json_payload(text: str) -> Any:
    """Decode model text as JSON. Raises ValueError on malformed output."""
    try:
        return json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ValueError(f"Model returned malformed JSON: {e}")


class GenerativeModelClient:
    """Thin async wrapper over the google-genai client in JSON mode."""

    def __init__(self, client: Optional[genai.Client] = None):
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            settings.require("gcp_project_id")
            self._client = genai.Client(
                vertexai=True,
                project=settings.gcp_project_id,
                location=settings.gcp_region,
            )
        return self._client

    async def generate_json(
        self,
        prompt: str,
        response_schema: Any = None,
        video_uri: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Run one JSON-mode generation.

        Args:
            prompt: Instruction text
            response_schema: Schema (pydantic model or dict) the output must follow
            video_uri: Optional gs:// URI attached as a video part
            model: Model name (defaults to the selection model)
            temperature: Sampling temperature (defaults to the selection temperature)

        Returns:
            Raw response text
        """
        model = model or settings.selection_model
        contents = []
        if video_uri:
            contents.append(types.Part.from_uri(file_uri=video_uri, mime_type="video/mp4"))
        contents.append(types.Part.from_text(text=prompt))

        config = types.GenerateContentConfig(
            temperature=settings.selection_temperature if temperature is None else temperature,
            response_mime_type="application/json",
            response_schema=response_schema,
        )

        logger.debug(f"Calling {model} ({len(prompt)} prompt chars, video={bool(video_uri)})")
        response = await self.client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )
        return response.text or ""
