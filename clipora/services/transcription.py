"""Speech-to-Text transcription with word-level timings."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from google.cloud import speech_v1 as speech

from clipora.config import settings

logger = logging.getLogger(__name__)


@dataclass
class Word:
    """One transcript token with its time span in seconds."""
    word: str
    start: float
    end: float

    def to_dict(self) -> dict:
        return {"word": self.word, "start": self.start, "end": self.end}


@dataclass
class Transcript:
    """Full transcript text plus the word array used for index mapping."""
    text: str
    words: List[Word] = field(default_factory=list)

    @property
    def has_word_timings(self) -> bool:
        return any(w.end > 0 for w in self.words)


def offset_seconds(value) -> float:
    """Convert a proto duration (timedelta or seconds/nanos message) to seconds."""
    if value is None:
        return 0.0
    if hasattr(value, "total_seconds"):
        return float(value.total_seconds())
    return float(getattr(value, "seconds", 0) or 0) + float(getattr(value, "nanos", 0) or 0) / 1e9


def parse_recognize_response(response) -> Transcript:
    """Flatten a long-running recognize response into text and words."""
    parts = []
    words = []
    for result in response.results:
        if not result.alternatives:
            continue
        alternative = result.alternatives[0]
        if alternative.transcript:
            parts.append(alternative.transcript.strip())
        for w in alternative.words:
            words.append(Word(
                word=w.word,
                start=offset_seconds(w.start_time),
                end=offset_seconds(w.end_time),
            ))
    return Transcript(text=" ".join(p for p in parts if p).strip(), words=words)


class TranscriptionService:
    """Google Speech-to-Text long-running recognition."""

    def __init__(self, client: Optional[speech.SpeechClient] = None):
        self._client = client

    @property
    def client(self) -> speech.SpeechClient:
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    async def transcribe(self, audio_uri: str) -> Transcript:
        """
        Transcribe an OGG/Opus audio object stored in GCS.

        Args:
            audio_uri: gs:// URI of the extracted audio

        Returns:
            Transcript with word-level timings
        """
        logger.info(f"Speech-to-Text: transcribing {audio_uri}")

        config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.OGG_OPUS,
            sample_rate_hertz=16000,
            audio_channel_count=1,
            language_code=settings.speech_language_code,
            enable_automatic_punctuation=True,
            enable_word_time_offsets=True,
            model="video",
        )
        audio = speech.RecognitionAudio(uri=audio_uri)

        def _recognize():
            operation = self.client.long_running_recognize(config=config, audio=audio)
            return operation.result(timeout=settings.external_call_timeout_seconds)

        response = await asyncio.to_thread(_recognize)
        transcript = parse_recognize_response(response)
        logger.info(
            f"Transcription complete: {len(transcript.text)} characters, "
            f"{len(transcript.words)} words with timestamps"
        )
        return transcript
