"""Shot-change detection through the Video Intelligence API."""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from google.cloud import videointelligence

from clipora.config import settings
from clipora.services.transcription import offset_seconds

logger = logging.getLogger(__name__)


@dataclass
class Shot:
    """One shot between two scene cuts."""
    start_time: float
    end_time: float

    def to_dict(self) -> dict:
        return {"startTime": self.start_time, "endTime": self.end_time}


def parse_shot_annotations(result) -> List[Shot]:
    """Extract shot spans from an annotate_video result."""
    if not result.annotation_results:
        return []
    shots = result.annotation_results[0].shot_annotations or []
    return [
        Shot(
            start_time=offset_seconds(shot.start_time_offset),
            end_time=offset_seconds(shot.end_time_offset),
        )
        for shot in shots
    ]


class ShotDetector:
    """Video Intelligence shot-change detection for a video in GCS."""

    def __init__(self, client: Optional[videointelligence.VideoIntelligenceServiceClient] = None):
        self._client = client

    @property
    def client(self) -> videointelligence.VideoIntelligenceServiceClient:
        if self._client is None:
            self._client = videointelligence.VideoIntelligenceServiceClient()
        return self._client

    async def detect_shots(self, video_uri: str) -> List[Shot]:
        """Return shot spans for the video at video_uri."""
        logger.info(f"Video Intelligence: detecting shots for {video_uri}")

        def _annotate():
            operation = self.client.annotate_video(
                request={
                    "input_uri": video_uri,
                    "features": [videointelligence.Feature.SHOT_CHANGE_DETECTION],
                }
            )
            return operation.result(timeout=settings.external_call_timeout_seconds)

        result = await asyncio.to_thread(_annotate)
        shots = parse_shot_annotations(result)
        logger.info(f"Found {len(shots)} shot changes")
        return shots
