"""Re-run clip selection for a completed video using creator feedback."""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clipora.config import settings
from clipora.errors import InvalidStateError
from clipora.models.clip import Clip
from clipora.models.video import VideoStatus
from clipora.pipeline.boundaries import map_timestamp_clips
from clipora.pipeline.runner import ClipPublisher, cut_and_publish
from clipora.pipeline.selection import ClipSelector
from clipora.services.clip_service import ClipService
from clipora.services.ingest import IngestResolver
from clipora.services.storage import ObjectStorage
from clipora.services.video_service import VideoService
from clipora.utils.ffmpeg import SilenceInterval, detect_silences
from clipora.utils.scratch import scratch_directory

logger = logging.getLogger(__name__)


class ClipReanalyzer:
    """Replaces a video's clip set with a feedback-driven, freshly cut selection."""

    def __init__(
        self,
        db: AsyncSession,
        selector: Optional[ClipSelector] = None,
        storage: Optional[ObjectStorage] = None,
        resolver: Optional[IngestResolver] = None,
    ):
        self.db = db
        self.selector = selector or ClipSelector()
        self.storage = storage or ObjectStorage()
        self.resolver = resolver or IngestResolver(self.storage)
        self.videos = VideoService(db)
        self.clips = ClipService(db)

    async def reanalyze(
        self,
        video_id: str,
        feedback: str,
        silences: Optional[List[SilenceInterval]] = None,
    ) -> List[Clip]:
        """
        Select a new clip set, cut and publish it, and swap it in atomically.

        Validation and model failures surface before anything is downloaded or
        deleted. New clips are published under paths that never collide with
        the current set; if cutting or the replace fails they are removed and
        the current clips stay as they were.

        Args:
            video_id: A COMPLETED video with a transcription and duration
            feedback: Creator's free-text guidance for the new selection
            silences: Silence intervals used to snap the new bounds
                (detected from the source when omitted)

        Returns:
            The new, published clips

        Raises:
            NotFoundError: If the video or its upload cannot be found
            InvalidStateError: If the video is not ready for re-analysis
            ClipValidationError / SelectionTimeoutError: If selection fails
            MediaToolError: If a cut or upload fails
            TransactionError: If the replace cannot be committed
        """
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValueError("Feedback text is required")

        video = await self.videos.require_video(video_id)
        if video.processing_status != VideoStatus.COMPLETED:
            raise InvalidStateError(
                f"Video {video_id} is {video.processing_status.value}; only COMPLETED videos can be re-analyzed"
            )
        if not video.transcription or not video.duration_seconds:
            raise InvalidStateError(f"Video {video_id} has no transcription or duration to re-analyze")
        settings.require("processed_bucket")

        resolved = await self.resolver.resolve(video.upload_path, video.project_id, video.original_filename)
        current = await self.clips.list_clips(video_id)
        logger.info(f"Re-analyzing video {video_id} ({len(current)} current clips): {feedback[:120]!r}")

        candidates = await self.selector.select_timestamp_clips(
            resolved.uri,
            video.transcription,
            video.duration_seconds,
            current,
            feedback,
        )

        publisher = ClipPublisher(self.storage, settings.processed_bucket)
        previous_paths = [clip.processed_path for clip in current if clip.processed_path]
        publisher.reserve(previous_paths)

        with scratch_directory(f"reanalyze-{video_id}-") as work_dir:
            source = await self.storage.download(resolved.bucket, resolved.path, work_dir / "input.mp4")
            if silences is None:
                silences = await detect_silences(source, media_duration=video.duration_seconds)
            mapped = map_timestamp_clips(
                candidates,
                silences,
                video_duration=video.duration_seconds,
                min_duration=settings.min_clip_seconds,
            )
            replacements = await cut_and_publish(
                source, mapped, video.project_id, video_id, work_dir, publisher
            )

        try:
            clips = await self.clips.replace_clips(video_id, replacements)
        except Exception:
            await publisher.discard()
            raise

        await self._delete_previous(previous_paths)
        return clips

    async def _delete_previous(self, paths: List[str]) -> None:
        """Best-effort removal of the replaced clips' media."""
        for path in paths:
            try:
                await self.storage.delete(settings.processed_bucket, path)
            except Exception as e:
                logger.warning(f"Failed to delete replaced clip gs://{settings.processed_bucket}/{path}: {e}")
