"""Video service layer: lookups, status transitions and stage outputs."""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clipora.errors import InvalidStateError, NotFoundError
from clipora.models.project import Script
from clipora.models.video import Video, VideoStatus, can_transition

logger = logging.getLogger(__name__)


class VideoService:
    """Service for video operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_video(self, video_id: str) -> Optional[Video]:
        """Get a video by ID."""
        return await self.db.get(Video, video_id)

    async def require_video(self, video_id: str) -> Video:
        video = await self.db.get(Video, video_id)
        if not video:
            raise NotFoundError(f"Video {video_id} not found")
        return video

    async def find_by_upload_path(self, upload_path: str) -> Optional[Video]:
        """Find the video registered for an uploaded object path."""
        result = await self.db.execute(
            select(Video)
            .where(Video.upload_path == upload_path)
            .order_by(Video.created_at.desc())
        )
        return result.scalars().first()

    async def list_videos(self, project_id: int) -> List[Video]:
        result = await self.db.execute(
            select(Video)
            .where(Video.project_id == project_id)
            .order_by(Video.created_at.desc())
        )
        return result.scalars().all()

    async def latest_script(self, project_id: int) -> Optional[str]:
        """Content of the newest script of a project, if any."""
        result = await self.db.execute(
            select(Script.content)
            .where(Script.project_id == project_id)
            .order_by(Script.created_at.desc(), Script.id.desc())
            .limit(1)
        )
        content = result.scalar_one_or_none()
        return content or None

    async def update_status(self, video_id: str, status: VideoStatus) -> Video:
        """
        Move a video to a new processing status.

        Raises:
            NotFoundError: If the video does not exist
            InvalidStateError: If the move is not a forward transition
        """
        video = await self.require_video(video_id)
        current = video.processing_status
        if not can_transition(current, status):
            raise InvalidStateError(
                f"Video {video_id} cannot move from {current.value} to {status.value}"
            )
        video.processing_status = status
        await self.db.commit()
        logger.info(f"Video {video_id} -> {status.value}")
        return video

    async def set_duration(self, video_id: str, duration_seconds: float) -> Video:
        """Record the probed duration. It may only be set once."""
        video = await self.require_video(video_id)
        if video.duration_seconds is not None:
            raise InvalidStateError(f"Duration of video {video_id} is already set")
        video.duration_seconds = duration_seconds
        await self.db.commit()
        return video

    async def save_analysis_inputs(
        self,
        video_id: str,
        transcription: Optional[str],
        shot_change_timestamps: Optional[list],
    ) -> Video:
        video = await self.require_video(video_id)
        video.transcription = transcription
        video.shot_change_timestamps = shot_change_timestamps
        await self.db.commit()
        return video

    async def save_edit_guidance(self, video_id: str, edit_guidance: dict) -> Video:
        video = await self.require_video(video_id)
        video.edit_guidance = edit_guidance
        await self.db.commit()
        return video

    async def fail(self, video_id: str, message: str) -> Optional[Video]:
        """Mark a video FAILED with an error message, unless it is already terminal."""
        video = await self.db.get(Video, video_id)
        if not video:
            return None
        if not can_transition(video.processing_status, VideoStatus.FAILED):
            logger.warning(
                f"Video {video_id} is already {video.processing_status.value}; not marking FAILED"
            )
            return video
        video.processing_status = VideoStatus.FAILED
        video.error_message = message
        await self.db.commit()
        logger.info(f"Video {video_id} -> FAILED: {message}")
        return video
