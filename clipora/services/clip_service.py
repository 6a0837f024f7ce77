"""Clip service layer."""
import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clipora.errors import NotFoundError, TransactionError
from clipora.models.clip import Clip
from clipora.pipeline.boundaries import MappedClip

logger = logging.getLogger(__name__)


def new_clip(
    video_id: str,
    mapped: MappedClip,
    clip_id: Optional[str] = None,
    processed_path: Optional[str] = None,
    cdn_url: Optional[str] = None,
) -> Clip:
    """Build an unsaved Clip row from a mapped selection."""
    return Clip(
        id=clip_id or str(uuid.uuid4()),
        video_id=video_id,
        processed_path=processed_path,
        cdn_url=cdn_url,
        start_time=mapped.start_time,
        end_time=mapped.end_time,
        strategic_rank=mapped.strategic_rank,
        hook_score=mapped.hook_score,
        rationale=mapped.rationale,
        title=mapped.title,
        hook=mapped.hook,
    )


class ClipService:
    """Service for clip operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_clip(self, clip_id: str) -> Optional[Clip]:
        """Get a clip by ID with its sound effects loaded."""
        result = await self.db.execute(
            select(Clip)
            .where(Clip.id == clip_id)
            .options(selectinload(Clip.sfx_items))
        )
        return result.scalar_one_or_none()

    async def require_clip(self, clip_id: str) -> Clip:
        clip = await self.get_clip(clip_id)
        if not clip:
            raise NotFoundError(f"Clip {clip_id} not found")
        return clip

    async def list_clips(self, video_id: str) -> List[Clip]:
        """List all clips for a video in posting order."""
        result = await self.db.execute(
            select(Clip)
            .where(Clip.video_id == video_id)
            .options(selectinload(Clip.sfx_items))
            .order_by(Clip.strategic_rank, Clip.start_time)
        )
        return result.scalars().all()

    async def set_approval(self, clip_id: str, is_approved: Optional[bool]) -> Clip:
        """Approve, reject or reset (None) a clip."""
        clip = await self.require_clip(clip_id)
        clip.is_approved = is_approved
        await self.db.commit()
        await self.db.refresh(clip)
        return clip

    async def insert_clips(self, video_id: str, clips: Sequence[Clip]) -> List[Clip]:
        """
        Insert a video's clip set in a single transaction.

        Raises:
            TransactionError: If the insert cannot be committed
        """
        for clip in clips:
            clip.video_id = video_id
        try:
            self.db.add_all(list(clips))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise TransactionError(f"Could not save clips for video {video_id}: {e}") from e
        return list(clips)

    async def replace_clips(self, video_id: str, clips: Sequence[Clip]) -> List[Clip]:
        """
        Swap a video's clip set for a new one atomically.

        Existing clips (and their sound effects) are deleted and the new set
        inserted in the same transaction. On any database error the
        transaction is rolled back and the previous clip set stays intact.

        Args:
            video_id: Video whose clips are replaced
            clips: Unsaved Clip rows forming the new set

        Returns:
            The new clips

        Raises:
            TransactionError: If the replace cannot be committed
        """
        try:
            result = await self.db.execute(select(Clip).where(Clip.video_id == video_id))
            existing = result.scalars().all()
            for clip in existing:
                await self.db.delete(clip)
            await self.db.flush()

            for clip in clips:
                clip.video_id = video_id
            self.db.add_all(list(clips))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Clip replace for video {video_id} rolled back: {e}")
            raise TransactionError(f"Could not replace clips for video {video_id}") from e

        logger.info(f"Replaced {len(existing)} clips with {len(clips)} for video {video_id}")
        return list(clips)
