"""Shared fixtures: an in-memory database and seed helpers."""
import functools
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import clipora.models  # noqa: F401
from clipora.config import settings
from clipora.db.database import Base
from clipora.models.clip import Clip
from clipora.models.project import Project
from clipora.models.video import Video, VideoStatus


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def scratch_dir(tmp_path, monkeypatch):
    """Point scratch directories at an isolated, initially empty directory."""
    path = tmp_path / "scratch"
    path.mkdir()
    monkeypatch.setattr(settings, "scratch_dir", path)
    return path


async def _seed_video(
    session_factory,
    status: VideoStatus = VideoStatus.PENDING,
    upload_path: str = "1/talk.mp4",
    duration_seconds: float = None,
    transcription: str = None,
) -> str:
    video_id = str(uuid.uuid4())
    async with session_factory() as session:
        if not await session.get(Project, 1):
            session.add(Project(id=1, name="Test Project"))
        session.add(Video(
            id=video_id,
            project_id=1,
            original_filename="talk.mp4",
            upload_path=upload_path,
            processing_status=status,
            duration_seconds=duration_seconds,
            transcription=transcription,
        ))
        await session.commit()
    return video_id


async def _seed_clips(session_factory, video_id: str, spans, cdn_url: str = None) -> list:
    clip_ids = []
    async with session_factory() as session:
        for rank, (start, end) in enumerate(spans, start=1):
            clip_id = str(uuid.uuid4())
            session.add(Clip(
                id=clip_id,
                video_id=video_id,
                start_time=start,
                end_time=end,
                strategic_rank=rank,
                hook_score=7.5,
                title=f"Clip {rank}",
                hook=f"Hook {rank}",
                rationale=f"Reason {rank}",
                cdn_url=cdn_url,
                processed_path=f"1/{video_id}/clip-{rank}.mp4" if cdn_url else None,
            ))
            clip_ids.append(clip_id)
        await session.commit()
    return clip_ids


@pytest.fixture
def seed_video(session_factory):
    """Insert a project (once) and a video; returns the video id."""
    return functools.partial(_seed_video, session_factory)


@pytest.fixture
def seed_clips(session_factory):
    """Insert clips for a video from (start, end) spans; returns their ids."""
    return functools.partial(_seed_clips, session_factory)
