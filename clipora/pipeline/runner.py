"""Per-video processing job.

Stages, each recorded on the video before the next begins:

1. resolve and download the upload, probe its duration (PROCESSING)
2. extract audio; transcribe, detect shots and detect silences concurrently (TRANSCRIBING)
3. select clips with the model and map them to silence-snapped cut points (ANALYZING)
4. cut every clip, publish them, insert the clip rows in one transaction (CLIPPING)
5. optional edit guidance, then COMPLETED

Any failure marks the video FAILED. Clips are all-or-nothing: if any cut or
upload fails, objects already published by this run are deleted and no clip
rows are written.
"""
import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from clipora.config import settings
from clipora.db.database import async_session_maker
from clipora.errors import ClipValidationError, NotFoundError
from clipora.models.clip import Clip
from clipora.models.video import VideoStatus
from clipora.pipeline.boundaries import MappedClip, map_timestamp_clips, map_word_clips
from clipora.pipeline.selection import ClipSelector
from clipora.services.clip_service import ClipService, new_clip
from clipora.services.edit_guidance import generate_edit_guidance
from clipora.services.gemini import GenerativeModelClient
from clipora.services.ingest import IngestResolver
from clipora.services.shots import ShotDetector
from clipora.services.storage import CLIP_CACHE_CONTROL, ObjectStorage
from clipora.services.transcription import TranscriptionService
from clipora.services.video_service import VideoService
from clipora.utils.ffmpeg import cut_clip, detect_silences, extract_audio_ogg_opus, get_video_duration
from clipora.utils.scratch import scratch_directory

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("gcp_project_id", "processed_bucket")
MAX_SLUG_CHARS = 60

ProgressCallback = Callable[[float, Optional[str]], Awaitable[None]]


async def _no_progress(progress: float, message: Optional[str] = None) -> None:
    return None


async def gather_or_cancel(*aws):
    """
    Run awaitables concurrently like asyncio.gather.

    The first failure cancels the remaining tasks and waits for them to finish
    before the error propagates, so nothing outlives the job's scratch files.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def slugify(title: Optional[str]) -> str:
    """Lowercase, hyphen-separated, at most 60 characters."""
    if not title:
        return ""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:MAX_SLUG_CHARS]


@dataclass
class PipelineServices:
    """External collaborators used by one job run."""
    storage: ObjectStorage
    resolver: IngestResolver
    transcriber: TranscriptionService
    shot_detector: ShotDetector
    model_client: GenerativeModelClient
    selector: ClipSelector

    @classmethod
    def create(cls) -> "PipelineServices":
        storage = ObjectStorage()
        model_client = GenerativeModelClient()
        return cls(
            storage=storage,
            resolver=IngestResolver(storage),
            transcriber=TranscriptionService(),
            shot_detector=ShotDetector(),
            model_client=model_client,
            selector=ClipSelector(model_client),
        )


@dataclass
class ClipPublisher:
    """Uploads cut clips under unique slugs and can undo its own uploads."""
    storage: ObjectStorage
    bucket: str
    uploaded: List[str] = field(default_factory=list)
    _slugs: Set[str] = field(default_factory=set)

    def reserve(self, paths: Iterable[Optional[str]]) -> None:
        """Mark slugs of already published objects as taken so they are never overwritten."""
        for path in paths:
            if path:
                self._slugs.add(PurePosixPath(path).stem)

    def object_path(self, project_id: int, video_id: str, clip_id: str, title: Optional[str]) -> str:
        slug = slugify(title) or clip_id
        if slug in self._slugs:
            slug = f"{slug}-{clip_id[:8]}"
        self._slugs.add(slug)
        return f"{project_id}/{video_id}/{slug}.mp4"

    async def publish(
        self,
        local_path: Path,
        project_id: int,
        video_id: str,
        clip_id: str,
        title: Optional[str],
    ) -> Tuple[str, str]:
        """Upload one clip; returns (object path, public URL)."""
        path = self.object_path(project_id, video_id, clip_id, title)
        await self.storage.upload_file(
            local_path,
            self.bucket,
            path,
            content_type="video/mp4",
            cache_control=CLIP_CACHE_CONTROL,
        )
        self.uploaded.append(path)
        url = settings.public_url(self.bucket, path)
        logger.info(f"Clip {clip_id} uploaded: {url}")
        return path, url

    async def discard(self) -> None:
        """Best-effort removal of everything uploaded by this publisher."""
        for path in self.uploaded:
            try:
                await self.storage.delete(self.bucket, path)
            except Exception as e:
                logger.warning(f"Failed to delete orphaned clip gs://{self.bucket}/{path}: {e}")
        self.uploaded.clear()


async def cut_and_publish(
    source_path: Path,
    mapped: List[MappedClip],
    project_id: int,
    video_id: str,
    work_dir: Path,
    publisher: ClipPublisher,
) -> List[Clip]:
    """
    Cut all clips locally, then publish them.

    Returns unsaved Clip rows. On any failure the clips published so far are
    deleted and the error propagates.
    """
    cut: List[Tuple[str, MappedClip, Path]] = []
    for clip in mapped:
        clip_id = str(uuid.uuid4())
        local_path = await cut_clip(
            source_path,
            clip.start_time,
            clip.duration,
            clip_id,
            work_dir / "clips",
        )
        cut.append((clip_id, clip, local_path))

    rows = []
    try:
        for clip_id, clip, local_path in cut:
            path, url = await publisher.publish(local_path, project_id, video_id, clip_id, clip.title)
            rows.append(new_clip(video_id, clip, clip_id=clip_id, processed_path=path, cdn_url=url))
            local_path.unlink(missing_ok=True)
    except Exception:
        await publisher.discard()
        raise
    return rows


async def process_video(
    video_id: str,
    session_factory: async_sessionmaker = async_session_maker,
    services: Optional[PipelineServices] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> dict:
    """
    Run the full pipeline for one PENDING video.

    Args:
        video_id: Video to process
        session_factory: Session factory for the video/clip store
        services: External collaborators (built from settings when omitted)
        progress_callback: Async callback for progress updates

    Returns:
        Result dictionary with the clip count, or a skip marker

    Raises:
        ConfigurationError: If required settings are missing (nothing is touched)
        NotFoundError: If the video does not exist
        Any stage error, after the video has been marked FAILED
    """
    settings.require(*REQUIRED_SETTINGS)
    services = services or PipelineServices.create()
    progress = progress_callback or _no_progress

    async with session_factory() as session:
        videos = VideoService(session)
        video = await videos.get_video(video_id)
        if not video:
            raise NotFoundError(f"Video {video_id} not found")

        # Redelivered upload events and manual retriggers only start PENDING videos
        if video.processing_status != VideoStatus.PENDING:
            logger.info(f"Video {video_id} is already {video.processing_status.value}; skipping")
            return {"skipped": True, "status": video.processing_status.value}

        project_id = video.project_id
        upload_path = video.upload_path
        original_filename = video.original_filename

        await videos.update_status(video_id, VideoStatus.PROCESSING)
        try:
            clip_count = await _run_stages(
                session,
                videos,
                services,
                progress,
                video_id,
                project_id,
                upload_path,
                original_filename,
            )
        except Exception as e:
            logger.exception(f"Processing failed for video {video_id}")
            await session.rollback()
            await videos.fail(video_id, str(e) or e.__class__.__name__)
            raise

    logger.info(f"Video {video_id} processing complete. {clip_count} clips generated.")
    return {"video_id": video_id, "clip_count": clip_count}


async def _run_stages(
    session,
    videos: VideoService,
    services: PipelineServices,
    progress: ProgressCallback,
    video_id: str,
    project_id: int,
    upload_path: str,
    original_filename: Optional[str],
) -> int:
    with scratch_directory(f"job-{video_id}-") as work_dir:
        await progress(5, "Locating upload...")
        resolved = await services.resolver.resolve(upload_path, project_id, original_filename)
        local_video = await services.storage.download(resolved.bucket, resolved.path, work_dir / "input.mp4")

        duration = await get_video_duration(local_video)
        logger.info(f"Video {video_id} duration: {duration:.1f}s")
        await videos.set_duration(video_id, duration)

        await videos.update_status(video_id, VideoStatus.TRANSCRIBING)
        await progress(15, "Extracting audio...")
        audio_local = await extract_audio_ogg_opus(local_video, work_dir / "audio.ogg")
        audio_path = f"audio/{video_id}.ogg"
        audio_uri = await services.storage.upload_file(
            audio_local,
            resolved.bucket,
            audio_path,
            content_type="audio/ogg",
        )

        try:
            await progress(25, "Transcribing, detecting shots and silences...")
            transcript, shots, silences = await gather_or_cancel(
                services.transcriber.transcribe(audio_uri),
                services.shot_detector.detect_shots(resolved.uri),
                detect_silences(local_video, media_duration=duration),
            )
        finally:
            try:
                await services.storage.delete(resolved.bucket, audio_path)
            except Exception as e:
                logger.warning(f"Failed to delete temporary audio gs://{resolved.bucket}/{audio_path}: {e}")

        await videos.save_analysis_inputs(video_id, transcript.text, [s.to_dict() for s in shots])

        await videos.update_status(video_id, VideoStatus.ANALYZING)
        await progress(50, "Selecting clips...")
        script = await videos.latest_script(project_id)

        if transcript.has_word_timings:
            candidates = await services.selector.select_word_clips(
                resolved.uri, transcript.words, duration, script
            )
            mapped = map_word_clips(candidates, transcript.words, silences, video_duration=duration)
        elif transcript.text:
            logger.warning(f"No word timings for video {video_id}; using text-only selection")
            candidates = await services.selector.select_from_text(transcript.text, shots, duration, script)
            mapped = map_timestamp_clips(
                candidates,
                silences,
                video_duration=duration,
                min_duration=settings.min_clip_seconds,
            )
        else:
            raise ClipValidationError("Transcription produced no text to select clips from")

        await videos.update_status(video_id, VideoStatus.CLIPPING)
        await progress(70, f"Cutting {len(mapped)} clips...")
        publisher = ClipPublisher(services.storage, settings.processed_bucket)
        rows = await cut_and_publish(local_video, mapped, project_id, video_id, work_dir, publisher)
        try:
            await ClipService(session).insert_clips(video_id, rows)
        except Exception:
            await publisher.discard()
            raise

    if script and transcript.text:
        await progress(90, "Generating edit guidance...")
        try:
            guidance = await generate_edit_guidance(services.model_client, script, transcript.text)
            if guidance:
                await videos.save_edit_guidance(video_id, guidance)
                logger.info("Edit guidance saved successfully")
        except Exception as e:
            logger.warning(f"Edit guidance generation failed (non-critical): {e}")

    await videos.update_status(video_id, VideoStatus.COMPLETED)
    await progress(100, "Completed")
    return len(rows)
