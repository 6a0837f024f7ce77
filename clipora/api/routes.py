"""API routes."""
import base64
import binascii
import json
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from clipora.api.schemas import (
    ClipApprovalRequest,
    ClipResponse,
    HealthResponse,
    JobStatusResponse,
    MusicRequest,
    ProcessResponse,
    PubSubPushRequest,
    ReanalyzeRequest,
    SfxCreateRequest,
    SfxItemResponse,
    SfxUpdateRequest,
    SoundSuggestionsResponse,
    VideoResponse,
)
from clipora.db.database import get_db
from clipora.errors import (
    AudioGenerationError,
    ClipporaError,
    ClipValidationError,
    ConfigurationError,
    InvalidStateError,
    MediaToolError,
    NotFoundError,
    SelectionTimeoutError,
    TransactionError,
)
from clipora.models.video import VideoStatus
from clipora.pipeline.reanalyzer import ClipReanalyzer
from clipora.pipeline.selection import ClipSelector
from clipora.services.clip_service import ClipService
from clipora.services.gemini import GenerativeModelClient
from clipora.services.ingest import IngestResolver
from clipora.services.sound_analyzer import SoundAnalyzer
from clipora.services.sound_service import SoundService
from clipora.services.storage import ObjectStorage
from clipora.services.video_service import VideoService
from clipora.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from clipora.workers.handlers import PROCESS_VIDEO
from clipora.workers.job_runner import job_runner

router = APIRouter()
pubsub_router = APIRouter()
logger = logging.getLogger(__name__)

# Most specific first; the first matching class wins
ERROR_STATUS = [
    (NotFoundError, 404),
    (ClipValidationError, 422),
    (InvalidStateError, 409),
    (SelectionTimeoutError, 504),
    (MediaToolError, 502),
    (AudioGenerationError, 502),
    (TransactionError, 500),
    (ConfigurationError, 503),
]


def to_http_error(error: Exception) -> HTTPException:
    """Map a pipeline error to an HTTP error."""
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    for error_class, status_code in ERROR_STATUS:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def get_model_client(request: Request) -> GenerativeModelClient:
    """Shared generative model client created at startup."""
    return request.app.state.model_client


def get_storage(request: Request) -> ObjectStorage:
    """Shared object storage client created at startup."""
    return request.app.state.storage


def get_sound_service(
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    model_client: GenerativeModelClient = Depends(get_model_client),
) -> SoundService:
    return SoundService(db, storage=storage, analyzer=SoundAnalyzer(model_client))


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()

    all_ok = ffmpeg_ok and ffprobe_ok

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        message = f"Missing dependencies: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        message=message
    )


# =============================================================================
# Upload notifications
# =============================================================================

@pubsub_router.post("/pubsub/push")
async def pubsub_push(envelope: PubSubPushRequest, db: AsyncSession = Depends(get_db)):
    """
    Receive a storage upload notification.

    Always acknowledges with 200 so malformed or irrelevant messages are not
    redelivered forever; processing runs in the background.
    """
    if not envelope.message or not envelope.message.data:
        logger.warning("Received request with no Pub/Sub message data")
        return {"status": "ignored", "reason": "no message data"}

    try:
        decoded = json.loads(base64.b64decode(envelope.message.data).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Error parsing Pub/Sub message: {e}")
        return {"status": "ignored", "reason": "parse error"}

    bucket = decoded.get("bucket") if isinstance(decoded, dict) else None
    name = decoded.get("name") if isinstance(decoded, dict) else None
    if not bucket or not name:
        logger.warning("Pub/Sub message missing bucket or name")
        return {"status": "ignored", "reason": "missing bucket/name"}

    logger.info(f"Received Pub/Sub notification: gs://{bucket}/{name}")

    video = await VideoService(db).find_by_upload_path(name)
    if not video:
        logger.info(f"No video record found for path: {name}; skipping")
        return {"status": "ignored", "reason": "no matching video"}

    if video.processing_status != VideoStatus.PENDING:
        logger.info(f"Video {video.id} is already {video.processing_status.value}; skipping")
        return {"status": "ignored", "reason": f"video is {video.processing_status.value}"}

    started = await job_runner.start_job(video.id, PROCESS_VIDEO, video_id=video.id)
    return {"status": "started" if started else "already running", "video_id": video.id}


# =============================================================================
# Videos
# =============================================================================

@router.get("/projects/{project_id}/videos", response_model=List[VideoResponse])
async def list_videos(project_id: int, db: AsyncSession = Depends(get_db)):
    """List all videos for a project."""
    return await VideoService(db).list_videos(project_id)


@router.get("/videos/{video_id}", response_model=VideoResponse)
async def get_video(video_id: str, db: AsyncSession = Depends(get_db)):
    """Get a video with its processing status."""
    video = await VideoService(db).get_video(video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    return video


@router.post("/videos/{video_id}/process", response_model=ProcessResponse)
async def start_processing(video_id: str, db: AsyncSession = Depends(get_db)):
    """Start the processing pipeline for a PENDING video."""
    video = await VideoService(db).get_video(video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    if video.processing_status != VideoStatus.PENDING:
        raise HTTPException(
            status_code=409,
            detail=f"Video is {video.processing_status.value}; only PENDING videos can be processed"
        )

    started = await job_runner.start_job(video_id, PROCESS_VIDEO, video_id=video_id)
    return ProcessResponse(
        video_id=video_id,
        started=started,
        message="Processing started" if started else "Processing already running"
    )


@router.get("/videos/{video_id}/job", response_model=JobStatusResponse)
async def get_job_status(video_id: str):
    """Get in-memory progress of the video's processing job."""
    progress = job_runner.get_progress(video_id)
    if not progress:
        raise HTTPException(status_code=404, detail="No job for this video")
    return progress.to_dict()


@router.get("/videos/{video_id}/clips", response_model=List[ClipResponse])
async def list_clips(video_id: str, db: AsyncSession = Depends(get_db)):
    """List all clips for a video."""
    return await ClipService(db).list_clips(video_id)


@router.post("/videos/{video_id}/reanalyze", response_model=List[ClipResponse])
async def reanalyze_video(
    video_id: str,
    data: ReanalyzeRequest,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    model_client: GenerativeModelClient = Depends(get_model_client),
):
    """Replace the video's clips with a selection guided by creator feedback."""
    reanalyzer = ClipReanalyzer(
        db,
        selector=ClipSelector(model_client),
        storage=storage,
        resolver=IngestResolver(storage),
    )
    try:
        await reanalyzer.reanalyze(video_id, data.feedback)
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await ClipService(db).list_clips(video_id)


# =============================================================================
# Clips
# =============================================================================

@router.get("/clips/{clip_id}", response_model=ClipResponse)
async def get_clip(clip_id: str, db: AsyncSession = Depends(get_db)):
    """Get a clip by ID."""
    clip = await ClipService(db).get_clip(clip_id)
    if not clip:
        raise HTTPException(status_code=404, detail="Clip not found")
    return clip


@router.patch("/clips/{clip_id}/approval", response_model=ClipResponse)
async def set_clip_approval(
    clip_id: str,
    data: ClipApprovalRequest,
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a clip."""
    service = ClipService(db)
    try:
        await service.set_approval(clip_id, data.is_approved)
    except ClipporaError as e:
        raise to_http_error(e)
    return await service.get_clip(clip_id)


# =============================================================================
# Sound design
# =============================================================================

@router.get("/clips/{clip_id}/sfx", response_model=List[SfxItemResponse])
async def list_sfx(clip_id: str, service: SoundService = Depends(get_sound_service)):
    """List a clip's sound effects by timestamp."""
    try:
        return await service.list_sfx(clip_id)
    except ClipporaError as e:
        raise to_http_error(e)


@router.post("/clips/{clip_id}/sfx/auto", response_model=ClipResponse)
async def auto_generate_sfx(clip_id: str, service: SoundService = Depends(get_sound_service)):
    """Let the model place and generate sound effects, then remix."""
    try:
        await service.auto_generate_sfx(clip_id)
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await service.clips.get_clip(clip_id)


@router.post("/clips/{clip_id}/sfx", response_model=ClipResponse)
async def add_sfx(
    clip_id: str,
    data: SfxCreateRequest,
    service: SoundService = Depends(get_sound_service),
):
    """Add one sound effect and remix."""
    try:
        await service.add_sfx(
            clip_id,
            prompt=data.prompt,
            timestamp_seconds=data.timestamp_seconds,
            label=data.label,
            duration_seconds=data.duration_seconds,
            volume=data.volume,
        )
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await service.clips.get_clip(clip_id)


@router.patch("/clips/{clip_id}/sfx/{sfx_id}", response_model=ClipResponse)
async def update_sfx(
    clip_id: str,
    sfx_id: int,
    data: SfxUpdateRequest,
    service: SoundService = Depends(get_sound_service),
):
    """Edit a sound effect and remix."""
    try:
        await service.update_sfx(
            clip_id,
            sfx_id,
            prompt=data.prompt,
            timestamp_seconds=data.timestamp_seconds,
            volume=data.volume,
            label=data.label,
        )
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await service.clips.get_clip(clip_id)


@router.delete("/clips/{clip_id}/sfx/{sfx_id}", response_model=ClipResponse)
async def delete_sfx(
    clip_id: str,
    sfx_id: int,
    service: SoundService = Depends(get_sound_service),
):
    """Remove a sound effect and remix the rest."""
    try:
        await service.delete_sfx(clip_id, sfx_id)
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await service.clips.get_clip(clip_id)


@router.put("/clips/{clip_id}/music", response_model=ClipResponse)
async def set_music(
    clip_id: str,
    data: MusicRequest,
    service: SoundService = Depends(get_sound_service),
):
    """Generate a music bed and remix."""
    try:
        await service.set_music(
            clip_id,
            prompt=data.prompt,
            label=data.label,
            volume=data.volume,
            duration_seconds=data.duration_seconds,
        )
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await service.clips.get_clip(clip_id)


@router.delete("/clips/{clip_id}/music", response_model=ClipResponse)
async def clear_music(clip_id: str, service: SoundService = Depends(get_sound_service)):
    """Remove the music bed and remix."""
    try:
        await service.clear_music(clip_id)
    except (ClipporaError, ValueError) as e:
        raise to_http_error(e)
    return await service.clips.get_clip(clip_id)


@router.get("/clips/{clip_id}/sound-suggestions", response_model=SoundSuggestionsResponse)
async def suggest_sounds(clip_id: str, service: SoundService = Depends(get_sound_service)):
    """Tone analysis and sound prompt ideas for a clip."""
    try:
        suggestions = await service.suggest_sounds(clip_id)
    except ClipporaError as e:
        raise to_http_error(e)
    return suggestions.model_dump()
