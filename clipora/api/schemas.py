"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field

from clipora.models.video import VideoStatus


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    message: Optional[str] = None


class PubSubMessage(BaseModel):
    """Pub/Sub push message body."""
    data: Optional[str] = None
    attributes: Optional[dict] = None
    messageId: Optional[str] = None


class PubSubPushRequest(BaseModel):
    """Pub/Sub push envelope."""
    message: Optional[PubSubMessage] = None
    subscription: Optional[str] = None


# =============================================================================
# Video Schemas
# =============================================================================

class VideoResponse(BaseModel):
    """Video response."""
    id: str
    project_id: int
    original_filename: Optional[str]
    upload_path: str
    processing_status: VideoStatus
    error_message: Optional[str]
    duration_seconds: Optional[float]
    transcription: Optional[str] = None
    shot_change_timestamps: Optional[List[Any]] = None
    edit_guidance: Optional[dict] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProcessResponse(BaseModel):
    """Response after triggering processing."""
    video_id: str
    started: bool
    message: str


class JobStatusResponse(BaseModel):
    """In-memory progress of a processing job."""
    job_type: str
    status: str
    progress: float
    message: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]
    result: Optional[dict] = None


class ReanalyzeRequest(BaseModel):
    """Creator feedback for re-analysis."""
    feedback: str = Field(..., min_length=1, description="How the clip selection should change")


# =============================================================================
# Clip Schemas
# =============================================================================

class SfxItemResponse(BaseModel):
    """Sound effect response."""
    id: int
    clip_id: str
    timestamp_seconds: float
    label: str
    prompt: str
    sfx_url: Optional[str]
    duration_seconds: float
    volume: float

    class Config:
        from_attributes = True


class ClipResponse(BaseModel):
    """Clip response."""
    id: str
    video_id: str
    processed_path: Optional[str]
    cdn_url: Optional[str]
    start_time: float
    end_time: float
    duration: float
    strategic_rank: int
    hook_score: Optional[float]
    rationale: Optional[str]
    title: Optional[str]
    hook: Optional[str]
    is_approved: Optional[bool]
    sfx_video_url: Optional[str]
    music_data: Optional[dict]
    sfx_items: List[SfxItemResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class ClipApprovalRequest(BaseModel):
    """Approve (true), reject (false) or reset (null) a clip."""
    is_approved: Optional[bool] = None


# =============================================================================
# Sound Schemas
# =============================================================================

class SfxCreateRequest(BaseModel):
    """Request to add one sound effect."""
    prompt: str = Field(..., min_length=1)
    timestamp_seconds: float = Field(..., ge=0)
    label: Optional[str] = None
    duration_seconds: float = Field(2.0, description="Effect length in seconds (0.5-5)")
    volume: float = Field(1.0, ge=0, le=1)


class SfxUpdateRequest(BaseModel):
    """Request to edit a sound effect."""
    prompt: Optional[str] = None
    timestamp_seconds: Optional[float] = Field(None, ge=0)
    volume: Optional[float] = Field(None, ge=0, le=1)
    label: Optional[str] = None


class MusicRequest(BaseModel):
    """Request to generate a music bed."""
    prompt: str = Field(..., min_length=1)
    label: Optional[str] = None
    volume: Optional[float] = Field(None, ge=0, le=1)
    duration_seconds: Optional[float] = Field(None, gt=0, description="Capped at 22 seconds")


class SoundIdeaResponse(BaseModel):
    label: str
    prompt: str


class SoundSuggestionsResponse(BaseModel):
    """Tone analysis and prompt ideas for a clip."""
    tone: str
    vibe: str
    sfx: List[SoundIdeaResponse]
    music: List[SoundIdeaResponse]
