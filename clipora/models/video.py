"""Video model and its processing status machine."""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum, Float, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from clipora.db.database import Base


class VideoStatus(str, enum.Enum):
    """Processing status enumeration."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    TRANSCRIBING = "TRANSCRIBING"
    ANALYZING = "ANALYZING"
    CLIPPING = "CLIPPING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Forward order of the happy path; FAILED sits outside it
STATUS_ORDER = [
    VideoStatus.PENDING,
    VideoStatus.PROCESSING,
    VideoStatus.TRANSCRIBING,
    VideoStatus.ANALYZING,
    VideoStatus.CLIPPING,
    VideoStatus.COMPLETED,
]

TERMINAL_STATUSES = {VideoStatus.COMPLETED, VideoStatus.FAILED}


def can_transition(current: VideoStatus, new: VideoStatus) -> bool:
    """Status only moves forward, or to FAILED from any non-terminal state."""
    if current in TERMINAL_STATUSES:
        return False
    if new == VideoStatus.FAILED:
        return True
    return STATUS_ORDER.index(new) > STATUS_ORDER.index(current)


class Video(Base):
    """One uploaded source video."""

    __tablename__ = "videos"

    id = Column(String(36), primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    # Upload information
    original_filename = Column(String(1024), nullable=True)
    upload_path = Column(String(4096), nullable=False, index=True)

    # Status
    processing_status = Column(Enum(VideoStatus), default=VideoStatus.PENDING, nullable=False)
    error_message = Column(Text, nullable=True)

    # Stage outputs
    duration_seconds = Column(Float, nullable=True)
    transcription = Column(Text, nullable=True)
    shot_change_timestamps = Column(JSON, nullable=True)
    edit_guidance = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    project = relationship("Project", back_populates="videos")
    clips = relationship("Clip", back_populates="video", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Video(id={self.id}, status={self.processing_status})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "original_filename": self.original_filename,
            "upload_path": self.upload_path,
            "processing_status": self.processing_status.value,
            "error_message": self.error_message,
            "duration_seconds": self.duration_seconds,
            "transcription": self.transcription,
            "shot_change_timestamps": self.shot_change_timestamps,
            "edit_guidance": self.edit_guidance,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
