"""Clip and sound-effect models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import relationship, validates

from clipora.db.database import Base
from clipora.errors import InvalidStateError


class Clip(Base):
    """A selected, cut segment of a source video."""

    __tablename__ = "clips"

    id = Column(String(36), primary_key=True)
    video_id = Column(String(36), ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)

    # Media
    processed_path = Column(String(4096), nullable=True)
    cdn_url = Column(String(4096), nullable=True)

    # Timing (seconds). Duration is derived from the bounds.
    start_time = Column(Float, nullable=False)
    end_time = Column(Float, nullable=False)
    _duration = Column("duration", Float, nullable=False)

    # Selection metadata
    strategic_rank = Column(Integer, nullable=False)
    hook_score = Column(Float, nullable=True)
    rationale = Column(Text, nullable=True)
    title = Column(String(512), nullable=True)
    hook = Column(Text, nullable=True)

    # Review
    is_approved = Column(Boolean, nullable=True)  # None = undecided

    # Sound design
    sfx_video_url = Column(String(4096), nullable=True)
    music_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    video = relationship("Video", back_populates="clips")
    sfx_items = relationship(
        "SfxItem",
        back_populates="clip",
        cascade="all, delete-orphan",
        order_by="SfxItem.timestamp_seconds",
    )

    def __repr__(self):
        return f"<Clip(id={self.id}, {self.start_time}-{self.end_time}, rank={self.strategic_rank})>"

    @property
    def duration(self) -> float:
        return self._duration

    @validates("start_time", "end_time")
    def _recompute_duration(self, key, value):
        start = value if key == "start_time" else self.start_time
        end = value if key == "end_time" else self.end_time
        if start is not None and end is not None:
            self._duration = round(end - start, 3)
        return value

    def set_bounds(self, start_time: float, end_time: float) -> None:
        """Move both bounds at once, keeping start < end."""
        if start_time < 0:
            raise InvalidStateError("Start time cannot be negative")
        if end_time <= start_time:
            raise InvalidStateError("End time must be after start time")
        self.start_time = start_time
        self.end_time = end_time

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "video_id": self.video_id,
            "processed_path": self.processed_path,
            "cdn_url": self.cdn_url,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "strategic_rank": self.strategic_rank,
            "hook_score": self.hook_score,
            "rationale": self.rationale,
            "title": self.title,
            "hook": self.hook,
            "is_approved": self.is_approved,
            "sfx_video_url": self.sfx_video_url,
            "music_data": self.music_data,
        }


class SfxItem(Base):
    """One timestamped sound effect attached to a clip."""

    __tablename__ = "sfx_items"

    id = Column(Integer, primary_key=True, index=True)
    clip_id = Column(String(36), ForeignKey("clips.id", ondelete="CASCADE"), nullable=False, index=True)

    timestamp_seconds = Column(Float, nullable=False)
    label = Column(String(64), nullable=False)
    prompt = Column(Text, nullable=False)
    sfx_url = Column(String(4096), nullable=True)
    duration_seconds = Column(Float, nullable=False)
    volume = Column(Float, default=1.0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    clip = relationship("Clip", back_populates="sfx_items")

    def __repr__(self):
        return f"<SfxItem(id={self.id}, clip_id={self.clip_id}, t={self.timestamp_seconds})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "clip_id": self.clip_id,
            "timestamp_seconds": self.timestamp_seconds,
            "label": self.label,
            "prompt": self.prompt,
            "sfx_url": self.sfx_url,
            "duration_seconds": self.duration_seconds,
            "volume": self.volume,
        }
