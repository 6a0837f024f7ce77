"""Sound effect and music operations on a single clip.

Every operation generates and uploads any new audio first, then mixes, and
only writes the clip once the mixed video is uploaded. A failure anywhere
leaves the clip row exactly as it was.
"""
import logging
import re
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from clipora.config import settings
from clipora.errors import InvalidStateError, NotFoundError
from clipora.models.clip import Clip, SfxItem
from clipora.models.video import Video
from clipora.pipeline.mixing import MusicBed, SoundTrack, mix_sounds_onto_video
from clipora.services.clip_service import ClipService
from clipora.services.elevenlabs import generate_audio
from clipora.services.sound_analyzer import (
    MAX_LABEL_CHARS,
    SoundAnalyzer,
    SoundSuggestions,
)
from clipora.services.storage import CLIP_CACHE_CONTROL, MIXED_VIDEO_CACHE_CONTROL, ObjectStorage

logger = logging.getLogger(__name__)

_SFX_INDEX_RE = re.compile(r"/sfx_(\d+)\.mp3$")
_MUSIC_INDEX_RE = re.compile(r"/music_(\d+)\.mp3$")


def sfx_object_path(clip_id: str, index: int) -> str:
    return f"sounds/{clip_id}/sfx_{index}.mp3"


def music_object_path(clip_id: str, index: int) -> str:
    return f"sounds/{clip_id}/music_{index}.mp3"


def mixed_video_path(clip_id: str) -> str:
    return f"sfx-videos/{clip_id}/output.mp4"


def next_sfx_index(items: Sequence[SfxItem]) -> int:
    """First sfx file index not used by any existing item of the clip."""
    used = [
        int(match.group(1))
        for match in (_SFX_INDEX_RE.search(item.sfx_url or "") for item in items)
        if match
    ]
    return max(used) + 1 if used else 0


def next_music_index(music_data: Optional[dict]) -> int:
    """Index for a new music file; the current bed keeps its own object until replaced."""
    match = _MUSIC_INDEX_RE.search((music_data or {}).get("track_url") or "")
    return int(match.group(1)) + 1 if match else 0


class SoundService:
    """Service for per-clip sound design."""

    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[ObjectStorage] = None,
        analyzer: Optional[SoundAnalyzer] = None,
        audio_generator: Callable[[str, float], Awaitable[bytes]] = generate_audio,
        mixer: Callable[..., Awaitable[bytes]] = mix_sounds_onto_video,
    ):
        self.db = db
        self.storage = storage or ObjectStorage()
        self.analyzer = analyzer or SoundAnalyzer()
        self.audio_generator = audio_generator
        self.mixer = mixer
        self.clips = ClipService(db)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _transcript(self, clip: Clip) -> Optional[str]:
        video = await self.db.get(Video, clip.video_id)
        return video.transcription if video else None

    async def _upload_audio(self, data: bytes, path: str) -> str:
        settings.require("processed_bucket")
        await self.storage.upload_bytes(
            data,
            settings.processed_bucket,
            path,
            content_type="audio/mpeg",
            cache_control=CLIP_CACHE_CONTROL,
        )
        return settings.public_url(settings.processed_bucket, path)

    async def _render(
        self,
        clip: Clip,
        items: Sequence[SfxItem],
        music_data: Optional[dict],
    ) -> Optional[str]:
        """Mix items and music onto the clip and upload; None when there is nothing to mix."""
        tracks = [
            SoundTrack(url=item.sfx_url, timestamp_seconds=item.timestamp_seconds, volume=item.volume)
            for item in sorted(items, key=lambda i: i.timestamp_seconds)
            if item.sfx_url
        ]
        music = None
        if music_data and music_data.get("track_url"):
            music = MusicBed(url=music_data["track_url"], volume=music_data.get("volume"))

        if not tracks and music is None:
            return None
        if not clip.cdn_url:
            raise InvalidStateError(f"Clip {clip.id} has no published media to mix onto")

        settings.require("processed_bucket")
        data = await self.mixer(clip.cdn_url, tracks, music, clip_duration=clip.duration)
        path = mixed_video_path(clip.id)
        await self.storage.upload_bytes(
            data,
            settings.processed_bucket,
            path,
            content_type="video/mp4",
            cache_control=MIXED_VIDEO_CACHE_CONTROL,
        )
        url = settings.public_url(settings.processed_bucket, path)
        logger.info(f"Mixed video for clip {clip.id} uploaded: {url}")
        return url

    def _validate_timestamp(self, clip: Clip, timestamp: float) -> None:
        if timestamp < 0 or timestamp >= clip.duration:
            raise ValueError(
                f"Timestamp {timestamp} is outside the clip (0 to {clip.duration}s)"
            )

    @staticmethod
    def _validate_duration(duration: float) -> None:
        if not settings.min_sfx_duration <= duration <= settings.max_sfx_duration:
            raise ValueError(
                f"Sound effect duration must be between {settings.min_sfx_duration} "
                f"and {settings.max_sfx_duration} seconds"
            )

    @staticmethod
    def _validate_volume(volume: float) -> None:
        if not 0.0 <= volume <= 1.0:
            raise ValueError("Volume must be between 0.0 and 1.0")

    async def _require_item(self, clip: Clip, sfx_id: int) -> SfxItem:
        for item in clip.sfx_items:
            if item.id == sfx_id:
                return item
        raise NotFoundError(f"Sound effect {sfx_id} not found on clip {clip.id}")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def auto_generate_sfx(self, clip_id: str) -> Clip:
        """
        Let the assistant model place 2-4 sound effects, generate them and remix.

        Replaces any sound effects the clip already has.
        """
        clip = await self.clips.require_clip(clip_id)
        plan = await self.analyzer.plan_timed_sfx(
            clip.title,
            clip.rationale,
            clip.duration,
            await self._transcript(clip),
        )

        index = next_sfx_index(clip.sfx_items)
        items = []
        for offset, planned in enumerate(plan):
            audio = await self.audio_generator(planned.prompt, planned.duration_seconds)
            url = await self._upload_audio(audio, sfx_object_path(clip.id, index + offset))
            items.append(SfxItem(
                timestamp_seconds=planned.timestamp_seconds,
                label=planned.label,
                prompt=planned.prompt,
                sfx_url=url,
                duration_seconds=planned.duration_seconds,
                volume=1.0,
            ))

        mixed_url = await self._render(clip, items, clip.music_data)

        clip.sfx_items = items
        clip.sfx_video_url = mixed_url
        await self.db.commit()
        logger.info(f"Generated {len(items)} sound effects for clip {clip.id}")
        return clip

    async def add_sfx(
        self,
        clip_id: str,
        prompt: str,
        timestamp_seconds: float,
        label: Optional[str] = None,
        duration_seconds: float = 2.0,
        volume: float = 1.0,
    ) -> Clip:
        """Generate one sound effect at a timestamp and remix."""
        clip = await self.clips.require_clip(clip_id)
        self._validate_timestamp(clip, timestamp_seconds)
        self._validate_duration(duration_seconds)
        self._validate_volume(volume)

        audio = await self.audio_generator(prompt, duration_seconds)
        url = await self._upload_audio(audio, sfx_object_path(clip.id, next_sfx_index(clip.sfx_items)))
        item = SfxItem(
            timestamp_seconds=timestamp_seconds,
            label=(label or "SFX")[:MAX_LABEL_CHARS],
            prompt=prompt,
            sfx_url=url,
            duration_seconds=duration_seconds,
            volume=volume,
        )

        mixed_url = await self._render(clip, list(clip.sfx_items) + [item], clip.music_data)

        clip.sfx_items.append(item)
        clip.sfx_video_url = mixed_url
        await self.db.commit()
        return clip

    async def update_sfx(
        self,
        clip_id: str,
        sfx_id: int,
        prompt: Optional[str] = None,
        timestamp_seconds: Optional[float] = None,
        volume: Optional[float] = None,
        label: Optional[str] = None,
    ) -> Clip:
        """Edit one sound effect; a new prompt regenerates its audio. Always remixes."""
        clip = await self.clips.require_clip(clip_id)
        item = await self._require_item(clip, sfx_id)

        if timestamp_seconds is not None:
            self._validate_timestamp(clip, timestamp_seconds)
        if volume is not None:
            self._validate_volume(volume)

        new_url = item.sfx_url
        if prompt is not None and prompt != item.prompt:
            audio = await self.audio_generator(prompt, item.duration_seconds)
            new_url = await self._upload_audio(audio, sfx_object_path(clip.id, next_sfx_index(clip.sfx_items)))

        # Detached copy; the row is only written after a successful mix
        edited = SfxItem(
            timestamp_seconds=item.timestamp_seconds if timestamp_seconds is None else timestamp_seconds,
            label=item.label,
            prompt=item.prompt if prompt is None else prompt,
            sfx_url=new_url,
            duration_seconds=item.duration_seconds,
            volume=item.volume if volume is None else volume,
        )
        others = [other for other in clip.sfx_items if other.id != sfx_id]
        mixed_url = await self._render(clip, others + [edited], clip.music_data)

        item.timestamp_seconds = edited.timestamp_seconds
        item.prompt = edited.prompt
        item.sfx_url = edited.sfx_url
        item.volume = edited.volume
        if label is not None:
            item.label = label[:MAX_LABEL_CHARS]
        clip.sfx_video_url = mixed_url
        await self.db.commit()
        return clip

    async def delete_sfx(self, clip_id: str, sfx_id: int) -> Clip:
        """Remove one sound effect and remix the rest (or clear the mix)."""
        clip = await self.clips.require_clip(clip_id)
        item = await self._require_item(clip, sfx_id)

        remaining = [other for other in clip.sfx_items if other.id != sfx_id]
        mixed_url = await self._render(clip, remaining, clip.music_data)

        clip.sfx_items.remove(item)
        clip.sfx_video_url = mixed_url
        await self.db.commit()
        return clip

    async def set_music(
        self,
        clip_id: str,
        prompt: str,
        label: Optional[str] = None,
        volume: Optional[float] = None,
        duration_seconds: Optional[float] = None,
    ) -> Clip:
        """Generate a music bed for the clip and remix."""
        clip = await self.clips.require_clip(clip_id)
        if volume is not None:
            self._validate_volume(volume)

        duration = min(duration_seconds or settings.max_music_duration, settings.max_music_duration)
        audio = await self.audio_generator(prompt, duration)
        path = music_object_path(clip.id, next_music_index(clip.music_data))
        url = await self._upload_audio(audio, path)
        music_data = {
            "label": (label or "Music")[:MAX_LABEL_CHARS],
            "prompt": prompt,
            "track_url": url,
            "volume": settings.default_music_volume if volume is None else volume,
        }

        mixed_url = await self._render(clip, clip.sfx_items, music_data)

        clip.music_data = music_data
        clip.sfx_video_url = mixed_url
        await self.db.commit()
        return clip

    async def clear_music(self, clip_id: str) -> Clip:
        """Drop the music bed and remix the sound effects alone."""
        clip = await self.clips.require_clip(clip_id)
        mixed_url = await self._render(clip, clip.sfx_items, None)

        clip.music_data = None
        clip.sfx_video_url = mixed_url
        await self.db.commit()
        return clip

    async def suggest_sounds(self, clip_id: str) -> SoundSuggestions:
        """Tone, vibe and prompt ideas for the clip."""
        clip = await self.clips.require_clip(clip_id)
        return await self.analyzer.suggest_sounds(
            clip.title,
            clip.rationale,
            clip.hook_score,
            clip.duration,
            await self._transcript(clip),
        )

    async def list_sfx(self, clip_id: str) -> List[SfxItem]:
        clip = await self.clips.require_clip(clip_id)
        return sorted(clip.sfx_items, key=lambda i: i.timestamp_seconds)
