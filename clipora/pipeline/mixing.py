"""Mix timed sound effects and a music bed onto a clip.

Inputs are laid out as ``[0]`` the clip, ``[1..N]`` the sound effects and
``[N+1]`` the music bed. Every sound effect is volume-adjusted and delayed to
its timestamp on both stereo channels, then all tracks are combined with an
unnormalized ``amix`` so adding tracks never turns the base audio down.
"""
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import httpx

from clipora.config import settings
from clipora.errors import InvalidStateError, MediaToolError
from clipora.utils.ffmpeg import has_audio_stream, mix_audio_onto_video
from clipora.utils.scratch import scratch_directory

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "sfxmix-"


@dataclass
class SoundTrack:
    """A sound effect to place on the clip timeline."""
    url: str
    timestamp_seconds: float
    volume: Optional[float] = None


@dataclass
class MusicBed:
    """A looping background track under the whole clip."""
    url: str
    volume: Optional[float] = None


def clamp_volume(volume: Optional[float], default: float) -> float:
    if volume is None:
        return default
    return max(0.0, min(1.0, float(volume)))


def build_mix_filter(
    tracks: Sequence[SoundTrack],
    base_has_audio: bool,
    music: Optional[MusicBed] = None,
    silent_base_seconds: Optional[int] = None,
) -> str:
    """
    Build the filter_complex graph for a mix.

    Args:
        tracks: Sound effects, in input order
        base_has_audio: Whether input 0 carries an audio stream
        music: Optional music bed, expected as the last input
        silent_base_seconds: Length of the synthesized base when the clip is silent

    Returns:
        Filter graph producing the ``[aout]`` label
    """
    silent_base_seconds = settings.silent_base_seconds if silent_base_seconds is None else silent_base_seconds

    filters = []
    for i, track in enumerate(tracks):
        delay_ms = int(round(track.timestamp_seconds * 1000))
        volume = clamp_volume(track.volume, 1.0)
        filters.append(f"[{i + 1}:a]volume={volume:g},adelay={delay_ms}|{delay_ms}[s{i}]")

    if music is not None:
        music_volume = clamp_volume(music.volume, settings.default_music_volume)
        filters.append(f"[{len(tracks) + 1}:a]aloop=loop=-1:size=2e+09,volume={music_volume:g}[bgm]")

    if base_has_audio:
        base_label = "[0:a]"
    else:
        filters.insert(0, f"aevalsrc=0:c=stereo:r=44100:d={silent_base_seconds}[silence]")
        base_label = "[silence]"

    labels = base_label + "".join(f"[s{i}]" for i in range(len(tracks)))
    if music is not None:
        labels += "[bgm]"
    input_count = 1 + len(tracks) + (1 if music is not None else 0)

    filters.append(f"{labels}amix=inputs={input_count}:normalize=0[aout]")
    return ";".join(filters)


async def download_to_file(client: httpx.AsyncClient, url: str, destination: Path) -> Path:
    """Fetch a URL into a local file."""
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise MediaToolError(f"Failed to download {url}: {e}")
    destination.write_bytes(response.content)
    return destination


async def mix_sounds_onto_video(
    clip_url: str,
    tracks: Sequence[SoundTrack],
    music: Optional[MusicBed] = None,
    clip_duration: Optional[float] = None,
) -> bytes:
    """
    Download a clip and its sounds, mix them, and return the mixed MP4 bytes.

    All downloads and the output live in a scratch directory that is removed
    whether the mix succeeds or fails. A silent clip gets a synthesized base at
    least as long as clip_duration so the video is not trimmed.

    Raises:
        InvalidStateError: If there is nothing to mix
        MediaToolError: If a download or the ffmpeg run fails
    """
    if not tracks and music is None:
        raise InvalidStateError("Nothing to mix: no sound effects and no music")

    with scratch_directory(SCRATCH_PREFIX) as work_dir:
        video_path = work_dir / "input.mp4"
        audio_paths: List[Path] = []

        async with httpx.AsyncClient(
            timeout=settings.download_timeout_seconds,
            follow_redirects=True,
        ) as client:
            await download_to_file(client, clip_url, video_path)
            for i, track in enumerate(tracks):
                audio_paths.append(await download_to_file(client, track.url, work_dir / f"sfx_{i}.mp3"))
            if music is not None:
                audio_paths.append(await download_to_file(client, music.url, work_dir / "music.mp3"))

        base_has_audio = await has_audio_stream(video_path)
        silent_base_seconds = settings.silent_base_seconds
        if clip_duration:
            silent_base_seconds = max(silent_base_seconds, math.ceil(clip_duration))
        filter_complex = build_mix_filter(tracks, base_has_audio, music, silent_base_seconds)
        logger.info(
            f"Mixing {len(tracks)} sound effects{' and music' if music else ''} "
            f"onto clip (base audio: {base_has_audio})"
        )

        output_path = await mix_audio_onto_video(
            video_path,
            audio_paths,
            filter_complex,
            work_dir / "output.mp4",
        )
        return output_path.read_bytes()
