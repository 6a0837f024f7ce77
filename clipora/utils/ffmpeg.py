"""FFmpeg and ffprobe utilities."""
import asyncio
import json
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from clipora.config import settings
from clipora.errors import MediaToolError

logger = logging.getLogger(__name__)

_SILENCE_START_RE = re.compile(r"silence_start:\s*(-?[\d.]+)")
_SILENCE_END_RE = re.compile(r"silence_end:\s*(-?[\d.]+)")


class FFmpegError(MediaToolError):
    """FFmpeg related error."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr_tail: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr_tail = stderr_tail


@dataclass
class ToolResult:
    """Outcome of one external tool invocation."""
    args: List[str]
    returncode: int
    stdout: bytes
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def stderr_tail(self) -> str:
        return self.stderr[-settings.stderr_tail_chars:]


@dataclass
class SilenceInterval:
    """A quiet stretch of the audio track."""
    start: float
    end: float

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


def check_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return shutil.which(settings.ffmpeg_path) is not None


def check_ffprobe_available() -> bool:
    """Check if ffprobe is available."""
    return shutil.which(settings.ffprobe_path) is not None


async def run_tool(args: List[str], description: str, check: bool = True) -> ToolResult:
    """
    Run an external media tool and capture its output.

    Args:
        args: Full command line, executable first
        description: Short label used in logs and errors
        check: Raise FFmpegError on a non-zero exit

    Returns:
        ToolResult with exit code, stdout bytes and decoded stderr

    Raises:
        FFmpegError: If the tool cannot be spawned, or exits non-zero when check is set
    """
    logger.debug(f"Running {description}: {' '.join(args)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise FFmpegError(f"Failed to spawn {args[0]} for {description}: {e}")

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise
    result = ToolResult(
        args=list(args),
        returncode=proc.returncode,
        stdout=stdout or b"",
        stderr=(stderr or b"").decode("utf-8", errors="ignore"),
    )

    if check and not result.ok:
        logger.error(f"{description} failed (exit {result.returncode}):\n{result.stderr_tail}")
        raise FFmpegError(
            f"{description} failed with exit code {result.returncode}",
            returncode=result.returncode,
            stderr_tail=result.stderr_tail,
        )

    return result


async def get_video_duration(video_path: str | Path) -> float:
    """
    Get container duration in seconds using ffprobe.

    Raises:
        FFmpegError: If ffprobe fails or reports no duration
    """
    result = await run_tool(
        [
            settings.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            str(video_path),
        ],
        description="ffprobe duration",
    )

    try:
        data = json.loads(result.stdout.decode())
        return float(data["format"]["duration"])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise FFmpegError(f"Failed to parse ffprobe output: {e}")


async def has_audio_stream(video_path: str | Path) -> bool:
    """Check whether a media file carries at least one audio stream."""
    result = await run_tool(
        [
            settings.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-select_streams", "a",
            str(video_path),
        ],
        description="ffprobe audio streams",
        check=False,
    )
    if not result.ok:
        logger.warning(f"Audio probe failed for {video_path}; treating as silent")
        return False

    try:
        streams = json.loads(result.stdout.decode()).get("streams")
    except json.JSONDecodeError:
        return False
    return isinstance(streams, list) and len(streams) > 0


def parse_silence_output(stderr: str, media_duration: Optional[float] = None) -> List[SilenceInterval]:
    """
    Parse silencedetect log lines into ordered intervals.

    A silence still open when the stream ends is closed at media_duration
    when it is known, and dropped otherwise.
    """
    starts = [float(m) for m in _SILENCE_START_RE.findall(stderr)]
    ends = [float(m) for m in _SILENCE_END_RE.findall(stderr)]

    intervals = []
    for start, end in zip(starts, ends):
        intervals.append(SilenceInterval(start=max(0.0, start), end=end))

    if len(starts) > len(ends) and media_duration is not None:
        tail_start = max(0.0, starts[len(ends)])
        if tail_start < media_duration:
            intervals.append(SilenceInterval(start=tail_start, end=media_duration))

    return sorted(intervals, key=lambda s: s.start)


async def detect_silences(
    video_path: str | Path,
    noise_db: float = None,
    min_duration: float = None,
    media_duration: Optional[float] = None,
) -> List[SilenceInterval]:
    """
    Detect silent intervals in the audio track with the silencedetect filter.

    Args:
        video_path: Path to video file
        noise_db: Noise floor in dB (default from settings)
        min_duration: Minimum silence length in seconds (default from settings)
        media_duration: Optional known duration used to close a trailing silence

    Returns:
        Silence intervals ordered by start time
    """
    noise_db = settings.silence_noise_db if noise_db is None else noise_db
    min_duration = settings.silence_min_duration if min_duration is None else min_duration

    result = await run_tool(
        [
            settings.ffmpeg_path,
            "-hide_banner",
            "-i", str(video_path),
            "-af", f"silencedetect=noise={noise_db}dB:d={min_duration}",
            "-f", "null",
            "-",
        ],
        description="silence detection",
    )

    silences = parse_silence_output(result.stderr, media_duration)
    logger.info(f"Detected {len(silences)} silence segments")
    return silences


async def extract_audio_ogg_opus(video_path: str | Path, output_path: str | Path) -> Path:
    """Transcode the audio track to mono 16 kHz Opus in an OGG container."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    await run_tool(
        [
            settings.ffmpeg_path,
            "-y",
            "-i", str(video_path),
            "-vn",
            "-ac", "1",
            "-ar", "16000",
            "-c:a", "libopus",
            "-b:a", "32k",
            str(output_path),
        ],
        description="audio extraction",
    )
    return output_path


def build_cut_command(
    source_path: str | Path,
    output_path: str | Path,
    start_time: float,
    duration: float,
) -> List[str]:
    """Build the re-encoding cut command (input seeking, even dimensions, faststart)."""
    return [
        settings.ffmpeg_path,
        "-y",
        "-ss", f"{start_time:.3f}",
        "-i", str(source_path),
        "-t", f"{duration:.3f}",
        "-c:v", settings.cut_video_codec,
        "-preset", settings.cut_video_preset,
        "-crf", str(settings.cut_video_crf),
        "-c:a", settings.cut_audio_codec,
        "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2",
        "-movflags", "+faststart",
        str(output_path),
    ]


async def cut_clip(
    source_path: str | Path,
    start_time: float,
    duration: float,
    clip_id: str,
    output_dir: str | Path,
) -> Path:
    """
    Cut one clip out of the source video as a standalone file.

    Args:
        source_path: Path to source video
        start_time: Start time in seconds
        duration: Clip length in seconds
        clip_id: Identifier used to name the output file
        output_dir: Directory for the output file

    Returns:
        Path to the cut clip
    """
    if duration <= 0:
        raise FFmpegError(f"Refusing to cut clip {clip_id} with non-positive duration {duration}")

    output_path = Path(output_dir) / f"clip_{clip_id}.mp4"
    output_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Cutting clip {clip_id}: {start_time:.2f}s + {duration:.2f}s")
    await run_tool(
        build_cut_command(source_path, output_path, start_time, duration),
        description=f"cut clip {clip_id}",
    )
    return output_path


def build_mix_command(
    video_path: str | Path,
    audio_paths: List[str | Path],
    filter_complex: str,
    output_path: str | Path,
) -> List[str]:
    """Build the mix command: video stream copied, mixed audio re-encoded, trimmed to shortest."""
    cmd = [settings.ffmpeg_path, "-y", "-i", str(video_path)]
    for audio_path in audio_paths:
        cmd.extend(["-i", str(audio_path)])
    cmd.extend([
        "-filter_complex", filter_complex,
        "-map", "0:v",
        "-map", "[aout]",
        "-c:v", "copy",
        "-c:a", "aac",
        "-shortest",
        str(output_path),
    ])
    return cmd


async def mix_audio_onto_video(
    video_path: str | Path,
    audio_paths: List[str | Path],
    filter_complex: str,
    output_path: str | Path,
) -> Path:
    """Run an audio mix filter graph over a video and its extra audio inputs."""
    output_path = Path(output_path)
    await run_tool(
        build_mix_command(video_path, audio_paths, filter_complex, output_path),
        description="audio mix",
    )
    return output_path
