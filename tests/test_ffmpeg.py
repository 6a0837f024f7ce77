"""Tests for ffmpeg helpers that don't need the binaries."""
import asyncio

import pytest

from clipora.utils import ffmpeg
from clipora.utils.ffmpeg import (
    FFmpegError,
    SilenceInterval,
    build_cut_command,
    cut_clip,
    has_audio_stream,
    parse_silence_output,
    run_tool,
)


SILENCEDETECT_LOG = """
[silencedetect @ 0x7f] silence_start: 3.21
[silencedetect @ 0x7f] silence_end: 4.05 | silence_duration: 0.84
size=N/A time=00:00:10.00 bitrate=N/A speed= 500x
[silencedetect @ 0x7f] silence_start: -0.01
[silencedetect @ 0x7f] silence_end: 0.4 | silence_duration: 0.41
[silencedetect @ 0x7f] silence_start: 58.7
"""


class _FakeProcess:
    def __init__(self, returncode=0, stdout=b"", stderr=b""):
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr

    async def communicate(self):
        return self._stdout, self._stderr


def test_parse_silence_output_orders_and_closes_trailing_silence():
    silences = parse_silence_output(SILENCEDETECT_LOG, media_duration=60.0)

    assert silences == [
        SilenceInterval(start=0.0, end=0.4),
        SilenceInterval(start=3.21, end=4.05),
        SilenceInterval(start=58.7, end=60.0),
    ]


def test_parse_silence_output_drops_open_silence_without_duration():
    silences = parse_silence_output(SILENCEDETECT_LOG)
    assert [s.start for s in silences] == [0.0, 3.21]


def test_parse_silence_output_empty():
    assert parse_silence_output("no audio here") == []


def test_cut_command_seeks_before_input():
    cmd = build_cut_command("/tmp/in.mp4", "/tmp/out.mp4", 12.5, 30.25)

    assert cmd.index("-ss") < cmd.index("-i")
    assert cmd[cmd.index("-ss") + 1] == "12.500"
    assert cmd[cmd.index("-t") + 1] == "30.250"
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-preset") + 1] == "ultrafast"
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[cmd.index("-vf") + 1] == "scale=trunc(iw/2)*2:trunc(ih/2)*2"
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert cmd[-1] == "/tmp/out.mp4"


@pytest.mark.asyncio
async def test_run_tool_raises_with_exit_code_and_stderr(monkeypatch):
    async def fake_exec(*args, **kwargs):
        return _FakeProcess(returncode=1, stderr=b"x" * 5000 + b"Invalid data found")

    monkeypatch.setattr(ffmpeg.asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(FFmpegError) as exc_info:
        await run_tool(["ffmpeg", "-i", "broken.mp4"], description="probe")

    assert exc_info.value.returncode == 1
    assert exc_info.value.stderr_tail.endswith("Invalid data found")
    assert len(exc_info.value.stderr_tail) == 2000


@pytest.mark.asyncio
async def test_run_tool_spawn_failure(monkeypatch):
    async def fake_exec(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(ffmpeg.asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(FFmpegError, match="Failed to spawn"):
        await run_tool(["ffmpeg", "-version"], description="version")


class _HangingProcess:
    def __init__(self):
        self.returncode = None
        self.killed = False

    async def communicate(self):
        await asyncio.Event().wait()

    def kill(self):
        self.killed = True

    async def wait(self):
        self.returncode = -9
        return self.returncode


@pytest.mark.asyncio
async def test_cancelled_run_kills_the_tool(monkeypatch):
    process = _HangingProcess()

    async def fake_exec(*args, **kwargs):
        return process

    monkeypatch.setattr(ffmpeg.asyncio, "create_subprocess_exec", fake_exec)

    task = asyncio.ensure_future(run_tool(["ffmpeg", "-i", "long.mp4"], description="silence detection"))
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert process.killed
    assert process.returncode == -9


@pytest.mark.asyncio
async def test_run_tool_unchecked_returns_result(monkeypatch):
    async def fake_exec(*args, **kwargs):
        return _FakeProcess(returncode=2, stdout=b"{}", stderr=b"warn")

    monkeypatch.setattr(ffmpeg.asyncio, "create_subprocess_exec", fake_exec)

    result = await run_tool(["ffprobe", "x"], description="probe", check=False)

    assert not result.ok
    assert result.stdout == b"{}"
    assert result.stderr == "warn"


@pytest.mark.asyncio
async def test_has_audio_stream(monkeypatch):
    outputs = iter([
        _FakeProcess(stdout=b'{"streams": [{"codec_type": "audio"}]}'),
        _FakeProcess(stdout=b'{"streams": []}'),
        _FakeProcess(returncode=1),
    ])

    async def fake_exec(*args, **kwargs):
        return next(outputs)

    monkeypatch.setattr(ffmpeg.asyncio, "create_subprocess_exec", fake_exec)

    assert await has_audio_stream("a.mp4") is True
    assert await has_audio_stream("b.mp4") is False
    assert await has_audio_stream("c.mp4") is False


@pytest.mark.asyncio
async def test_cut_clip_rejects_non_positive_duration(tmp_path):
    with pytest.raises(FFmpegError):
        await cut_clip(tmp_path / "in.mp4", 10.0, 0.0, "abc", tmp_path)


@pytest.mark.asyncio
async def test_cut_clip_names_output_by_clip_id(monkeypatch, tmp_path):
    seen = []

    async def fake_exec(*args, **kwargs):
        seen.append(args)
        return _FakeProcess()

    monkeypatch.setattr(ffmpeg.asyncio, "create_subprocess_exec", fake_exec)

    path = await cut_clip(tmp_path / "in.mp4", 5.0, 20.0, "abc", tmp_path / "clips")

    assert path == tmp_path / "clips" / "clip_abc.mp4"
    assert seen[0][-1] == str(path)
