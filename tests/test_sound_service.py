"""Tests for per-clip sound design: analyzer fallbacks, generation and remixing."""
import json

import httpx
import pytest
import pytest_asyncio

from clipora.config import settings
from clipora.errors import AudioGenerationError, ConfigurationError, MediaToolError
from clipora.models.clip import SfxItem
from clipora.models.video import VideoStatus
from clipora.services import elevenlabs
from clipora.services.clip_service import ClipService
from clipora.services.sound_analyzer import FALLBACK_SUGGESTIONS, SoundAnalyzer, clamp_sfx_timestamp
from clipora.services.sound_service import SoundService, next_music_index, next_sfx_index


CLIP_URL = "https://cdn.example.com/1/v/clip.mp4"


class _FakeStorage:
    def __init__(self):
        self.uploads = []
        self.objects = {}

    async def upload_bytes(self, data, bucket, destination, content_type, cache_control=None):
        self.uploads.append((bucket, destination, content_type, cache_control))
        self.objects[destination] = data
        return f"gs://{bucket}/{destination}"


class _FakeModelClient:
    def __init__(self, response):
        self.response = response
        self.calls = 0

    async def generate_json(self, prompt, **kwargs):
        self.calls += 1
        if isinstance(self.response, BaseException):
            raise self.response
        return self.response


class _FakeGenerator:
    def __init__(self, audio=b"mp3"):
        self.audio = audio
        self.requests = []

    async def __call__(self, text, duration_seconds):
        self.requests.append((text, duration_seconds))
        return self.audio


class _FakeMixer:
    def __init__(self, error: Exception = None):
        self.error = error
        self.calls = []
        self.durations = []

    async def __call__(self, clip_url, tracks, music=None, clip_duration=None):
        self.calls.append((clip_url, list(tracks), music))
        self.durations.append(clip_duration)
        if self.error:
            raise self.error
        return b"mixed mp4"


@pytest.fixture
def buckets(monkeypatch):
    monkeypatch.setattr(settings, "processed_bucket", "processed")
    monkeypatch.setattr(settings, "cdn_base_url", "https://cdn.example.com")


@pytest_asyncio.fixture
async def clip_id(seed_video, seed_clips):
    video_id = await seed_video(status=VideoStatus.COMPLETED, transcription="and then the crowd went wild")
    (clip_id,) = await seed_clips(video_id, [(10.0, 40.0)], cdn_url=CLIP_URL)
    return clip_id


def _service(session, analyzer_response='[]', mixer=None, generator=None, storage=None):
    return SoundService(
        session,
        storage=storage or _FakeStorage(),
        analyzer=SoundAnalyzer(_FakeModelClient(analyzer_response)),
        audio_generator=generator or _FakeGenerator(),
        mixer=mixer or _FakeMixer(),
    )


# =============================================================================
# Analyzer
# =============================================================================

class TestSoundAnalyzer:

    @pytest.mark.asyncio
    async def test_suggestions_fall_back_on_model_error(self):
        analyzer = SoundAnalyzer(_FakeModelClient(RuntimeError("quota")))
        suggestions = await analyzer.suggest_sounds("Title", None, 8, 30.0, "text")

        assert suggestions == FALLBACK_SUGGESTIONS
        assert suggestions is not FALLBACK_SUGGESTIONS

    @pytest.mark.asyncio
    async def test_suggestion_labels_are_truncated(self):
        payload = json.dumps({
            "tone": "hype",
            "vibe": "big energy",
            "sfx": [{"label": "An Extremely Long Label Name", "prompt": "boom sound effect"}],
            "music": [{"label": "Beat", "prompt": "trap beat, no lyrics, background music"}],
        })
        suggestions = await SoundAnalyzer(_FakeModelClient(payload)).suggest_sounds("T", None, None, 30.0, None)

        assert suggestions.tone == "hype"
        assert suggestions.sfx[0].label == "An Extremely Lo"

    @pytest.mark.asyncio
    async def test_timed_plan_is_clamped_to_clip(self):
        payload = json.dumps([
            {"timestamp_seconds": -2, "label": "Boom", "prompt": "boom sound effect", "duration_seconds": 9},
            {"timestamp_seconds": 50, "label": "Ding", "prompt": "ding sound effect", "duration_seconds": 0.1},
        ])
        plan = await SoundAnalyzer(_FakeModelClient(payload)).plan_timed_sfx("T", None, 12.0, None)

        assert [p.timestamp_seconds for p in plan] == [0.0, 11.5]
        assert [p.duration_seconds for p in plan] == [5.0, 0.5]

    @pytest.mark.asyncio
    async def test_timed_plan_with_wrong_count_uses_fallback(self):
        payload = json.dumps([{"timestamp_seconds": 1, "label": "Boom", "prompt": "boom", "duration_seconds": 1}])
        plan = await SoundAnalyzer(_FakeModelClient(payload)).plan_timed_sfx("T", None, 3.0, None)

        assert [p.label for p in plan] == ["Intro Boom", "Whoosh", "Crowd Wow"]
        assert [p.timestamp_seconds for p in plan] == [0.3, 2.0, 2.5]

    def test_clamp_timestamp(self):
        assert clamp_sfx_timestamp(5.0, 30.0) == 5.0
        assert clamp_sfx_timestamp(29.9, 30.0) == 29.5
        assert clamp_sfx_timestamp(-1.0, 30.0) == 0.0


# =============================================================================
# Audio generation
# =============================================================================

class _FakeHttpClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.posted = []

    def __call__(self, *args, **kwargs):
        return self

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def post(self, url, json=None, headers=None):
        self.posted.append((url, json, headers))
        if self.error:
            raise self.error
        return self.response


class TestGenerateAudio:

    @pytest.mark.asyncio
    async def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "eleven_labs_api_key", None)
        with pytest.raises(ConfigurationError):
            await elevenlabs.generate_audio("boom", 2.0)

    @pytest.mark.asyncio
    async def test_returns_audio_bytes(self, monkeypatch):
        monkeypatch.setattr(settings, "eleven_labs_api_key", "xi-test")
        client = _FakeHttpClient(response=httpx.Response(200, content=b"ID3mp3"))
        monkeypatch.setattr(elevenlabs.httpx, "AsyncClient", client)

        audio = await elevenlabs.generate_audio("boom sound effect", 2.0)

        assert audio == b"ID3mp3"
        url, payload, headers = client.posted[0]
        assert url == "https://api.elevenlabs.io/v1/sound-generation"
        assert payload == {"text": "boom sound effect", "duration_seconds": 2.0, "prompt_influence": 0.3}
        assert headers["xi-api-key"] == "xi-test"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "eleven_labs_api_key", "xi-test")
        client = _FakeHttpClient(response=httpx.Response(401, text="invalid api key"))
        monkeypatch.setattr(elevenlabs.httpx, "AsyncClient", client)

        with pytest.raises(AudioGenerationError, match="401"):
            await elevenlabs.generate_audio("boom", 2.0)

    @pytest.mark.asyncio
    async def test_network_error_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "eleven_labs_api_key", "xi-test")
        client = _FakeHttpClient(error=httpx.ConnectError("unreachable"))
        monkeypatch.setattr(elevenlabs.httpx, "AsyncClient", client)

        with pytest.raises(AudioGenerationError):
            await elevenlabs.generate_audio("boom", 2.0)


# =============================================================================
# Sound service
# =============================================================================

def test_next_sfx_index_skips_used_files():
    items = [
        SfxItem(sfx_url="https://cdn.example.com/sounds/c/sfx_0.mp3"),
        SfxItem(sfx_url="https://cdn.example.com/sounds/c/sfx_3.mp3"),
        SfxItem(sfx_url=None),
    ]
    assert next_sfx_index(items) == 4
    assert next_sfx_index([]) == 0


def test_next_music_index_moves_past_current_bed():
    assert next_music_index(None) == 0
    assert next_music_index({"track_url": "https://cdn.example.com/sounds/c/music_2.mp3"}) == 3


class TestSoundService:

    @pytest.mark.asyncio
    async def test_add_sfx_generates_mixes_and_saves(self, session_factory, clip_id, buckets):
        storage = _FakeStorage()
        mixer = _FakeMixer()
        async with session_factory() as session:
            clip = await _service(session, mixer=mixer, storage=storage).add_sfx(
                clip_id, "glass shatter sound effect", 1.0, label="Shatter", volume=0.7
            )

        assert clip.sfx_video_url == f"https://cdn.example.com/sfx-videos/{clip_id}/output.mp4"
        assert [u[1] for u in storage.uploads] == [
            f"sounds/{clip_id}/sfx_0.mp3",
            f"sfx-videos/{clip_id}/output.mp4",
        ]
        clip_url, tracks, music = mixer.calls[0]
        assert clip_url == CLIP_URL
        assert [(t.timestamp_seconds, t.volume) for t in tracks] == [(1.0, 0.7)]
        assert music is None
        assert mixer.durations == [30.0]

        async with session_factory() as session:
            stored = await ClipService(session).get_clip(clip_id)
        assert [(i.label, i.timestamp_seconds) for i in stored.sfx_items] == [("Shatter", 1.0)]

    @pytest.mark.asyncio
    async def test_timestamp_outside_clip_rejected(self, session_factory, clip_id, buckets):
        generator = _FakeGenerator()
        async with session_factory() as session:
            with pytest.raises(ValueError):
                await _service(session, generator=generator).add_sfx(clip_id, "boom", 30.0)
        assert generator.requests == []

    @pytest.mark.asyncio
    async def test_mix_failure_leaves_clip_unchanged(self, session_factory, clip_id, buckets):
        mixer = _FakeMixer(error=MediaToolError("audio mix failed"))
        async with session_factory() as session:
            with pytest.raises(MediaToolError):
                await _service(session, mixer=mixer).add_sfx(clip_id, "boom", 1.0)

        async with session_factory() as session:
            stored = await ClipService(session).get_clip(clip_id)
        assert stored.sfx_items == []
        assert stored.sfx_video_url is None

    @pytest.mark.asyncio
    async def test_auto_generate_uses_fallback_plan(self, session_factory, clip_id, buckets):
        generator = _FakeGenerator()
        async with session_factory() as session:
            clip = await _service(session, analyzer_response="not json", generator=generator).auto_generate_sfx(clip_id)

        assert [i.label for i in clip.sfx_items] == ["Intro Boom", "Whoosh", "Crowd Wow"]
        assert len(generator.requests) == 3
        assert clip.sfx_video_url is not None

    @pytest.mark.asyncio
    async def test_deleting_last_sfx_clears_mix(self, session_factory, clip_id, buckets):
        async with session_factory() as session:
            clip = await _service(session).add_sfx(clip_id, "boom", 1.0)
            sfx_id = clip.sfx_items[0].id

        mixer = _FakeMixer()
        async with session_factory() as session:
            clip = await _service(session, mixer=mixer).delete_sfx(clip_id, sfx_id)

        assert clip.sfx_items == []
        assert clip.sfx_video_url is None
        assert mixer.calls == []

    @pytest.mark.asyncio
    async def test_update_sfx_moves_and_remixes(self, session_factory, clip_id, buckets):
        async with session_factory() as session:
            clip = await _service(session).add_sfx(clip_id, "boom", 1.0)
            sfx_id = clip.sfx_items[0].id

        mixer = _FakeMixer()
        generator = _FakeGenerator()
        async with session_factory() as session:
            clip = await _service(session, mixer=mixer, generator=generator).update_sfx(
                clip_id, sfx_id, timestamp_seconds=5.0, volume=0.4
            )

        assert generator.requests == []
        assert [(t.timestamp_seconds, t.volume) for t in mixer.calls[0][1]] == [(5.0, 0.4)]
        assert clip.sfx_items[0].timestamp_seconds == 5.0

    @pytest.mark.asyncio
    async def test_music_duration_is_capped(self, session_factory, clip_id, buckets):
        generator = _FakeGenerator()
        mixer = _FakeMixer()
        async with session_factory() as session:
            clip = await _service(session, generator=generator, mixer=mixer).set_music(
                clip_id, "lofi beat, no lyrics, background music", duration_seconds=60.0
            )

        assert generator.requests[0][1] == 22.0
        assert clip.music_data["track_url"] == f"https://cdn.example.com/sounds/{clip_id}/music_0.mp3"
        assert clip.music_data["volume"] == 0.5
        assert mixer.calls[0][2].url == clip.music_data["track_url"]

        async with session_factory() as session:
            clip = await _service(session).clear_music(clip_id)
        assert clip.music_data is None
        assert clip.sfx_video_url is None

    @pytest.mark.asyncio
    async def test_failed_music_swap_keeps_previous_track(self, session_factory, clip_id, buckets):
        storage = _FakeStorage()
        async with session_factory() as session:
            await _service(session, storage=storage, generator=_FakeGenerator(b"OLD")).set_music(
                clip_id, "calm piano, background music"
            )

        mixer = _FakeMixer(error=MediaToolError("audio mix failed"))
        async with session_factory() as session:
            with pytest.raises(MediaToolError):
                await _service(session, storage=storage, mixer=mixer, generator=_FakeGenerator(b"NEW")).set_music(
                    clip_id, "trap beat, background music"
                )

        async with session_factory() as session:
            stored = await ClipService(session).get_clip(clip_id)
        assert stored.music_data["prompt"] == "calm piano, background music"
        assert stored.music_data["track_url"].endswith(f"sounds/{clip_id}/music_0.mp3")
        assert storage.objects[f"sounds/{clip_id}/music_0.mp3"] == b"OLD"
        assert storage.objects[f"sounds/{clip_id}/music_1.mp3"] == b"NEW"
