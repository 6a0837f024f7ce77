"""Tests for the speech, shot detection and generative model adapters with fake SDK clients."""
from datetime import timedelta
from types import SimpleNamespace

import pytest

from clipora.errors import ConfigurationError
from clipora.services import gemini
from clipora.services.gemini import GenerativeModelClient, parse_json_payload, strip_code_fences
from clipora.services.shots import ShotDetector, parse_shot_annotations
from clipora.services.transcription import TranscriptionService, offset_seconds, parse_recognize_response


def _word(text, start, end):
    return SimpleNamespace(word=text, start_time=timedelta(seconds=start), end_time=timedelta(seconds=end))


RECOGNIZE_RESPONSE = SimpleNamespace(results=[
    SimpleNamespace(alternatives=[SimpleNamespace(
        transcript="Hello there.",
        words=[_word("Hello", 0.0, 0.4), _word("there.", 0.5, 0.9)],
    )]),
    SimpleNamespace(alternatives=[]),
    SimpleNamespace(alternatives=[SimpleNamespace(
        transcript=" General Kenobi.",
        words=[_word("General", 1.2, 1.6), _word("Kenobi.", 1.7, 2.3)],
    )]),
])


class _FakeOperation:
    def __init__(self, result):
        self._result = result
        self.timeout = None

    def result(self, timeout=None):
        self.timeout = timeout
        return self._result


class TestTranscription:

    def test_offset_seconds_accepts_both_duration_shapes(self):
        assert offset_seconds(timedelta(seconds=1, microseconds=500000)) == 1.5
        assert offset_seconds(SimpleNamespace(seconds=2, nanos=250000000)) == 2.25
        assert offset_seconds(None) == 0.0

    def test_parse_response_joins_text_and_words(self):
        transcript = parse_recognize_response(RECOGNIZE_RESPONSE)

        assert transcript.text == "Hello there. General Kenobi."
        assert [w.word for w in transcript.words] == ["Hello", "there.", "General", "Kenobi."]
        assert transcript.words[3].end == pytest.approx(2.3)
        assert transcript.has_word_timings

    def test_no_timings(self):
        response = SimpleNamespace(results=[
            SimpleNamespace(alternatives=[SimpleNamespace(transcript="hi", words=[])]),
        ])
        assert not parse_recognize_response(response).has_word_timings

    @pytest.mark.asyncio
    async def test_transcribe_uses_long_running_recognition(self):
        requests = []

        class _FakeSpeechClient:
            def long_running_recognize(self, config, audio):
                requests.append((config, audio))
                return _FakeOperation(RECOGNIZE_RESPONSE)

        transcript = await TranscriptionService(_FakeSpeechClient()).transcribe("gs://uploads/audio/v.ogg")

        config, audio = requests[0]
        assert audio.uri == "gs://uploads/audio/v.ogg"
        assert config.sample_rate_hertz == 16000
        assert config.enable_word_time_offsets
        assert len(transcript.words) == 4


class TestShots:

    def test_parse_shot_annotations(self):
        result = SimpleNamespace(annotation_results=[SimpleNamespace(shot_annotations=[
            SimpleNamespace(start_time_offset=timedelta(seconds=0), end_time_offset=timedelta(seconds=4.2)),
            SimpleNamespace(start_time_offset=timedelta(seconds=4.2), end_time_offset=timedelta(seconds=9)),
        ])])

        shots = parse_shot_annotations(result)

        assert [s.to_dict() for s in shots] == [
            {"startTime": 0.0, "endTime": 4.2},
            {"startTime": 4.2, "endTime": 9.0},
        ]

    def test_empty_result(self):
        assert parse_shot_annotations(SimpleNamespace(annotation_results=[])) == []

    @pytest.mark.asyncio
    async def test_detect_shots(self):
        requests = []

        class _FakeVideoClient:
            def annotate_video(self, request):
                requests.append(request)
                return _FakeOperation(SimpleNamespace(annotation_results=[]))

        shots = await ShotDetector(_FakeVideoClient()).detect_shots("gs://uploads/1/talk.mp4")

        assert shots == []
        assert requests[0]["input_uri"] == "gs://uploads/1/talk.mp4"


class TestGenerativeModelClient:

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n[1]\n```') == "[1]"
        assert strip_code_fences(' {"a": 1} ') == '{"a": 1}'

    def test_parse_json_payload_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_json_payload("Sure! Here are your clips:")

    @pytest.mark.asyncio
    async def test_generate_json_attaches_video(self):
        calls = []

        class _FakeModels:
            async def generate_content(self, model, contents, config):
                calls.append((model, contents, config))
                return SimpleNamespace(text='{"clips": []}')

        fake = SimpleNamespace(aio=SimpleNamespace(models=_FakeModels()))
        text = await GenerativeModelClient(fake).generate_json(
            "pick clips", video_uri="gs://uploads/1/talk.mp4", model="gemini-test", temperature=0.1
        )

        model, contents, config = calls[0]
        assert text == '{"clips": []}'
        assert model == "gemini-test"
        assert len(contents) == 2
        assert contents[0].file_data.file_uri == "gs://uploads/1/talk.mp4"
        assert contents[1].text == "pick clips"
        assert config.response_mime_type == "application/json"
        assert config.temperature == 0.1

    def test_client_requires_project(self, monkeypatch):
        monkeypatch.setattr(gemini.settings, "gcp_project_id", None)
        with pytest.raises(ConfigurationError):
            GenerativeModelClient().client
