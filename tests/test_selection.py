"""Tests for clip selection parsing, validation and retry."""
import asyncio
import json

import pytest

from clipora.errors import ClipValidationError, SelectionTimeoutError
from clipora.pipeline import selection
from clipora.pipeline.selection import (
    ClipSelector,
    TimestampCandidate,
    WordIndexCandidate,
    WordIndexSelection,
    build_text_prompt,
    parse_selection,
    target_clip_count,
    validate_timestamp_clips,
    validate_word_clips,
)
from clipora.services.transcription import Word


def make_words(count: int, step: float = 0.36) -> list:
    return [Word(word=f"w{i}", start=i * step, end=i * step + 0.3) for i in range(count)]


def word_payload(*spans) -> str:
    return json.dumps({
        "clips": [
            {
                "start_word_index": start,
                "end_word_index": end,
                "title": f"Clip {rank}",
                "hook": "Listen to this",
                "hook_score": 8,
                "strategic_rank": rank,
                "rationale": "Strong opener",
            }
            for rank, (start, end) in enumerate(spans, start=1)
        ]
    })


def timestamp_payload(*spans) -> str:
    return json.dumps({
        "clips": [
            {
                "start_time_seconds": start,
                "end_time_seconds": end,
                "title": f"Clip {rank}",
                "strategic_rank": rank,
            }
            for rank, (start, end) in enumerate(spans, start=1)
        ]
    })


class _FakeModelClient:
    """Replays queued responses; exceptions are raised, coroutine functions awaited."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def generate_json(self, prompt, response_schema=None, video_uri=None, model=None, temperature=None):
        self.calls.append({
            "prompt": prompt,
            "schema": response_schema,
            "video_uri": video_uri,
        })
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response()
        return response


# =============================================================================
# Target count
# =============================================================================

class TestTargetClipCount:

    def test_one_clip_per_three_minutes(self):
        assert target_clip_count(12 * 60) == 4

    def test_lower_bound(self):
        assert target_clip_count(0) == 3
        assert target_clip_count(90) == 3

    def test_upper_bound(self):
        assert target_clip_count(100 * 60) == 15

    def test_rounds_half_up(self):
        # 13.5 minutes -> 4.5 clips
        assert target_clip_count(13.5 * 60) == 5


# =============================================================================
# Parsing and validation
# =============================================================================

class TestParseSelection:

    def test_parses_fenced_json(self):
        text = "```json\n" + word_payload((0, 99)) + "\n```"
        clips = parse_selection(text, WordIndexSelection)
        assert clips[0].start_word_index == 0
        assert clips[0].end_word_index == 99

    def test_malformed_json(self):
        with pytest.raises(ClipValidationError):
            parse_selection("{not json", WordIndexSelection)

    def test_empty_clips(self):
        with pytest.raises(ClipValidationError, match="Empty or invalid clips array"):
            parse_selection('{"clips": []}', WordIndexSelection)

    def test_missing_clips_key(self):
        with pytest.raises(ClipValidationError, match="Empty or invalid clips array"):
            parse_selection('{"results": [1]}', WordIndexSelection)

    def test_schema_mismatch(self):
        with pytest.raises(ClipValidationError):
            parse_selection('{"clips": [{"start_word_index": "soon"}]}', WordIndexSelection)


class TestValidateWordClips:

    def test_valid_set(self):
        clips = [
            WordIndexCandidate(start_word_index=0, end_word_index=99),
            WordIndexCandidate(start_word_index=200, end_word_index=299),
        ]
        validate_word_clips(clips, word_count=300)

    def test_inverted_indices(self):
        clips = [WordIndexCandidate(start_word_index=120, end_word_index=90)]
        with pytest.raises(ClipValidationError, match="Invalid word indices"):
            validate_word_clips(clips, word_count=300)

    def test_end_out_of_range(self):
        clips = [WordIndexCandidate(start_word_index=200, end_word_index=300)]
        with pytest.raises(ClipValidationError, match="Invalid word indices"):
            validate_word_clips(clips, word_count=300)

    def test_too_short(self):
        clips = [WordIndexCandidate(start_word_index=0, end_word_index=78)]
        with pytest.raises(ClipValidationError, match="Clip too short"):
            validate_word_clips(clips, word_count=300)

    def test_exactly_minimum_words(self):
        validate_word_clips([WordIndexCandidate(start_word_index=0, end_word_index=79)], word_count=300)

    def test_shared_word_overlaps(self):
        clips = [
            WordIndexCandidate(start_word_index=100, end_word_index=199),
            WordIndexCandidate(start_word_index=0, end_word_index=100),
        ]
        with pytest.raises(ClipValidationError, match="Clips overlap"):
            validate_word_clips(clips, word_count=300)


class TestValidateTimestampClips:

    def test_valid_touching_clips(self):
        clips = [
            TimestampCandidate(start_time_seconds=0, end_time_seconds=30),
            TimestampCandidate(start_time_seconds=30, end_time_seconds=60),
        ]
        validate_timestamp_clips(clips, video_duration=60)

    def test_inverted(self):
        clips = [TimestampCandidate(start_time_seconds=40, end_time_seconds=20)]
        with pytest.raises(ClipValidationError, match="Invalid timestamps"):
            validate_timestamp_clips(clips, video_duration=60)

    def test_past_end_of_video(self):
        clips = [TimestampCandidate(start_time_seconds=40, end_time_seconds=61)]
        with pytest.raises(ClipValidationError, match="out of range"):
            validate_timestamp_clips(clips, video_duration=60)

    def test_too_short(self):
        clips = [TimestampCandidate(start_time_seconds=10, end_time_seconds=15)]
        with pytest.raises(ClipValidationError, match="Clip too short"):
            validate_timestamp_clips(clips, video_duration=60)

    def test_overlap(self):
        clips = [
            TimestampCandidate(start_time_seconds=0, end_time_seconds=30),
            TimestampCandidate(start_time_seconds=25, end_time_seconds=50),
        ]
        with pytest.raises(ClipValidationError, match="Clips overlap"):
            validate_timestamp_clips(clips, video_duration=60)


def test_text_prompt_caps_shot_list():
    shots = [{"startTime": float(i), "endTime": float(i + 1)} for i in range(300)]
    prompt = build_text_prompt("hello there", shots, video_duration=300, target_count=3)
    assert prompt.count('"startTime"') == 200


# =============================================================================
# Selector
# =============================================================================

@pytest.mark.asyncio
async def test_first_valid_response_is_used():
    client = _FakeModelClient([word_payload((0, 99), (150, 249))])
    selector = ClipSelector(client)

    clips = await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(300), 108.0)

    assert [(c.start_word_index, c.end_word_index) for c in clips] == [(0, 99), (150, 249)]
    assert len(client.calls) == 1
    assert client.calls[0]["video_uri"] == "gs://uploads/1/talk.mp4"
    assert "[0] w0 [1] w1" in client.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_inverted_clip_is_retried_once():
    client = _FakeModelClient([
        word_payload((120, 90)),
        word_payload((0, 99), (150, 249)),
    ])
    selector = ClipSelector(client)

    clips = await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(300), 108.0)

    assert len(client.calls) == 2
    assert clips[0].start_word_index == 0


@pytest.mark.asyncio
async def test_two_invalid_responses_raise_validation_error():
    client = _FakeModelClient([
        word_payload((120, 90)),
        word_payload((120, 90)),
        word_payload((0, 99)),
    ])
    selector = ClipSelector(client)

    with pytest.raises(ClipValidationError, match="Invalid word indices"):
        await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(300), 108.0)

    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_accepted_selection_is_ordered_and_disjoint():
    client = _FakeModelClient([
        word_payload((100, 199), (0, 120)),
        word_payload((0, 99), (100, 199), (250, 349)),
    ])
    selector = ClipSelector(client)

    clips = await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(400), 144.0)

    assert len(client.calls) == 2
    for clip in clips:
        assert clip.start_word_index < clip.end_word_index
        assert clip.end_word_index - clip.start_word_index + 1 >= 80
    for prev, current in zip(clips, clips[1:]):
        assert current.start_word_index > prev.end_word_index


@pytest.mark.asyncio
async def test_short_transcript_fails_without_model_call():
    client = _FakeModelClient([])
    selector = ClipSelector(client)

    with pytest.raises(ClipValidationError):
        await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(79), 30.0)

    assert client.calls == []


@pytest.mark.asyncio
async def test_timed_out_attempt_is_retried():
    async def slow():
        await asyncio.sleep(5)
        return word_payload((0, 99))

    client = _FakeModelClient([slow, word_payload((0, 99))])
    selector = ClipSelector(client, timeout=0.05)

    clips = await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(300), 108.0)

    assert len(clips) == 1
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_repeated_timeouts_raise_timeout_error():
    async def slow():
        await asyncio.sleep(5)
        return word_payload((0, 99))

    client = _FakeModelClient([slow, slow])
    selector = ClipSelector(client, timeout=0.05)

    with pytest.raises(SelectionTimeoutError):
        await selector.select_word_clips("gs://uploads/1/talk.mp4", make_words(300), 108.0)


@pytest.mark.asyncio
async def test_reanalysis_prompt_carries_feedback_and_current_clips():
    client = _FakeModelClient([timestamp_payload((5.0, 40.0), (50.0, 90.0))])
    selector = ClipSelector(client)
    current = [{"title": "Old opener", "start_time": 0.0, "end_time": 30.0}]

    clips = await selector.select_timestamp_clips(
        "gs://uploads/1/talk.mp4",
        "full transcript text",
        120.0,
        current,
        "make the clips funnier",
    )

    assert [(c.start_time_seconds, c.end_time_seconds) for c in clips] == [(5.0, 40.0), (50.0, 90.0)]
    prompt = client.calls[0]["prompt"]
    assert 'CREATOR\'S FEEDBACK: "make the clips funnier"' in prompt
    assert "Old opener" in prompt


@pytest.mark.asyncio
async def test_text_selection_has_no_video_attached():
    client = _FakeModelClient([timestamp_payload((0.0, 30.0))])
    selector = ClipSelector(client)

    await selector.select_from_text("hello world", [], 60.0, script="Intro, then the story")

    assert client.calls[0]["video_uri"] is None
    assert "Intro, then the story" in client.calls[0]["prompt"]


def test_selector_uses_configured_attempts(monkeypatch):
    monkeypatch.setattr(selection.settings, "selection_max_attempts", 3)
    assert ClipSelector(_FakeModelClient([])).max_attempts == 3
