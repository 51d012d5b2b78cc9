"""Tests for the OpenAI-backed story generator and narrative context."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from models.session_models import ContributorType, Segment
from services.openai.story_generator import SAFE_FALLBACK, StoryElementGenerator, filter_generated
from services.realtime.errors import GenerationError
from services.realtime.narrative_context import build_context, detect_time_period, extract_characters


def segment(content):
    return Segment("id-" + content[:5], content, "c1", ContributorType.USER, datetime.now(timezone.utc))


class FakeResponses:
    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.outputs.pop(0)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(output_text=result, usage=SimpleNamespace(input_tokens=10, output_tokens=20))


def fake_client(*outputs):
    return SimpleNamespace(responses=FakeResponses(outputs))


class TestNarrativeContext:
    """Context extraction from recent segments."""

    def test_characters_locations_and_period(self):
        ctx = build_context(
            [segment("Mary entered the old mansion."), segment("She called for Thomas in the Victorian attic.")]
        )
        assert "Thomas" in ctx.characters
        assert {"mansion", "attic"} <= set(ctx.locations)
        assert ctx.timeperiod == "victorian"

    def test_window_is_bounded(self):
        ctx = build_context([segment(f"Line {i}.") for i in range(30)], max_segments=20)
        assert len(ctx.recent_segments) == 20
        assert ctx.recent_segments[0].content == "Line 10."

    def test_sentence_openers_are_not_characters(self):
        assert extract_characters("The door shut. Then silence.") == []

    def test_no_time_period(self):
        assert detect_time_period("a quiet night") is None


class TestStoryElementGenerator:
    """Retry, filtering and tagging around responses.create."""

    async def test_returns_tagged_element(self):
        client = fake_client("A ghost whispered behind the door.")
        generator = StoryElementGenerator(client, model="test-model", base_delay=0)
        element = await generator.generate(build_context([segment("Start.")]))
        assert element.content == "A ghost whispered behind the door."
        assert "supernatural" in element.tags
        assert 1 <= element.intensity <= 10
        assert client.responses.calls[0]["model"] == "test-model"

    async def test_retries_then_succeeds(self):
        client = fake_client(RuntimeError("rate limited"), "", "The candle went out.")
        generator = StoryElementGenerator(client, base_delay=0)
        element = await generator.generate(build_context([segment("Start.")]))
        assert element.content == "The candle went out."
        assert len(client.responses.calls) == 3

    async def test_raises_after_three_attempts(self):
        client = fake_client(RuntimeError("a"), RuntimeError("b"), RuntimeError("c"))
        generator = StoryElementGenerator(client, base_delay=0)
        with pytest.raises(GenerationError):
            await generator.generate(build_context([segment("Start.")]))
        assert len(client.responses.calls) == 3

    async def test_missing_client_raises(self):
        with pytest.raises(GenerationError):
            await StoryElementGenerator(None).generate(build_context([]))

    def test_graphic_output_is_replaced(self):
        assert filter_generated("There was gore everywhere.") == SAFE_FALLBACK
        assert filter_generated("The wind howled.") == "The wind howled."
