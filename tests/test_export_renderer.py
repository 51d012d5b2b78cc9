"""Tests for text and HTML story exports."""

from datetime import datetime, timezone

import pytest

from models.session_models import ContributorType, Participant, Segment, StorySession
from services.export_renderer import AI_LABEL, ExportRenderer

T0 = datetime(2024, 10, 31, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def session():
    return StorySession(
        id="s1",
        title="The <Hollow> House",
        starting_prompt="Nobody lives there anymore.",
        participants=[Participant(id="c1", name="alice", joined_at=T0)],
        segments=[
            Segment("g1", "The gate was open.", "c1", ContributorType.USER, T0),
            Segment("g2", "Something laughed & ran.", "ai-coauthor", ContributorType.AI, T0),
        ],
        created_at=T0,
        last_activity_at=T0,
    )


class TestTextExport:
    """Plain-text rendering."""

    def test_contains_title_prompt_and_segments(self, session):
        text = ExportRenderer().render(session, "text")
        lines = text.splitlines()
        assert lines[0] == "The <Hollow> House"
        assert "Prompt: Nobody lives there anymore." in text
        assert "[alice (c1)] The gate was open." in text
        assert f"[{AI_LABEL}] Something laughed & ran." in text

    def test_segments_follow_log_order(self, session):
        text = ExportRenderer().as_text(session)
        assert text.index("The gate was open.") < text.index("Something laughed")


class TestHtmlExport:
    """HTML rendering."""

    def test_escapes_markup(self, session):
        output = ExportRenderer().render(session, "html")
        assert "<h1>The &lt;Hollow&gt; House</h1>" in output
        assert "Something laughed &amp; ran." in output

    def test_marks_ai_segments(self, session):
        output = ExportRenderer().as_html(session)
        assert 'class="segment ai"' in output
        assert 'class="segment user"' in output


def test_unknown_format_raises(session):
    with pytest.raises(ValueError):
        ExportRenderer().render(session, "docx")
