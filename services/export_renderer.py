"""Render a story session as plain text or a minimal HTML document.

Both formats carry the title, creation time, participant roster and every
segment in log order. AI-authored segments are marked so readers can tell
them apart from what the participants wrote.
"""
from __future__ import annotations

import html
from typing import Dict, Iterable

from models.session_models import Participant, Segment, StorySession, to_iso

AI_LABEL = "AI Co-Author"
SUPPORTED_FORMATS = ("text", "html")


class ExportRenderer:
    """Turn a session snapshot into a downloadable document."""

    def render(self, session: StorySession, fmt: str) -> str:
        """Render `session` in `fmt` ("text" or "html").

        Raises:
            ValueError: if the format is not supported.
        """
        if fmt == "text":
            return self.as_text(session)
        if fmt == "html":
            return self.as_html(session)
        raise ValueError(f"Unsupported export format: {fmt!r}")

    def as_text(self, session: StorySession) -> str:
        names = self._names(session.participants)
        lines = [session.title, f"Created: {to_iso(session.created_at)}"]
        if session.starting_prompt:
            lines.append(f"Prompt: {session.starting_prompt}")
        if session.participants:
            lines.append("Participants: " + ", ".join(p.name for p in session.participants))
        lines.append("")
        for segment in session.segments:
            lines.append(f"[{self._attribution(segment, names)}] {segment.content}")
        return "\n".join(lines) + "\n"

    def as_html(self, session: StorySession) -> str:
        names = self._names(session.participants)
        title = html.escape(session.title)
        parts = [
            "<!DOCTYPE html>",
            f"<html><head><meta charset=\"utf-8\"><title>{title}</title></head><body>",
            f"<h1>{title}</h1>",
            f"<p class=\"created\">Created: {to_iso(session.created_at)}</p>",
        ]
        if session.starting_prompt:
            parts.append(f"<p class=\"prompt\"><em>{html.escape(session.starting_prompt)}</em></p>")
        if session.participants:
            roster = "".join(f"<li>{html.escape(p.name)}</li>" for p in session.participants)
            parts.append(f"<ul class=\"participants\">{roster}</ul>")
        for segment in session.segments:
            css = "segment ai" if segment.is_ai else "segment user"
            who = html.escape(self._attribution(segment, names))
            parts.append(
                f"<p class=\"{css}\" data-contributor=\"{html.escape(segment.contributor_id)}\">"
                f"<strong>{who}:</strong> {html.escape(segment.content)}</p>"
            )
        parts.append("</body></html>")
        return "\n".join(parts)

    @staticmethod
    def _names(participants: Iterable[Participant]) -> Dict[str, str]:
        return {p.id: p.name for p in participants}

    @staticmethod
    def _attribution(segment: Segment, names: Dict[str, str]) -> str:
        if segment.is_ai:
            return AI_LABEL
        name = names.get(segment.contributor_id)
        return f"{name} ({segment.contributor_id})" if name else segment.contributor_id
