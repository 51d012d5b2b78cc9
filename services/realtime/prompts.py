"""Prompt helpers for the AI co-author."""

from __future__ import annotations

from services.realtime.narrative_context import NarrativeContext


def coauthor_system_prompt() -> str:
	"""Return the co-author system prompt."""
	return (
		"You are a creative horror writer collaborating on a ghost story with several people. "
		"Add a creepy twist to the story. Write 2-3 sentences that introduce an unexpected horror element. "
		"Be atmospheric and eerie, keep it suggestive rather than graphic, and return only the new sentences."
	)


def coauthor_user_prompt(context: NarrativeContext) -> str:
	"""Return the user prompt that grounds the model in the recent story."""
	story = context.story_text() or "The story has not started yet."
	lines = [f"Continue this ghost story with an unexpected horror element:\n\n{story}"]
	if context.characters:
		lines.append(f"Characters in the story: {', '.join(context.characters)}")
	if context.locations:
		lines.append(f"Locations mentioned: {', '.join(context.locations)}")
	if context.timeperiod:
		lines.append(f"Time period: {context.timeperiod}")
	lines.append("Add a creepy twist or horror element that fits the story:")
	return "\n\n".join(lines)
