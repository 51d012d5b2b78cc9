"""Decide when the AI co-author speaks and turn its output into a segment."""

from __future__ import annotations

import secrets
from typing import Protocol, Sequence

from models.session_models import ContributorType, Segment, utc_now
from services.openai.story_generator import GeneratedElement
from services.realtime.narrative_context import NarrativeContext, build_context

AI_CONTRIBUTOR_ID = "ai-coauthor"


class StoryGenerator(Protocol):
	async def generate(self, context: NarrativeContext) -> GeneratedElement: ...


class AICoAuthor:
	"""Trigger every `trigger_every` user segments with a bounded context window."""

	def __init__(self, generator: StoryGenerator, trigger_every: int = 3, context_segments: int = 20) -> None:
		if trigger_every < 1:
			raise ValueError("trigger_every must be at least 1.")
		self.generator = generator
		self.trigger_every = trigger_every
		self.context_segments = context_segments

	def should_trigger(self, user_segment_count: int) -> bool:
		return user_segment_count > 0 and user_segment_count % self.trigger_every == 0

	async def compose(self, segments: Sequence[Segment]) -> Segment:
		"""Generate the next AI segment; the gateway restamps it when it is appended."""
		context = build_context(segments, self.context_segments)
		element = await self.generator.generate(context)
		return Segment(
			id=secrets.token_hex(16),
			content=element.content,
			contributor_id=AI_CONTRIBUTOR_ID,
			contributor_type=ContributorType.AI,
			timestamp=utc_now(),
			mood_tags=tuple(element.tags),
		)
