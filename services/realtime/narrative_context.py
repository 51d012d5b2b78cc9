"""Build the narrative context handed to the story generator."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from models.session_models import Segment

LOCATION_KEYWORDS = (
	"house", "mansion", "forest", "woods", "basement", "attic", "cemetery",
	"graveyard", "church", "hospital", "school", "cabin", "castle", "tower",
	"dungeon", "cave", "tunnel", "bridge", "lake", "ocean", "river", "swamp",
	"village", "town", "city", "street", "road", "alley", "room", "hallway",
	"corridor", "staircase", "door", "window", "garden", "yard", "field",
)

_NOT_NAMES = {"The", "This", "That", "There", "Then", "When", "Where", "What", "Who", "How", "Why"}
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_NAME_RE = re.compile(r"^[A-Z][a-z]+$")

_TIME_PERIODS = (
	("victorian", re.compile(r"\b(victorian|1800s|nineteenth century)\b")),
	("medieval", re.compile(r"\b(medieval|middle ages|castle|knight)\b")),
	("modern", re.compile(r"\b(modern|today|smartphone|internet|computer)\b")),
)


@dataclass
class NarrativeContext:
	"""Recent story window plus the entities mentioned in it."""

	recent_segments: List[Segment]
	characters: List[str] = field(default_factory=list)
	locations: List[str] = field(default_factory=list)
	timeperiod: Optional[str] = None
	genre: str = "horror"

	def story_text(self) -> str:
		return " ".join(s.content for s in self.recent_segments)


def extract_characters(text: str) -> List[str]:
	"""Capitalised words that do not open a sentence, first-seen order."""
	found: List[str] = []
	for sentence in _SENTENCE_SPLIT.split(text):
		words = sentence.split()
		for raw in words[1:]:
			word = re.sub(r"[^a-zA-Z]", "", raw)
			if len(word) > 2 and _NAME_RE.match(word) and word not in _NOT_NAMES and word not in found:
				found.append(word)
	return found


def extract_locations(text: str) -> List[str]:
	lowered = text.lower()
	return [keyword for keyword in LOCATION_KEYWORDS if keyword in lowered]


def detect_time_period(text: str) -> Optional[str]:
	lowered = text.lower()
	for period, pattern in _TIME_PERIODS:
		if pattern.search(lowered):
			return period
	return None


def build_context(segments: Sequence[Segment], max_segments: int = 20) -> NarrativeContext:
	"""Summarise the last `max_segments` segments for generation."""
	recent = list(segments[-max_segments:]) if max_segments > 0 else list(segments)
	text = " ".join(s.content for s in recent)
	return NarrativeContext(
		recent_segments=recent,
		characters=extract_characters(text),
		locations=extract_locations(text),
		timeperiod=detect_time_period(text),
	)
