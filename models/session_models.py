"""Session domain models for collaborative story sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
	return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
	"""Render an aware datetime for the wire."""
	if value.tzinfo is None:
		value = value.replace(tzinfo=timezone.utc)
	return value.isoformat()


def from_iso(value: str) -> datetime:
	"""Parse a wire timestamp; trailing 'Z' is accepted."""
	if value.endswith("Z"):
		value = value[:-1] + "+00:00"
	parsed = datetime.fromisoformat(value)
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


class ContributorType(str, Enum):
	USER = "user"
	AI = "ai"


@dataclass
class Participant:
	"""A named writer attached to a session."""

	id: str
	name: str
	joined_at: datetime = field(default_factory=utc_now)

	def to_dict(self) -> Dict[str, Any]:
		return {"id": self.id, "name": self.name, "joinedAt": to_iso(self.joined_at)}


@dataclass(frozen=True)
class Segment:
	"""One immutable contribution in a session's narrative."""

	id: str
	content: str
	contributor_id: str
	contributor_type: ContributorType
	timestamp: datetime = field(default_factory=utc_now)
	mood_tags: tuple = ()

	@property
	def is_ai(self) -> bool:
		return self.contributor_type is ContributorType.AI

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"content": self.content,
			"contributorId": self.contributor_id,
			"contributorType": self.contributor_type.value,
			"timestamp": to_iso(self.timestamp),
			"moodTags": list(self.mood_tags),
		}


@dataclass
class StorySession:
	"""In-memory state of one collaborative story.

	`segments` is a read-only snapshot of the session's log; mutate the log
	through the registry only.
	"""

	id: str
	title: str
	starting_prompt: Optional[str]
	participants: List[Participant]
	segments: List[Segment]
	created_at: datetime
	last_activity_at: datetime

	def to_dict(self) -> Dict[str, Any]:
		payload: Dict[str, Any] = {
			"id": self.id,
			"title": self.title,
			"participants": [p.to_dict() for p in self.participants],
			"segments": [s.to_dict() for s in self.segments],
			"createdAt": to_iso(self.created_at),
			"lastActivityAt": to_iso(self.last_activity_at),
		}
		if self.starting_prompt is not None:
			payload["startingPrompt"] = self.starting_prompt
		return payload
