"""Append-only, timestamp-ordered log of story segments."""

from __future__ import annotations

from typing import Iterator, List

from models.session_models import ContributorType, Segment


class SegmentLog:
	"""Ordered segments for a single session.

	Readers always see the log sorted by timestamp ascending; segments sharing
	a timestamp keep their insertion order.
	"""

	def __init__(self) -> None:
		self._segments: List[Segment] = []

	def append(self, segment: Segment) -> Segment:
		self._segments.append(segment)
		# list.sort is stable, so equal timestamps stay in arrival order.
		self._segments.sort(key=lambda s: s.timestamp)
		return segment

	def snapshot(self) -> List[Segment]:
		return list(self._segments)

	def recent(self, limit: int) -> List[Segment]:
		"""Return the last `limit` segments (all of them when limit <= 0)."""
		return list(self._segments[-limit:]) if limit > 0 else self.snapshot()

	def count(self, contributor_type: ContributorType | None = None) -> int:
		if contributor_type is None:
			return len(self._segments)
		return sum(1 for s in self._segments if s.contributor_type is contributor_type)

	def __len__(self) -> int:
		return len(self._segments)

	def __iter__(self) -> Iterator[Segment]:
		return iter(self.snapshot())
