"""Content filtering and sanitisation for user-submitted story segments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

MIN_SEGMENT_LENGTH = 1
MAX_SEGMENT_LENGTH = 500

PROFANITY_LIST = (
    "fuck", "shit", "damn", "bitch", "ass", "bastard", "crap", "piss",
    "cock", "dick", "pussy", "cunt", "whore", "slut", "fag", "nigger", "retard",
)

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_PROFANITY_RE = re.compile(r"\b(" + "|".join(PROFANITY_LIST) + r")\b", re.IGNORECASE)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    sanitized: Optional[str] = None


def sanitize_input(text: str) -> str:
    """Remove script blocks and HTML tags, then trim whitespace."""
    cleaned = _SCRIPT_RE.sub("", text)
    cleaned = _TAG_RE.sub("", cleaned)
    return cleaned.strip()


def contains_profanity(text: str) -> bool:
    return _PROFANITY_RE.search(text) is not None


def is_valid_length(text: str) -> bool:
    return MIN_SEGMENT_LENGTH <= len(text.strip()) <= MAX_SEGMENT_LENGTH


def validate_segment(content: str) -> ValidationResult:
    """Validate a segment submission; pure, no side effects."""
    if not isinstance(content, str) or not content.strip():
        return ValidationResult(False, error="Content cannot be empty or only whitespace")

    sanitized = sanitize_input(content)
    if not is_valid_length(sanitized):
        return ValidationResult(
            False,
            error=f"Content must be between {MIN_SEGMENT_LENGTH} and {MAX_SEGMENT_LENGTH} characters",
        )
    if contains_profanity(sanitized):
        return ValidationResult(False, error="Content contains inappropriate language")
    return ValidationResult(True, sanitized=sanitized)
