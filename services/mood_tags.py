"""Keyword tables that turn narrative text into mood tags and an intensity score.

The tags ride along on each segment (`moodTags`) so every client's sound layer
can react to the same words.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

MOOD_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "horror": ("terror", "horror", "fear", "dread", "nightmare", "evil", "sinister", "malevolent"),
    "calm": ("peaceful", "calm", "quiet", "serene", "tranquil", "gentle", "soft"),
    "tense": ("tense", "nervous", "anxious", "uneasy", "worried", "suspicious", "cautious"),
    "dark": ("dark", "darkness", "shadow", "black", "dim", "gloomy", "murky"),
    "violent": ("violent", "blood", "death", "kill", "murder", "attack", "strike"),
    "mysterious": ("mysterious", "strange", "odd", "peculiar", "unusual", "eerie", "uncanny"),
    "urgent": ("run", "hurry", "quick", "fast", "rush", "escape", "flee"),
}

HORROR_TAG_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "supernatural": ("ghost", "spirit", "phantom", "apparition", "haunting"),
    "psychological": ("fear", "terror", "madness", "insanity", "paranoia"),
    "gothic": ("darkness", "shadow", "ancient", "decay", "ruins"),
    "suspense": ("whisper", "footsteps", "watching", "following", "lurking"),
}

INTENSITY_KEYWORDS: Dict[int, Tuple[str, ...]] = {
    3: ("scream", "terror", "horrifying", "nightmare", "death", "dead", "corpse", "ghost"),
    2: ("fear", "dark", "shadow", "cold", "whisper", "strange", "eerie"),
    1: ("odd", "unusual", "quiet", "silence", "distant"),
}


def _matching(text: str, table: Dict[str, Tuple[str, ...]]) -> List[str]:
    lowered = text.lower()
    return [tag for tag, words in table.items() if any(word in lowered for word in words)]


def mood_tags(text: str) -> List[str]:
    """Audio moods mentioned in `text`, in table order."""
    return _matching(text, MOOD_KEYWORDS)


def horror_tags(text: str) -> List[str]:
    return _matching(text, HORROR_TAG_KEYWORDS)


def intensity(text: str) -> int:
    """Score 1..10; each keyword adds its weight once."""
    lowered = text.lower()
    score = sum(weight for weight, words in INTENSITY_KEYWORDS.items() for word in words if word in lowered)
    return min(10, max(1, score))
