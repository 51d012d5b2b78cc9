"""AI co-author text generation using the OpenAI Responses API.

Given a narrative context (recent segments plus the characters, locations and
time period mentioned in them) this module asks the model for a short horror
twist, filters it, and scores it with the mood keyword tables. Calls are
retried with exponential backoff; after the last attempt a GenerationError is
raised for the caller to report.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from openai import AsyncOpenAI

from services import mood_tags
from services.realtime.errors import GenerationError
from services.realtime.narrative_context import NarrativeContext
from services.realtime.prompts import coauthor_system_prompt, coauthor_user_prompt
from services.realtime.response_parser import extract_text, extract_usage

LOGGER = logging.getLogger(__name__)

SAFE_FALLBACK = "A cold presence filled the room, and the shadows seemed to move on their own."

BLOCKED_KEYWORDS = (
    "gore", "guts", "dismember", "decapitat", "mutilat", "torture",
    "eviscerat", "disembowel", "blood splatter", "severed limb",
    "sexual", "nude", "naked", "rape", "molest",
)


@dataclass
class GeneratedElement:
    """A generated story addition ready to become an AI segment."""

    content: str
    intensity: int
    tags: List[str] = field(default_factory=list)


def filter_generated(text: str) -> str:
    """Replace graphic or explicit output with a generic eerie line."""
    lowered = text.lower()
    if any(keyword in lowered for keyword in BLOCKED_KEYWORDS):
        return SAFE_FALLBACK
    return text


class StoryElementGenerator:
    """Generate AI co-author segments from the recent story window."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model: str = "gpt-5-mini",
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_output_tokens: int = 2048,
    ) -> None:
        self.client = client
        self.model = model
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_output_tokens = max_output_tokens

    async def generate(self, context: NarrativeContext) -> GeneratedElement:
        """Return a filtered, tagged story element.

        Raises:
            GenerationError: when no client is configured or every attempt failed.
        """
        if self.client is None:
            raise GenerationError("AI co-author is not configured (missing OPENAI_API_KEY).")

        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            try:
                return await self._generate_once(context)
            except Exception as exc:
                last_error = exc
                LOGGER.warning("Story generation attempt %d/%d failed: %s", attempt + 1, self.max_attempts, exc)
                if attempt < self.max_attempts - 1:
                    await asyncio.sleep(self.base_delay * (2 ** attempt))

        raise GenerationError(
            f"Failed to generate story element after {self.max_attempts} attempts: {last_error}"
        )

    async def _generate_once(self, context: NarrativeContext) -> GeneratedElement:
        start = time.time()
        response = await self.client.responses.create(
            model=self.model,
            input=[
                {
                    "type": "message",
                    "role": "system",
                    "content": [{"type": "input_text", "text": coauthor_system_prompt()}],
                },
                {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": coauthor_user_prompt(context)}],
                },
            ],
            max_output_tokens=self.max_output_tokens,
        )

        text = extract_text(response).strip()
        if not text:
            raise GenerationError("Model returned empty content")

        content = filter_generated(text)
        usage = extract_usage(response)
        LOGGER.info(
            "Story element generated in %.3fs (input_tokens=%s, output_tokens=%s)",
            time.time() - start,
            usage["input_tokens"],
            usage["output_tokens"],
        )
        return GeneratedElement(
            content=content,
            intensity=mood_tags.intensity(content),
            tags=mood_tags.horror_tags(content),
        )
