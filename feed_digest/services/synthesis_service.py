import logging
import re
from typing import List

from feed_digest.models.content import EnrichedRecord
from feed_digest.services.ai_service import AIService


FALLBACK_INTRO = (
    "Here are today's most relevant stories across AI, search, tech and marketing. "
    "Each briefing below covers what happened and why it matters."
)


def strip_markdown(text: str) -> str:
    """Remove emphasis, headings, links and code markers from model output."""
    text = re.sub(r"\*\*([^*]+)\*\*", r"\1", text)
    text = re.sub(r"__([^_]+)__", r"\1", text)
    text = re.sub(r"(?<!\*)\*(?!\*)([^*]+)\*(?!\*)", r"\1", text)
    text = re.sub(r"^#+\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    return text.strip()


class DigestIntroService:
    """Writes the short narrative opening of the digest."""

    def __init__(self, ai_service: AIService, top_n: int = 15):
        self.ai = ai_service
        self.top_n = top_n
        self.logger = logging.getLogger(__name__)

    async def generate_intro(self, enriched: List[EnrichedRecord]) -> str:
        """Return an intro for the run; never raises and never calls out for an empty batch."""
        qualifying = [r for r in enriched if r.briefing]
        if not qualifying:
            self.logger.info("No briefed stories, using fallback intro")
            return FALLBACK_INTRO

        stories = "\n".join(
            f"- {r.title} ({r.source_name}): {r.summary}" for r in qualifying[: self.top_n]
        )
        try:
            intro = await self.ai.generate("digest_intro", {"stories": stories})
        except Exception as e:  # noqa: BLE001
            self.logger.warning(f"⚠️ Digest intro generation failed: {e}")
            return FALLBACK_INTRO

        intro = strip_markdown(intro or "")
        return intro or FALLBACK_INTRO
