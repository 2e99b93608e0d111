"""Tests for the digest introduction."""

import pytest

from feed_digest.models.content import EnrichedRecord
from feed_digest.services.ai_service import AIServiceError
from feed_digest.services.synthesis_service import FALLBACK_INTRO, DigestIntroService, strip_markdown

from tests.conftest import make_record


class RecordingAI:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def generate(self, prompt_key, context, json_mode=False):
        self.calls.append((prompt_key, context))
        if self.error:
            raise self.error
        return self.reply


def _briefed(n, briefing="Why it matters."):
    return [
        EnrichedRecord.from_record(
            make_record(f"https://example.com/{i}", title=f"Story {i}", source_name="Feed"),
            summary=f"Summary {i}",
            briefing=briefing,
        )
        for i in range(n)
    ]


@pytest.mark.asyncio
async def test_no_call_when_nothing_has_a_briefing():
    ai = RecordingAI(reply="unused")
    intro = await DigestIntroService(ai).generate_intro(_briefed(3, briefing=""))

    assert intro == FALLBACK_INTRO
    assert ai.calls == []


@pytest.mark.asyncio
async def test_intro_uses_top_stories_and_strips_markdown():
    ai = RecordingAI(reply="## Today\n**Agents** shipped. See [this](https://x.y).")
    intro = await DigestIntroService(ai, top_n=2).generate_intro(_briefed(4))

    assert intro == "Today\nAgents shipped. See this."
    prompt_key, context = ai.calls[0]
    assert prompt_key == "digest_intro"
    assert "Story 0 (Feed): Summary 0" in context["stories"]
    assert "Story 2" not in context["stories"]


@pytest.mark.asyncio
async def test_failure_returns_fallback():
    ai = RecordingAI(error=AIServiceError("timed out"))
    assert await DigestIntroService(ai).generate_intro(_briefed(1)) == FALLBACK_INTRO


def test_strip_markdown_handles_emphasis_and_code():
    assert strip_markdown("*one* __two__ `three`") == "one two three"
