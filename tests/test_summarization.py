"""Tests for briefing parsing and batch enrichment."""

import json

import pytest

from feed_digest.services.ai_service import AIServiceError
from feed_digest.services.summarization_service import (
    BriefingParseError,
    BriefingParseOk,
    SummarizationService,
    map_briefings,
    parse_briefing_response,
)

from tests.conftest import make_record


def _item(n):
    return {
        "title": f"Story {n}",
        "summary": f"Summary {n}",
        "briefing": f"Briefing {n}",
        "tags": ["ai", "search"],
        "contentAngles": [f"Angle {n}"],
    }


class FakeAI:
    """Answers each batch from a queue of canned replies or exceptions."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    async def generate(self, prompt_key, context, json_mode=False):
        self.prompts.append((prompt_key, context, json_mode))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeExtractor:
    def __init__(self, texts=None, fail=()):
        self.texts = texts or {}
        self.fail = set(fail)

    async def extract(self, url):
        if url in self.fail:
            raise RuntimeError("unexpected parser crash")
        return self.texts.get(url)


def test_parse_accepts_object_and_bare_array():
    wrapped = parse_briefing_response(json.dumps({"articles": [_item(1)]}))
    bare = parse_briefing_response(json.dumps([_item(1)]))

    assert isinstance(wrapped, BriefingParseOk)
    assert isinstance(bare, BriefingParseOk)
    assert wrapped.items == bare.items


def test_parse_strips_code_fence():
    text = "```json\n" + json.dumps({"articles": [_item(1)]}) + "\n```"
    parsed = parse_briefing_response(text)
    assert isinstance(parsed, BriefingParseOk)
    assert parsed.items[0]["summary"] == "Summary 1"


@pytest.mark.parametrize("text", ["", "   ", "not json", '{"items": []}', '"a string"'])
def test_parse_rejects_unusable_replies(text):
    assert isinstance(parse_briefing_response(text), BriefingParseError)


def test_map_briefings_is_positional_with_short_reply():
    records = [make_record(f"https://example.com/{i}") for i in range(3)]

    enriched = map_briefings(records, [_item(0)])

    assert [e.url for e in enriched] == [r.url for r in records]
    assert enriched[0].briefing == "Briefing 0"
    assert enriched[0].content_angles == ["Angle 0"]
    for missing in enriched[1:]:
        assert missing.summary == ""
        assert missing.briefing == ""
        assert missing.tags == []
        assert missing.content_angles == []


def test_map_briefings_ignores_mistyped_fields():
    records = [make_record("https://example.com/a"), make_record("https://example.com/b")]
    items = [
        {"summary": 42, "briefing": None, "tags": "ai", "content_angles": ["snake case", 7]},
        "not an object",
    ]

    first, second = map_briefings(records, items)

    assert first.summary == ""
    assert first.briefing == ""
    assert first.tags == []
    assert first.content_angles == ["snake case"]
    assert second.briefing == ""


@pytest.mark.asyncio
async def test_enrich_degrades_failed_batches_and_keeps_order():
    records = [make_record(f"https://example.com/{i}") for i in range(5)]
    ai = FakeAI([
        json.dumps({"articles": [_item(0), _item(1)]}),
        AIServiceError("quota exceeded"),
        json.dumps([_item(4)]),
    ])
    service = SummarizationService(ai, FakeExtractor(), batch_size=2)

    enriched = await service.enrich(records)

    assert [e.url for e in enriched] == [r.url for r in records]
    assert [e.briefing for e in enriched] == ["Briefing 0", "Briefing 1", "", "", "Briefing 4"]
    assert service.stats["batches"] == 3
    assert service.stats["degraded_batches"] == 1


@pytest.mark.asyncio
async def test_enrich_degrades_unparseable_reply():
    records = [make_record("https://example.com/a")]
    service = SummarizationService(FakeAI(["Sure! Here are your briefings."]), FakeExtractor())

    enriched = await service.enrich(records)

    assert len(enriched) == 1
    assert enriched[0].briefing == ""
    assert service.stats["degraded_batches"] == 1


@pytest.mark.asyncio
async def test_full_text_is_attached_and_sent_to_the_model():
    records = [
        make_record("https://example.com/a", snippet="short a"),
        make_record("https://example.com/b", snippet="short b"),
        make_record("https://example.com/c", snippet="short c"),
    ]
    extractor = FakeExtractor(texts={"https://example.com/a": "Full article text"}, fail={"https://example.com/c"})
    ai = FakeAI([json.dumps([_item(0), _item(1), _item(2)])])
    service = SummarizationService(ai, extractor, batch_size=5)

    enriched = await service.enrich(records)

    assert enriched[0].full_text == "Full article text"
    assert enriched[1].full_text is None
    assert enriched[2].full_text is None
    assert service.stats["full_text_fetched"] == 1

    prompt_key, context, json_mode = ai.prompts[0]
    assert prompt_key == "briefing_batch"
    assert json_mode is True
    assert "Content: Full article text" in context["articles"]
    assert "Content: short b" in context["articles"]


@pytest.mark.asyncio
async def test_enrich_empty_input_makes_no_calls():
    ai = FakeAI([])
    assert await SummarizationService(ai, FakeExtractor()).enrich([]) == []
    assert ai.prompts == []
