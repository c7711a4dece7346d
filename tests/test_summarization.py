from datetime import datetime

import pytest
from core.errors import InvalidInputError, ProviderError
from services.ocr import MAX_IMAGE_BYTES, OcrService, validate_image_for_ocr
from services.summarization import (
    NO_SUMMARY_TEXT,
    MeetingSummary,
    SummaryService,
    format_summary_for_export,
)

from lib.fakes import DummyOpenAI

SUMMARY_JSON = (
    '{"summary": "Budget review.", "actionItems": ["Ada to send notes", "Bob to book room"],'
    ' "keyPoints": ["Budget approved"], "participants": ["Ada", "Bob"], "decisions": []}'
)


# Purpose: verify a well-formed JSON reply becomes a structured summary.
@pytest.mark.asyncio
async def test_summarize_parses_json_reply():
    service = SummaryService(DummyOpenAI(replies=[SUMMARY_JSON]), "m")

    summary = await service.summarize("notes")

    assert summary.summary == "Budget review."
    assert summary.action_items == ["Ada to send notes", "Bob to book room"]
    assert summary.key_points == ["Budget approved"]
    assert summary.participants == ["Ada", "Bob"]
    assert summary.decisions == []


# Purpose: verify JSON wrapped in a markdown code fence is still parsed.
@pytest.mark.asyncio
async def test_summarize_accepts_fenced_json():
    service = SummaryService(DummyOpenAI(replies=[f"```json\n{SUMMARY_JSON}\n```"]), "m")

    summary = await service.summarize("notes")

    assert summary.summary == "Budget review."


# Purpose: verify an unparseable reply degrades to the raw text with no items.
@pytest.mark.asyncio
async def test_summarize_degrades_on_malformed_json():
    service = SummaryService(DummyOpenAI(replies=["The team agreed to ship on Friday."]), "m")

    summary = await service.summarize("notes")

    assert summary.summary == "The team agreed to ship on Friday."
    assert summary.action_items == []
    assert summary.key_points == []


# Purpose: verify an empty reply yields the placeholder overview.
@pytest.mark.asyncio
async def test_summarize_empty_reply():
    service = SummaryService(DummyOpenAI(replies=[""]), "m")
    assert (await service.summarize("notes")).summary == NO_SUMMARY_TEXT


# Purpose: verify a failed summary call is a provider error.
@pytest.mark.asyncio
async def test_summarize_wraps_api_failure():
    service = SummaryService(DummyOpenAI(error=TimeoutError("timed out")), "m")
    with pytest.raises(ProviderError, match="timed out"):
        await service.summarize("notes")


# Purpose: verify the stored payload uses camelCase keys and can be read back.
def test_summary_serialization():
    summary = MeetingSummary(summary="S", action_items=["a"], key_points=["k"])

    raw = summary.serialize()

    assert raw == '{"summary":"S","actionItems":["a"],"keyPoints":["k"]}'
    assert MeetingSummary.from_serialized(raw) == summary


# Purpose: verify missing or unreadable stored payloads fall back to the overview text.
def test_summary_from_serialized_fallback():
    assert MeetingSummary.from_serialized(None, fallback_summary="Overview").summary == "Overview"
    restored = MeetingSummary.from_serialized("{broken", fallback_summary="Overview")
    assert restored.summary == "Overview"
    assert restored.action_items == []
    assert MeetingSummary.from_serialized("").summary == NO_SUMMARY_TEXT


# Purpose: verify a stored payload without a summary key keeps its items and uses the overview text.
def test_summary_from_serialized_without_summary_key():
    restored = MeetingSummary.from_serialized(
        '{"actionItems": ["Ada to send notes"]}', fallback_summary="Overview"
    )
    assert restored.summary == "Overview"
    assert restored.action_items == ["Ada to send notes"]
    assert MeetingSummary.from_serialized('{"keyPoints": []}').summary == NO_SUMMARY_TEXT


# Purpose: verify the exact Markdown layout of an export with every section present.
def test_format_summary_for_export_full_document():
    summary = MeetingSummary(
        summary="Budget review.",
        action_items=["Ada to send notes"],
        key_points=["Budget approved"],
        participants=["Ada"],
        decisions=["Ship Friday"],
    )

    document = format_summary_for_export(
        original_content="Hello",
        translated_content="Hola",
        summary=summary,
        source_language="en",
        target_language="es",
        generated_at=datetime(2024, 5, 1, 9, 30, 0),
    )

    assert document == "\n".join(
        [
            "# Meeting Summary",
            "",
            "**Languages:** EN → ES",
            "**Generated:** 2024-05-01 09:30:00",
            "",
            "## Overview",
            "Budget review.",
            "",
            "## Participants",
            "- Ada",
            "",
            "## Action Items",
            "1. Ada to send notes",
            "",
            "## Key Points",
            "- Budget approved",
            "",
            "## Decisions Made",
            "- Ship Friday",
            "",
            "---",
            "",
            "## Original Content",
            "```",
            "Hello",
            "```",
            "",
            "## Translated Content",
            "```",
            "Hola",
            "```",
        ]
    )


# Purpose: verify empty sections are left out of the export.
def test_format_summary_for_export_omits_empty_sections():
    document = format_summary_for_export(
        "Hello", "Hola", MeetingSummary(summary="Only overview."), "en", "es"
    )

    assert "## Action Items" not in document
    assert "## Key Points" not in document
    assert "## Participants" not in document
    assert "## Decisions Made" not in document


# Purpose: verify image validation enforces the 16 MiB limit and supported formats.
def test_validate_image_for_ocr():
    validate_image_for_ocr(MAX_IMAGE_BYTES, "image/png")
    validate_image_for_ocr(1, "IMAGE/WEBP")

    with pytest.raises(InvalidInputError, match="Image too large"):
        validate_image_for_ocr(MAX_IMAGE_BYTES + 1, "image/png")
    with pytest.raises(InvalidInputError, match="Unsupported image format"):
        validate_image_for_ocr(100, "application/pdf")


# Purpose: verify OCR sends the image URL and reads text and language from JSON.
@pytest.mark.asyncio
async def test_ocr_extracts_text_and_language():
    client = DummyOpenAI(replies=['{"text": "  Ship v2 Friday ", "language": "EN"}'])
    service = OcrService(client, "m")

    result = await service.extract_text_and_language("https://files.example.com/a.png")

    assert result.extracted_text == "Ship v2 Friday"
    assert result.detected_language == "en"
    content = client.requests[0]["messages"][0]["content"]
    assert content[1] == {
        "type": "image_url",
        "image_url": {"url": "https://files.example.com/a.png"},
    }


# Purpose: verify an image with no text yields empty text and no language.
@pytest.mark.asyncio
async def test_ocr_no_text_found():
    json_reply = OcrService(DummyOpenAI(replies=['{"text": "", "language": "unknown"}']), "m")
    result = await json_reply.extract_text_and_language("u")
    assert result.extracted_text == ""
    assert result.detected_language is None

    sentinel_reply = OcrService(DummyOpenAI(replies=["NO_TEXT_FOUND"]), "m")
    assert (await sentinel_reply.extract_text_and_language("u")).extracted_text == ""


# Purpose: verify a plain-text OCR reply is used as the extracted text.
@pytest.mark.asyncio
async def test_ocr_plain_text_reply():
    service = OcrService(DummyOpenAI(replies=["Agenda\n1. Budget"]), "m")

    result = await service.extract_text_and_language("u")

    assert result.extracted_text == "Agenda\n1. Budget"
    assert result.detected_language is None


# Purpose: verify a failed vision call is a provider error.
@pytest.mark.asyncio
async def test_ocr_wraps_api_failure():
    service = OcrService(DummyOpenAI(error=RuntimeError("image fetch failed")), "m")
    with pytest.raises(ProviderError, match="image fetch failed"):
        await service.extract_text_and_language("u")
