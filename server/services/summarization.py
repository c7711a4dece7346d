import json
import logging
from datetime import datetime
from typing import List, Optional

from core.errors import ProviderError
from core.logging_setup import log_step
from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field

from .prompting import parse_json_object

logger = logging.getLogger(__name__)

LOG_STEP = "SUMMARY"

NO_SUMMARY_TEXT = "No summary available"

SUMMARY_SYSTEM_PROMPT = """You are an expert meeting notes analyzer.
Extract structured information from meeting notes and return a JSON object with:
- summary: A concise 2-3 sentence overview of the meeting
- actionItems: Array of specific tasks/actions with owners if mentioned (e.g., "John to review proposal by Friday")
- keyPoints: Array of important discussion points and outcomes
- participants: Array of participant names if mentioned
- decisions: Array of key decisions made

Be specific and actionable. If a section has no content, use an empty array.
Write the values in the same language as the meeting notes.
Return ONLY valid JSON, no markdown formatting."""


class MeetingSummary(BaseModel):
    """Structured summary stored alongside each cached translation."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str
    action_items: List[str] = Field(default_factory=list, alias="actionItems")
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    participants: Optional[List[str]] = None
    decisions: Optional[List[str]] = None

    def serialize(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_serialized(cls, raw: str | None, fallback_summary: str = "") -> "MeetingSummary":
        """
        Rebuilds a summary from its stored JSON. Missing or unreadable payloads
        yield a summary with only the overview text and no items.
        """
        if raw:
            try:
                return cls.from_model_output(json.loads(raw), fallback_summary)
            except (ValueError, TypeError) as e:
                logger.warning(f"Stored summary payload is unreadable: {e}")
        return cls(summary=fallback_summary or NO_SUMMARY_TEXT)

    @classmethod
    def from_model_output(
        cls, parsed: dict, fallback_summary: str = NO_SUMMARY_TEXT
    ) -> "MeetingSummary":
        if not isinstance(parsed, dict):
            raise TypeError("Summary payload must be an object")

        def _string_list(value) -> list[str] | None:
            if not isinstance(value, list):
                return None
            return [str(item) for item in value]

        return cls(
            summary=str(parsed.get("summary") or fallback_summary or NO_SUMMARY_TEXT),
            action_items=_string_list(parsed.get("actionItems")) or [],
            key_points=_string_list(parsed.get("keyPoints")) or [],
            participants=_string_list(parsed.get("participants")),
            decisions=_string_list(parsed.get("decisions")),
        )


class SummaryService:
    def __init__(self, client: AsyncOpenAI, model: str):
        with log_step(LOG_STEP):
            self.client = client
            self.model = model
            logger.debug(f"Summary service initialized. Model: {model}")

    async def summarize(self, content: str) -> MeetingSummary:
        """
        Extracts a structured summary from meeting notes. A reply that is not
        valid JSON degrades to the raw reply as the overview with no items.
        """
        with log_step(LOG_STEP):
            logger.info(f"Generating summary using {self.model} ({len(content)} chars)...")
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                        {
                            "role": "user",
                            "content": f"Analyze these meeting notes and extract structured information:\n\n{content}",
                        },
                    ],
                )
                text = response.choices[0].message.content or ""
            except Exception as e:
                logger.error(f"Summary generation failed: {e}", exc_info=True)
                raise ProviderError(f"Summarization failed: {e}") from e

            try:
                summary = MeetingSummary.from_model_output(parse_json_object(text))
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to parse summary JSON, using raw text: {e}")
                return MeetingSummary(summary=text.strip() or NO_SUMMARY_TEXT)

            logger.info(
                f"Summary ready: {len(summary.action_items)} action items, "
                f"{len(summary.key_points)} key points."
            )
            return summary


def format_summary_for_export(
    original_content: str,
    translated_content: str,
    summary: MeetingSummary,
    source_language: str,
    target_language: str,
    generated_at: datetime | None = None,
) -> str:
    """Renders the downloadable Markdown document for one cached translation."""
    generated_at = generated_at or datetime.now()

    sections: list[str] = [
        "# Meeting Summary",
        "",
        f"**Languages:** {source_language.upper()} → {target_language.upper()}",
        f"**Generated:** {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Overview",
        summary.summary,
        "",
    ]

    if summary.participants:
        sections.append("## Participants")
        sections.extend(f"- {p}" for p in summary.participants)
        sections.append("")

    if summary.action_items:
        sections.append("## Action Items")
        sections.extend(f"{idx}. {item}" for idx, item in enumerate(summary.action_items, 1))
        sections.append("")

    if summary.key_points:
        sections.append("## Key Points")
        sections.extend(f"- {point}" for point in summary.key_points)
        sections.append("")

    if summary.decisions:
        sections.append("## Decisions Made")
        sections.extend(f"- {decision}" for decision in summary.decisions)
        sections.append("")

    sections.extend(
        [
            "---",
            "",
            "## Original Content",
            "```",
            original_content,
            "```",
            "",
            "## Translated Content",
            "```",
            translated_content,
            "```",
        ]
    )

    return "\n".join(sections)
