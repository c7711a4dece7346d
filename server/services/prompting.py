import json
import re
from typing import Any

# Display names used in prompts; unknown codes are passed through upper-cased.
LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "pt": "Portuguese",
    "ru": "Russian",
    "ar": "Arabic",
    "hi": "Hindi",
    "it": "Italian",
    "nl": "Dutch",
    "pl": "Polish",
    "tr": "Turkish",
    "vi": "Vietnamese",
    "th": "Thai",
    "id": "Indonesian",
    "he": "Hebrew",
    "el": "Greek",
}

LANGUAGE_CODE_REGEX = re.compile(r"^[a-z]{2}$")

_CODE_FENCE_REGEX = re.compile(r"^```[a-zA-Z]*\s*\n(.*?)\n?```$", re.DOTALL)


def get_language_name(language: str) -> str:
    """
    Maps an ISO 639-1 code to its English name. Labels that are already
    names ("Spanish") are returned as given.
    """
    code = language.strip().lower()
    if code in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[code]
    if len(code) <= 3:
        return language.strip().upper()
    return language.strip()


def normalize_language_code(raw: str) -> str | None:
    """Returns the two-letter code at the start of a model reply, or None."""
    code = raw.strip().strip("\"'`.").lower()[:2]
    if LANGUAGE_CODE_REGEX.match(code):
        return code
    return None


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parses a model reply that should be a single JSON object. Markdown code
    fences around the object are tolerated.

    Raises ValueError when the reply is not a JSON object.
    """
    candidate = text.strip()
    fenced = _CODE_FENCE_REGEX.match(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    parsed = json.loads(candidate)
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed
