import logging
from dataclasses import dataclass

from core.errors import InvalidInputError, ProviderError
from core.logging_setup import log_step
from openai import AsyncOpenAI

from .prompting import normalize_language_code, parse_json_object

logger = logging.getLogger(__name__)

LOG_STEP = "OCR"

MAX_IMAGE_BYTES = 16 * 1024 * 1024

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}

NO_TEXT_SENTINEL = "NO_TEXT_FOUND"

EXTRACT_AND_DETECT_PROMPT = """Extract all text from this image and detect its language.

Return a JSON object with:
{
  "text": "extracted text content",
  "language": "ISO 639-1 code (e.g., en, zh, ja, fr)"
}

If no text is found, return:
{
  "text": "",
  "language": "unknown"
}

Return ONLY valid JSON, no markdown formatting."""


@dataclass
class OcrResult:
    extracted_text: str
    detected_language: str | None = None


def validate_image_for_ocr(file_size: int, mime_type: str):
    """
    Rejects images over 16 MiB or outside the supported formats before any
    upload or model call happens.
    """
    if file_size > MAX_IMAGE_BYTES:
        raise InvalidInputError(
            f"Image too large. Maximum size is 16MB, got {file_size / 1024 / 1024:.2f}MB"
        )

    if (mime_type or "").lower() not in SUPPORTED_IMAGE_TYPES:
        raise InvalidInputError(
            f"Unsupported image format: {mime_type}. Supported formats: JPEG, PNG, WebP, GIF"
        )


class OcrService:
    """Reads text out of note photos with a vision-capable hosted model."""

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def _ask_about_image(self, prompt: str, image_url: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
        )
        return response.choices[0].message.content or ""

    async def extract_text_and_language(self, image_url: str) -> OcrResult:
        """
        Extracts text and detects its language in a single model call.
        A reply that is not JSON is taken as the extracted text itself.
        """
        with log_step(LOG_STEP):
            try:
                reply = await self._ask_about_image(EXTRACT_AND_DETECT_PROMPT, image_url)
            except Exception as e:
                logger.error(f"OCR with language detection failed: {e}", exc_info=True)
                raise ProviderError(f"Failed to process image: {e}") from e

            try:
                parsed = parse_json_object(reply)
            except ValueError:
                logger.warning("OCR reply was not JSON; using it as the extracted text.")
                text = reply.strip()
                return OcrResult(extracted_text="" if text == NO_TEXT_SENTINEL else text)

            text = str(parsed.get("text") or "").strip()
            raw_language = str(parsed.get("language") or "")
            language = (
                None if raw_language.lower() == "unknown" else normalize_language_code(raw_language)
            )

            logger.info(f"OCR extracted {len(text)} chars (language: {language or 'unknown'}).")
            return OcrResult(extracted_text=text, detected_language=language)
