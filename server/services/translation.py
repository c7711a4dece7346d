import logging
from typing import Protocol

import ollama
from core.errors import InvalidInputError, ProviderError
from core.logging_setup import log_step
from openai import AsyncOpenAI

from .prompting import get_language_name, normalize_language_code

logger = logging.getLogger(__name__)

LOG_STEP = "TRANSLATION"

MAX_OUTPUT_TOKENS = 4096
TRANSLATION_TEMPERATURE = 0.3
DETECTION_SAMPLE_CHARS = 500

TRANSLATION_SYSTEM_PROMPT = (
    "You are a professional translator. Translate the provided text from {source} to {target}.\n"
    "Preserve the original formatting (line breaks, bullet points, numbering), technical terms, "
    "proper nouns and tone. Do not add explanations or notes, only provide the translation."
)

DETECTION_SYSTEM_PROMPT = (
    "Detect the language of the provided text and respond with ONLY the ISO 639-1 "
    'language code (e.g. "en", "zh", "ja"). No explanation.'
)


class TranslationProvider(Protocol):
    """The remote translation capability: cloud, local, or a fallback pair."""

    name: str

    async def translate(
        self, content: str, target_language: str, source_language: str | None = None
    ) -> str: ...

    async def detect_language(self, content: str) -> str: ...


def _validate_translation_input(content: str, target_language: str):
    if not content or not content.strip():
        raise InvalidInputError("Translation content cannot be empty")
    if not target_language or not target_language.strip():
        raise InvalidInputError("Target language must be specified")


def _detection_sample(content: str) -> str:
    if not content or not content.strip():
        raise InvalidInputError("Cannot detect language of empty content")
    return content[:DETECTION_SAMPLE_CHARS]


class CloudTranslationProvider:
    """
    Translates through a hosted model exposed by an OpenAI-compatible
    chat completions endpoint (Gemini by default).
    """

    name = "cloud"

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model
        with log_step(LOG_STEP):
            logger.debug(f"Initialized cloud translation provider. Model: {model}")

    async def translate(
        self, content: str, target_language: str, source_language: str | None = None
    ) -> str:
        _validate_translation_input(content, target_language)

        target_name = get_language_name(target_language)
        source_name = (
            get_language_name(source_language) if source_language else "the detected language"
        )

        with log_step(LOG_STEP):
            logger.info(
                f"Using cloud model for {source_language or 'auto'} -> {target_language} "
                f"({len(content)} chars)"
            )
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {
                            "role": "system",
                            "content": TRANSLATION_SYSTEM_PROMPT.format(
                                source=source_name, target=target_name
                            ),
                        },
                        {"role": "user", "content": content},
                    ],
                    max_tokens=MAX_OUTPUT_TOKENS,
                    temperature=TRANSLATION_TEMPERATURE,
                )
                translated = (response.choices[0].message.content or "").strip()
            except Exception as e:
                logger.error(f"Cloud translation API error: {e}", exc_info=True)
                raise ProviderError(f"Cloud translation failed: {e}") from e

            if not translated:
                raise ProviderError("Cloud translation returned empty text")

            logger.info(f"Cloud translation completed ({len(translated)} chars)")
            return translated

    async def detect_language(self, content: str) -> str:
        sample = _detection_sample(content)

        with log_step(LOG_STEP):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": DETECTION_SYSTEM_PROMPT},
                        {"role": "user", "content": sample},
                    ],
                    max_tokens=10,
                )
                raw = response.choices[0].message.content or ""
            except Exception as e:
                logger.error(f"Cloud language detection error: {e}", exc_info=True)
                raise ProviderError(f"Language detection failed: {e}") from e

            code = normalize_language_code(raw)
            if not code:
                raise ProviderError(f"Invalid language code from cloud model: {raw!r}")

            logger.info(f"Detected language: {code}")
            return code


class LocalTranslationProvider:
    """
    Translates with a model served by a local Ollama instance
    (TranslateGemma by default).
    """

    name = "local"

    def __init__(self, client: ollama.AsyncClient, model: str):
        self.client = client
        self.model = model
        with log_step(LOG_STEP):
            logger.debug(f"Initialized local translation provider. Model: {model}")

    async def translate(
        self, content: str, target_language: str, source_language: str | None = None
    ) -> str:
        _validate_translation_input(content, target_language)

        target_name = get_language_name(target_language)
        source_name = (
            get_language_name(source_language) if source_language else "the source language"
        )

        prompt = (
            f"Translate the following text from {source_name} to {target_name}.\n\n"
            "Instructions:\n"
            "- Maintain the original formatting (line breaks, bullet points, numbering)\n"
            "- Preserve technical terms and proper nouns when appropriate\n"
            "- Keep the tone and style consistent with the source text\n"
            "- Do not add explanations or notes, only provide the translation\n\n"
            f"Text to translate:\n\n{content}\n\nTranslation:"
        )

        with log_step(LOG_STEP):
            logger.info(
                f"Using local model for {source_language or 'auto'} -> {target_language} "
                f"({len(content)} chars)"
            )
            try:
                response = await self.client.generate(
                    model=self.model,
                    prompt=prompt,
                    stream=False,
                    options={
                        "temperature": TRANSLATION_TEMPERATURE,
                        "top_p": 0.9,
                        "top_k": 40,
                        "num_predict": MAX_OUTPUT_TOKENS,
                        "repeat_penalty": 1.1,
                        "stop": ["\n\nText to translate:", "\n\nInstructions:"],
                    },
                )
                translated = (response["response"] or "").strip()
            except Exception as e:
                logger.error(f"Ollama translation error: {e}", exc_info=True)
                raise ProviderError(f"Ollama translation failed: {e}") from e

            if not translated:
                raise ProviderError("Local model returned empty translation")

            logger.info(f"Local translation completed ({len(translated)} chars)")
            return translated

    async def detect_language(self, content: str) -> str:
        sample = _detection_sample(content)

        prompt = (
            "Identify the language of the following text and respond with ONLY the "
            'ISO 639-1 language code (e.g., "en" for English, "zh" for Chinese, '
            '"ja" for Japanese).\n\n'
            "Do not provide any explanation, only the two-letter code.\n\n"
            f"Text:\n{sample}\n\nLanguage code:"
        )

        with log_step(LOG_STEP):
            try:
                response = await self.client.generate(
                    model=self.model,
                    prompt=prompt,
                    stream=False,
                    options={"temperature": 0.1, "num_predict": 10},
                )
                raw = response["response"] or ""
            except Exception as e:
                logger.error(f"Ollama language detection error: {e}", exc_info=True)
                raise ProviderError(f"Language detection failed: {e}") from e

            code = normalize_language_code(raw)
            if not code:
                raise ProviderError(f"Invalid language code detected: {raw!r}")

            logger.info(f"Detected language: {code}")
            return code

    async def check_health(self) -> bool:
        """True when the Ollama server answers and has the configured model pulled."""
        try:
            listing = await self.client.list()
        except Exception as e:
            with log_step(LOG_STEP):
                logger.error(f"Ollama health check failed: {e}")
            return False

        available = [m.model or "" for m in listing.models]
        if not any(name.startswith(self.model) for name in available):
            with log_step(LOG_STEP):
                logger.warning(
                    f"Model '{self.model}' not found on Ollama server. Run: ollama pull {self.model}"
                )
            return False
        return True


class FallbackTranslationProvider:
    """
    Tries the primary provider and, if it fails, retries the same call once
    against the secondary provider. Input errors are not retried.
    """

    def __init__(self, primary: TranslationProvider, secondary: TranslationProvider):
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}-fallback"

    async def translate(
        self, content: str, target_language: str, source_language: str | None = None
    ) -> str:
        try:
            return await self.primary.translate(content, target_language, source_language)
        except ProviderError as e:
            with log_step(LOG_STEP):
                logger.warning(
                    f"{self.primary.name} translation failed ({e}). Falling back to {self.secondary.name}."
                )
        return await self.secondary.translate(content, target_language, source_language)

    async def detect_language(self, content: str) -> str:
        try:
            return await self.primary.detect_language(content)
        except ProviderError as e:
            with log_step(LOG_STEP):
                logger.warning(
                    f"{self.primary.name} language detection failed ({e}). Falling back to {self.secondary.name}."
                )
        return await self.secondary.detect_language(content)


def build_translation_provider(
    mode: str,
    cloud: CloudTranslationProvider,
    local: LocalTranslationProvider | None,
    enable_cloud_fallback: bool,
) -> TranslationProvider:
    """
    Picks the provider for the configured TRANSLATION_MODE. Selection is made
    once at startup, never per request.
    """
    mode = (mode or "cloud").strip().lower()

    if mode == "cloud":
        return cloud

    if mode == "local":
        if local is None:
            raise ValueError("TRANSLATION_MODE=local requires a local provider")
        if enable_cloud_fallback:
            return FallbackTranslationProvider(primary=local, secondary=cloud)
        return local

    raise ValueError(f"Unsupported TRANSLATION_MODE: {mode}")
