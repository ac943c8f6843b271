"""Translator client for per-recipient message translation.

Wraps an OpenAI-compatible chat-completion endpoint behind a cache and a local
language pre-check. Translation faults never escape translate(): after retries
are exhausted the caller gets the original text with zero confidence and the
classified error type.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from polychat.core.config import Settings
from polychat.core.retry import RetryPolicy
from polychat.metrics.translation_metrics import (
    translation_api_calls_total,
    translation_operation_duration_seconds,
    translation_requests_total,
)
from polychat.services.translation.cache import TranslationCache
from polychat.services.translation.errors import (
    InvalidTranslationInput,
    TranslationError,
    TranslationErrorTracker,
    TranslationErrorType,
    classify_exception,
    classify_response,
)
from polychat.services.translation.language_detector import (
    LanguageDetector,
    get_language_name,
    get_supported_languages,
)
from polychat.utils.logging import preview_text

logger = logging.getLogger(__name__)

UNKNOWN_LANGUAGE = "unknown"
PASSTHROUGH_CONFIDENCE = 0.95
CACHE_MIN_CONFIDENCE = 0.5


@dataclass
class TranslationResult:
    """Outcome of a translate() call. Always carries displayable text."""

    translated_text: str
    detected_language: str
    confidence: float
    cached: bool = False
    error_type: Optional[TranslationErrorType] = None

    @property
    def failed(self) -> bool:
        return self.error_type is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "translatedText": self.translated_text,
            "detectedLanguage": self.detected_language,
            "confidence": self.confidence,
            "cached": self.cached,
            "errorType": self.error_type.value if self.error_type else None,
        }


def calculate_confidence(original_text: str, translated_text: str) -> float:
    """Heuristic confidence for a returned translation."""
    if original_text == translated_text:
        return 0.95
    ratio = len(translated_text) / max(1, len(original_text))
    if ratio < 0.3 or ratio > 3:
        return 0.5
    return 0.85


class TranslatorClient:
    """Cache-first translator backed by a chat-completion API.

    Flow:
    1. Validate input
    2. Return a cached translation if one is fresh
    3. Pass the text through unchanged when it is already in the target language
    4. Call the endpoint under the retry policy, each attempt time-boxed
    5. Cache confident results, fall back to the original text on failure
    """

    SYSTEM_PROMPT = """You are a professional translator. Your task is to translate text accurately while preserving meaning, tone, and context.

IMPORTANT RULES:
1. Only return the translated text, nothing else
2. Preserve formatting (line breaks, punctuation)
3. Maintain the original tone and style
4. If the text is already in the target language, return it unchanged
5. For names, places, and proper nouns, keep them as-is unless they have standard translations
6. Do not add explanations, notes, or extra text

Target Language: {target_lang}
Source Language: {source_lang}"""

    USER_PROMPT = "Translate this text to {target_lang}:\n\n{text}"

    def __init__(
        self,
        settings: Settings,
        cache: Optional[TranslationCache] = None,
        detector: Optional[LanguageDetector] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the translator.

        Args:
            settings: Application settings with the TRANSLATION_* keys.
            cache: Shared translation cache (a private one is created if omitted).
            detector: Language detector used for the pass-through check.
            retry_policy: Override for the retry behavior (tests use no-op sleeps).
            transport: Optional httpx transport, used to stub the endpoint in tests.
        """
        self.settings = settings
        self.base_url = settings.TRANSLATION_API_URL
        self.model = settings.TRANSLATION_MODEL
        self.timeout = settings.TRANSLATION_TIMEOUT_SECONDS
        self.max_text_length = settings.TRANSLATION_MAX_TEXT_LENGTH
        self._api_key = settings.TRANSLATION_API_KEY
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self.cache = cache or TranslationCache(
            max_entries=settings.TRANSLATION_CACHE_MAX_ENTRIES,
            max_age_seconds=settings.TRANSLATION_CACHE_MAX_AGE_SECONDS,
        )
        self.detector = detector or LanguageDetector()
        self.errors = TranslationErrorTracker()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.TRANSLATION_MAX_RETRIES,
            base_delay=settings.TRANSLATION_RETRY_BASE_DELAY,
            max_delay=settings.TRANSLATION_RETRY_MAX_DELAY,
            is_retryable=_is_retryable,
            min_delay_for=self._min_delay_for,
            max_hint_delay=settings.TRANSLATION_RATE_LIMIT_MAX_DELAY,
        )

        self.stats = {
            "requests": 0,
            "cache_hits": 0,
            "passthrough": 0,
            "translations_performed": 0,
            "fallbacks": 0,
        }

        if not self._api_key:
            logger.warning(
                "TRANSLATION_API_KEY is not set; translations will fall back "
                "to the original text"
            )
        logger.info(
            f"TranslatorClient initialized (base_url={self.base_url}, "
            f"model={self.model}, timeout={self.timeout}s)"
        )

    def _min_delay_for(self, error: BaseException) -> Optional[float]:
        if (
            isinstance(error, TranslationError)
            and error.error_type == TranslationErrorType.RATE_LIMIT
        ):
            return max(
                self.settings.TRANSLATION_RATE_LIMIT_MIN_DELAY, error.retry_after or 0.0
            )
        return None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                    "X-Title": self.settings.PROJECT_NAME,
                },
                transport=self._transport,
            )
        return self._client

    async def translate(
        self, text: str, target_lang: str, source_lang: Optional[str] = "auto"
    ) -> TranslationResult:
        """Translate ``text`` into ``target_lang``.

        Args:
            text: Message text.
            target_lang: ISO 639-1 target language code.
            source_lang: Declared source language, or "auto".

        Returns:
            TranslationResult. On failure the original text with confidence 0,
            detected language "unknown" and ``error_type`` set.

        Raises:
            InvalidTranslationInput: If text is blank or the target is missing.
        """
        if not text or not text.strip():
            raise InvalidTranslationInput("Text is required for translation")
        if not target_lang or not target_lang.strip():
            raise InvalidTranslationInput("Target language is required")

        target = target_lang.strip().lower()
        source = (source_lang or "auto").strip().lower()
        self.stats["requests"] += 1

        start_time = time.perf_counter()
        try:
            return await self._translate(text, target, source)
        finally:
            translation_operation_duration_seconds.observe(
                time.perf_counter() - start_time
            )

    async def translate_within(
        self,
        text: str,
        target_lang: str,
        source_lang: Optional[str] = "auto",
        timeout: Optional[float] = None,
    ) -> TranslationResult:
        """translate() with an overall deadline covering every retry.

        On expiry the original text is returned with ``error_type`` TIMEOUT.
        ``timeout`` defaults to FANOUT_RECIPIENT_TIMEOUT_SECONDS.
        """
        deadline = (
            timeout
            if timeout is not None
            else self.settings.FANOUT_RECIPIENT_TIMEOUT_SECONDS
        )
        try:
            return await asyncio.wait_for(
                self.translate(text, target_lang, source_lang), timeout=deadline
            )
        except asyncio.TimeoutError:
            error = self._record(
                TranslationError(
                    TranslationErrorType.TIMEOUT,
                    f"Translation did not finish within {deadline}s",
                )
            )
            return self._fallback(text, target_lang.strip().lower(), error)

    async def _translate(self, text: str, target: str, source: str) -> TranslationResult:
        cached = await self.cache.get(text, source, target)
        if cached is not None:
            self.stats["cache_hits"] += 1
            translation_requests_total.labels(outcome="cache_hit").inc()
            logger.debug(f"Cache hit for '{preview_text(text)}' -> {target}")
            return TranslationResult(
                translated_text=cached.translated_text,
                detected_language=cached.detected_language or cached.source_language,
                confidence=cached.confidence,
                cached=True,
            )

        detection = self.detector.detect(text)
        detected = source if source != "auto" else detection.language
        if detected == target:
            self.stats["passthrough"] += 1
            translation_requests_total.labels(outcome="passthrough").inc()
            await self.cache.put(
                text,
                text,
                source,
                target,
                PASSTHROUGH_CONFIDENCE,
                detected_language=detected,
            )
            return TranslationResult(
                translated_text=text,
                detected_language=detected,
                confidence=PASSTHROUGH_CONFIDENCE,
            )

        try:
            if len(text) > self.max_text_length:
                raise self._record(
                    TranslationError(
                        TranslationErrorType.TEXT_TOO_LONG,
                        f"Text too long: {len(text)} > {self.max_text_length} characters",
                    )
                )
            translated = await self.retry_policy.call(
                self._request_translation, text, target, source
            )
        except TranslationError as e:
            return self._fallback(text, target, e)

        self.stats["translations_performed"] += 1
        confidence = calculate_confidence(text, translated)
        if confidence > CACHE_MIN_CONFIDENCE:
            await self.cache.put(
                text, translated, source, target, confidence, detected_language=detected
            )
        translation_requests_total.labels(outcome="translated").inc()
        logger.info(
            f"Translated '{preview_text(text)}' {detected} -> {target} "
            f"(confidence={confidence})"
        )
        return TranslationResult(
            translated_text=translated,
            detected_language=detected,
            confidence=confidence,
        )

    def _fallback(
        self, text: str, target: str, error: TranslationError
    ) -> TranslationResult:
        self.stats["fallbacks"] += 1
        translation_requests_total.labels(outcome="fallback").inc()
        logger.warning(
            f"All translation attempts failed for '{preview_text(text)}' -> {target} "
            f"({error.error_type.value}), returning original text"
        )
        return TranslationResult(
            translated_text=text,
            detected_language=UNKNOWN_LANGUAGE,
            confidence=0.0,
            error_type=error.error_type,
        )

    def _build_payload(self, text: str, target: str, source: str) -> Dict[str, Any]:
        target_name = get_language_name(target)
        source_name = "Auto-detect" if source == "auto" else get_language_name(source)
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": self.SYSTEM_PROMPT.format(
                        target_lang=target_name, source_lang=source_name
                    ),
                },
                {
                    "role": "user",
                    "content": self.USER_PROMPT.format(target_lang=target_name, text=text),
                },
            ],
            "max_tokens": min(2000, max(64, len(text) * 3)),
            "temperature": self.settings.TRANSLATION_TEMPERATURE,
            "top_p": 0.9,
            "stream": False,
        }

    async def _request_translation(self, text: str, target: str, source: str) -> str:
        """One attempt against the endpoint.

        Raises:
            TranslationError: Classified failure of this attempt.
        """
        client = await self._get_client()
        payload = self._build_payload(text, target, source)

        try:
            response = await asyncio.wait_for(
                client.post("/chat/completions", json=payload), timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.HTTPError) as e:
            raise self._record(classify_exception(e)) from e

        if response.is_error:
            raise self._record(classify_response(response))

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise self._record(
                TranslationError(
                    TranslationErrorType.UNKNOWN, "Malformed translation response"
                )
            ) from e

        translated = (content or "").strip()
        if not translated:
            raise self._record(
                TranslationError(
                    TranslationErrorType.UNKNOWN,
                    "No translation received from translation API",
                )
            )

        translation_api_calls_total.labels(result="success").inc()
        return translated

    def _record(self, error: TranslationError) -> TranslationError:
        translation_api_calls_total.labels(result=error.error_type.value).inc()
        self.errors.record(error)
        return error

    async def batch_translate(
        self, texts: List[str], target_lang: str, source_lang: Optional[str] = "auto"
    ) -> List[TranslationResult]:
        """Translate several texts concurrently, one fallback per failed item."""
        results = await asyncio.gather(
            *(self.translate(text, target_lang, source_lang) for text in texts),
            return_exceptions=True,
        )

        translations: List[TranslationResult] = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.error(f"Translation failed for text {index}: {result}")
                translations.append(
                    TranslationResult(
                        translated_text=texts[index],
                        detected_language=UNKNOWN_LANGUAGE,
                        confidence=0.0,
                        error_type=classify_exception(result).error_type,
                    )
                )
            else:
                translations.append(result)
        return translations

    def get_supported_languages(self) -> List[Dict[str, str]]:
        return get_supported_languages()

    async def test_connection(self) -> bool:
        """Translate a probe phrase and report whether the endpoint answered."""
        try:
            result = await self.translate("Hello", "es")
        except Exception as e:
            logger.error(f"Translation connection test failed: {e}")
            return False
        return result.confidence > 0 and not result.failed

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "cache": self.cache.get_stats(),
            "errors": self.errors.get_stats(),
        }

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("TranslatorClient HTTP client closed")


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, TranslationError) and error.retryable
