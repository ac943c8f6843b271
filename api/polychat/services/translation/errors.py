"""Failure taxonomy for the external translation endpoint.

Every fault raised while talking to the translator is mapped onto a
TranslationError so the retry policy and the fallback path can decide what to
do without inspecting transport details.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Dict, Optional

import httpx

from polychat.metrics.translation_metrics import translation_errors_total

logger = logging.getLogger(__name__)


class TranslationErrorType(str, Enum):
    NETWORK = "network"
    RATE_LIMIT = "rate-limit"
    QUOTA_EXCEEDED = "quota-exceeded"
    INVALID_CREDENTIALS = "invalid-credentials"
    UNSUPPORTED_LANGUAGE = "unsupported-language"
    TEXT_TOO_LONG = "text-too-long"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


RETRYABLE_TYPES = frozenset(
    {
        TranslationErrorType.NETWORK,
        TranslationErrorType.RATE_LIMIT,
        TranslationErrorType.TIMEOUT,
    }
)

# Types where showing the original text is an acceptable outcome
FALLBACK_TYPES = frozenset(
    {
        TranslationErrorType.NETWORK,
        TranslationErrorType.RATE_LIMIT,
        TranslationErrorType.QUOTA_EXCEEDED,
        TranslationErrorType.TEXT_TOO_LONG,
        TranslationErrorType.TIMEOUT,
        TranslationErrorType.UNKNOWN,
    }
)

USER_MESSAGES: Dict[TranslationErrorType, str] = {
    TranslationErrorType.NETWORK: (
        "Translation service temporarily unavailable. Please try again."
    ),
    TranslationErrorType.RATE_LIMIT: (
        "Too many translation requests. Please wait a moment and try again."
    ),
    TranslationErrorType.QUOTA_EXCEEDED: (
        "Translation quota exceeded. Please try again later."
    ),
    TranslationErrorType.INVALID_CREDENTIALS: (
        "Translation service configuration error. Please contact support."
    ),
    TranslationErrorType.UNSUPPORTED_LANGUAGE: (
        "This language is not supported for translation."
    ),
    TranslationErrorType.TEXT_TOO_LONG: (
        "Message is too long to translate. Please shorten it."
    ),
    TranslationErrorType.TIMEOUT: "Translation is taking too long. Please try again.",
    TranslationErrorType.UNKNOWN: "Translation failed. Showing original message.",
}


def user_message(error_type: Optional[TranslationErrorType]) -> str:
    """User-facing sentence shown next to an untranslated message."""
    if error_type is None:
        return USER_MESSAGES[TranslationErrorType.UNKNOWN]
    return USER_MESSAGES.get(
        TranslationErrorType(error_type), USER_MESSAGES[TranslationErrorType.UNKNOWN]
    )


class InvalidTranslationInput(ValueError):
    """Raised for empty text or a missing target language.

    This is a caller bug rather than a translator fault, so it is the one
    error translate() lets through.
    """


class TranslationError(Exception):
    """A classified failure of the translation endpoint."""

    def __init__(
        self,
        error_type: TranslationErrorType,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.retryable = error_type in RETRYABLE_TYPES
        self.fallback_available = error_type in FALLBACK_TYPES

    def __repr__(self) -> str:
        return (
            f"TranslationError(type={self.error_type.value}, "
            f"status={self.status_code}, message={self.message!r})"
        )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds. HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _extract_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return response.reason_phrase or ""


def classify_response(response: httpx.Response) -> TranslationError:
    """Classify a non-2xx response from the translation endpoint."""
    status = response.status_code
    detail = _extract_error_message(response)
    lowered = detail.lower()
    message = f"Translation API error: {status} - {detail}"

    if status == 401:
        error_type = TranslationErrorType.INVALID_CREDENTIALS
    elif status == 429:
        return TranslationError(
            TranslationErrorType.RATE_LIMIT,
            message,
            status_code=status,
            retry_after=parse_retry_after(response.headers.get("retry-after")),
        )
    elif status in (402, 403) or "quota" in lowered:
        error_type = TranslationErrorType.QUOTA_EXCEEDED
    elif 500 <= status < 600:
        error_type = TranslationErrorType.NETWORK
    elif status == 413 or "too long" in lowered:
        error_type = TranslationErrorType.TEXT_TOO_LONG
    elif "unsupported language" in lowered or "language not supported" in lowered:
        error_type = TranslationErrorType.UNSUPPORTED_LANGUAGE
    else:
        error_type = TranslationErrorType.UNKNOWN

    return TranslationError(error_type, message, status_code=status)


def classify_exception(exc: BaseException) -> TranslationError:
    """Map any exception raised during a translation call to the taxonomy."""
    if isinstance(exc, TranslationError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return TranslationError(
            TranslationErrorType.TIMEOUT, "Translation request timed out"
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(exc.response)
    if isinstance(exc, httpx.TransportError):
        return TranslationError(
            TranslationErrorType.NETWORK, f"Translation transport error: {exc}"
        )
    return TranslationError(
        TranslationErrorType.UNKNOWN, str(exc) or type(exc).__name__
    )


class TranslationErrorTracker:
    """Counts classified errors per type for health reporting."""

    def __init__(self):
        self._counts: Dict[TranslationErrorType, int] = {}
        self._lock = threading.Lock()

    def record(self, error: TranslationError) -> None:
        with self._lock:
            self._counts[error.error_type] = self._counts.get(error.error_type, 0) + 1
        translation_errors_total.labels(error_type=error.error_type.value).inc()
        logger.warning(f"Translation error [{error.error_type.value}]: {error.message}")

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {error_type.value: count for error_type, count in self._counts.items()}

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
