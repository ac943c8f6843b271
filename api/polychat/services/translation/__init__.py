"""Translation package for per-recipient message translation.

This package provides:
- TranslationCache: Two-tier caching (in-memory + optional SQLite)
- LanguageDetector: Heuristic script and keyword based detection
- TranslatorClient: Cache-first client for the chat-completion endpoint
- TranslationError: Failure taxonomy shared by retries and fallbacks
"""

from polychat.services.translation.cache import (
    SQLiteTranslationStore,
    TranslationCache,
)
from polychat.services.translation.errors import (
    InvalidTranslationInput,
    TranslationError,
    TranslationErrorType,
    user_message,
)
from polychat.services.translation.language_detector import (
    SUPPORTED_LANGUAGES,
    LanguageDetection,
    LanguageDetector,
)
from polychat.services.translation.translator import (
    TranslationResult,
    TranslatorClient,
)

__all__ = [
    "InvalidTranslationInput",
    "LanguageDetection",
    "LanguageDetector",
    "SQLiteTranslationStore",
    "SUPPORTED_LANGUAGES",
    "TranslationCache",
    "TranslationError",
    "TranslationErrorType",
    "TranslationResult",
    "TranslatorClient",
    "user_message",
]
