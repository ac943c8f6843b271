"""Heuristic language detector for chat messages.

Pure and deterministic: script ranges first, then keyword and diacritic
scoring for Latin-script languages, then a fixed English default. Used as a
cheap pre-check before calling the translation endpoint.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import ClassVar

from polychat.metrics.translation_metrics import language_detection_total

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"
DEFAULT_CONFIDENCE = 0.5

# Languages users may pick as their preferred language (ISO 639-1)
SUPPORTED_LANGUAGES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "ar": "Arabic",
    "hi": "Hindi",
    "th": "Thai",
    "vi": "Vietnamese",
    "nl": "Dutch",
    "sv": "Swedish",
    "no": "Norwegian",
    "da": "Danish",
    "fi": "Finnish",
    "pl": "Polish",
    "el": "Greek",
    "he": "Hebrew",
}

NATIVE_LANGUAGE_NAMES = {
    "en": "English",
    "es": "Español",
    "fr": "Français",
    "de": "Deutsch",
    "it": "Italiano",
    "pt": "Português",
    "ru": "Русский",
    "ja": "日本語",
    "ko": "한국어",
    "zh": "中文",
    "ar": "العربية",
    "hi": "हिन्दी",
    "th": "ไทย",
    "vi": "Tiếng Việt",
    "nl": "Nederlands",
    "sv": "Svenska",
    "no": "Norsk",
    "da": "Dansk",
    "fi": "Suomi",
    "pl": "Polski",
    "el": "Ελληνικά",
    "he": "עברית",
}


def get_language_name(code: str) -> str:
    """English name for a language code, or the code itself if unknown."""
    return SUPPORTED_LANGUAGES.get((code or "").strip().lower(), code)


def get_supported_languages() -> list[dict[str, str]]:
    return [
        {"code": code, "name": name, "native_name": NATIVE_LANGUAGE_NAMES[code]}
        for code, name in SUPPORTED_LANGUAGES.items()
    ]


def is_supported_language(code: str | None) -> bool:
    return bool(code) and code.strip().lower() in SUPPORTED_LANGUAGES


@dataclass(frozen=True)
class LanguageDetection:
    """Best-guess language of a text."""

    language: str
    confidence: float
    method: str

    @property
    def language_name(self) -> str:
        return get_language_name(self.language)


class LanguageDetector:
    """Keyword, diacritic and script based language classifier.

    Explicitly approximate. Same input always yields the same result, which
    keeps translation decisions and tests stable.
    """

    SCRIPT_HINTS: ClassVar[list[tuple[re.Pattern[str], str]]] = [
        (re.compile(r"[\u3040-\u30ff]"), "ja"),  # Hiragana/Katakana
        (re.compile(r"[\uac00-\ud7af]"), "ko"),  # Hangul
        (re.compile(r"[\u4e00-\u9fff]"), "zh"),  # Han ideographs
        (re.compile(r"[\u0600-\u06ff]"), "ar"),  # Arabic script family
        (re.compile(r"[\u0400-\u04ff]"), "ru"),  # Cyrillic script family
        (re.compile(r"[\u0370-\u03ff]"), "el"),  # Greek
        (re.compile(r"[\u0590-\u05ff]"), "he"),  # Hebrew
        (re.compile(r"[\u0900-\u097f]"), "hi"),  # Devanagari script family
        (re.compile(r"[\u0e00-\u0e7f]"), "th"),  # Thai
    ]
    SCRIPT_CONFIDENCE: ClassVar[float] = 0.95

    # Dict order is the tie-break order
    LANGUAGE_HINTS: ClassVar[dict[str, set[str]]] = {
        "en": {
            "hello",
            "hi",
            "hey",
            "the",
            "and",
            "is",
            "are",
            "you",
            "how",
            "what",
            "thanks",
            "thank",
            "please",
            "good",
            "morning",
            "yes",
            "with",
            "this",
            "that",
        },
        "es": {
            "hola",
            "como",
            "cómo",
            "está",
            "estás",
            "que",
            "qué",
            "muy",
            "bien",
            "gracias",
            "por",
            "favor",
            "sí",
            "donde",
            "dónde",
            "cuando",
            "porque",
            "buenos",
            "días",
        },
        "pt": {
            "olá",
            "obrigado",
            "obrigada",
            "você",
            "tudo",
            "bom",
            "dia",
            "não",
            "sim",
            "com",
            "muito",
        },
        "fr": {
            "bonjour",
            "salut",
            "comment",
            "vous",
            "allez",
            "très",
            "merci",
            "oui",
            "où",
            "quand",
            "pourquoi",
            "avec",
            "je",
            "suis",
        },
        "de": {
            "hallo",
            "guten",
            "morgen",
            "wie",
            "geht",
            "ihnen",
            "dir",
            "sehr",
            "gut",
            "danke",
            "bitte",
            "ja",
            "nein",
            "warum",
            "ich",
            "nicht",
        },
        "it": {
            "ciao",
            "come",
            "stai",
            "molto",
            "bene",
            "grazie",
            "prego",
            "dove",
            "perché",
            "buongiorno",
        },
        "nl": {
            "hoi",
            "goedemorgen",
            "dank",
            "bedankt",
            "alsjeblieft",
            "niet",
            "het",
            "een",
            "jij",
        },
    }

    DIACRITIC_HINTS: ClassVar[dict[str, str]] = {
        "es": "ñ¿¡",
        "pt": "ãõ",
        "fr": "çâêëîôûœ",
        "de": "äöüß",
        "it": "ìò",
    }

    _TOKEN_RE: ClassVar[re.Pattern[str]] = re.compile(r"[^\W\d_]+")

    def detect(self, text: str) -> LanguageDetection:
        """Detect the dominant language of ``text``.

        Args:
            text: Raw message text.

        Returns:
            LanguageDetection with a language code, confidence and method.
        """
        detection = self._detect(text or "")
        language_detection_total.labels(
            language=detection.language, method=detection.method
        ).inc()
        return detection

    def _detect(self, text: str) -> LanguageDetection:
        cleaned = text.strip().casefold()
        if not cleaned:
            return LanguageDetection(DEFAULT_LANGUAGE, DEFAULT_CONFIDENCE, "default")

        for pattern, language in self.SCRIPT_HINTS:
            if pattern.search(cleaned):
                return LanguageDetection(language, self.SCRIPT_CONFIDENCE, "script")

        tokens = set(self._TOKEN_RE.findall(cleaned))
        best_language = None
        best_score = 0
        for language, keywords in self.LANGUAGE_HINTS.items():
            score = len(tokens & keywords)
            diacritics = self.DIACRITIC_HINTS.get(language, "")
            score += sum(1 for char in diacritics if char in cleaned)
            if score > best_score:
                best_language, best_score = language, score

        if best_language is None:
            return LanguageDetection(DEFAULT_LANGUAGE, DEFAULT_CONFIDENCE, "default")

        confidence = round(min(0.95, 0.6 + 0.1 * best_score), 2)
        return LanguageDetection(best_language, confidence, "keywords")
