"""Source-language detection for translatable content."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

from langdetect import DetectorFactory, LangDetectException, detect

from app.services.llm_gateway import LanguageModelGateway, ModelError

logger = logging.getLogger(__name__)

DetectorFactory.seed = 0  # make language detection deterministic

DEFAULT_LANGUAGE_CODE = os.getenv("DEFAULT_LANGUAGE_CODE", "en")
DEFAULT_MODEL_CONFIDENCE = 0.8
HEURISTIC_CONFIDENCE = 0.7
DEFAULT_CONFIDENCE = 0.6

# Checked in order. Sorani Kurdish shares the Arabic block, so its distinctive
# letters (ڤ ڕ ڵ ۆ ێ ە) must be tested before the generic Arabic range.
SCRIPT_PATTERNS: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"[\u06A4\u0695\u06B5\u06C6\u06CE\u06D5]"), "ku"),
    (re.compile(r"[\u0600-\u06FF\u0750-\u077F]"), "ar"),
)

DETECTION_PROMPT_TEMPLATE = (
    "Detect the language of the following text and respond with only the ISO 639-1 "
    "language code (e.g., en, ar, ku, fr, es) and a confidence between 0 and 1, "
    "separated by a comma. If uncertain, answer en.\n\n"
    'Text: "{text}"\n\n'
    "Response format: language_code,confidence\n"
    "Example: ar,0.95"
)


@dataclass(frozen=True)
class DetectionResult:
    language: str
    confidence: float
    method: str


def detect_by_script(text: str, default_language: str = DEFAULT_LANGUAGE_CODE) -> DetectionResult:
    """Cheap offline detection used whenever the model cannot be reached."""

    for pattern, language in SCRIPT_PATTERNS:
        if pattern.search(text):
            return DetectionResult(language, HEURISTIC_CONFIDENCE, "script")
    try:
        code = detect(text)
    except LangDetectException:
        return DetectionResult(default_language, DEFAULT_CONFIDENCE, "default")
    return DetectionResult(code.split("-")[0].lower(), HEURISTIC_CONFIDENCE, "langdetect")


def _parse_model_answer(answer: str) -> Tuple[Optional[str], float]:
    language, _, confidence_raw = answer.strip().partition(",")
    language = re.sub(r"[^a-z]", "", language.strip().lower())[:2]
    try:
        confidence = float(confidence_raw.strip())
    except ValueError:
        confidence = DEFAULT_MODEL_CONFIDENCE
    return (language or None), confidence


class LanguageDetector:
    def __init__(
        self,
        gateway: Optional[LanguageModelGateway] = None,
        *,
        default_language: str = DEFAULT_LANGUAGE_CODE,
    ) -> None:
        self._gateway = gateway
        self.default_language = default_language

    async def detect(self, text: str) -> DetectionResult:
        """Detect the language of ``text``. Never raises."""

        cleaned = (text or "").strip()
        if not cleaned:
            return DetectionResult(self.default_language, 0.0, "default")
        if self._gateway is None or not self._gateway.is_configured:
            return detect_by_script(cleaned, self.default_language)

        try:
            answer = await self._gateway.complete(DETECTION_PROMPT_TEMPLATE.format(text=cleaned))
        except ModelError as exc:
            logger.error("Language detection failed: %s", exc)
            return detect_by_script(cleaned, self.default_language)

        language, confidence = _parse_model_answer(answer)
        if not language:
            logger.warning("Unreadable language detection answer: %r", answer[:80])
            return detect_by_script(cleaned, self.default_language)
        return DetectionResult(language, confidence, "model")


__all__ = ["LanguageDetector", "DetectionResult", "detect_by_script", "DEFAULT_LANGUAGE_CODE"]
