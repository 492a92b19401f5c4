"""Translate entity fields through the language model with caching.

Several fields of one entity are consolidated into a single numbered prompt;
when the model answers with something that is not the expected JSON the
fields are translated one at a time instead, so no field is silently dropped.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from app.services.llm_gateway import LanguageModelGateway, ModelError
from app.services.translation_cache import TranslationCache, build_cache_key

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "ar": "Arabic",
    "ku": "Kurdish (Sorani)",
    "fr": "French",
}

# Labels the model sometimes echoes in front of a translation, per field,
# in the source and usual target languages.
FIELD_LABEL_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "name": ("name", "nom", "الاسم", "اسم", "ناو"),
    "description": ("description", "الوصف", "وصف", "وەسف"),
    "address": ("address", "adresse", "العنوان", "ناونیشان"),
    "city": ("city", "ville", "المدينة", "شار"),
    "state": ("state", "état", "etat", "الولاية", "پارێزگا"),
    "country": ("country", "pays", "البلد", "الدولة", "وڵات"),
    "title": ("title", "titre", "العنوان", "ناونیشان"),
    "notes": ("notes", "note", "ملاحظات", "تێبینی"),
}

LABEL_PREFIX_TEMPLATES: Tuple[str, ...] = (
    r"^\s*{label}\s*[:：]\s*",
    r"^\s*\[{label}\]\s*[:：]?\s*",
)

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

SINGLE_PROMPT_TEMPLATE = (
    "Translate the following text from {source_name} to {target_names}.\n"
    "Return a JSON object with language codes as keys and translations as values.\n"
    "Only include the JSON object, no explanations.\n\n"
    'Text to translate: "{text}"\n\n'
    "Only include the languages requested: {target_codes}"
)

BATCH_PROMPT_TEMPLATE = (
    "Translate ONLY the text content (the text inside quotes) from {source_name} to {target_names}.\n"
    "DO NOT translate field names or labels (the text in square brackets).\n\n"
    "Texts to translate:\n{numbered_texts}\n\n"
    "Return a JSON object where each key is the number of a text (1, 2, 3, ...) and each value "
    "is an object with language codes as keys and ONLY the translated text content as values.\n"
    "Only include the languages requested: {target_codes}\n"
    "Do not include field names or labels in the translations."
)


class TranslationParseError(Exception):
    """Raised when the model answer cannot be read as the expected JSON."""


@dataclass(frozen=True)
class FieldText:
    field_name: str
    text: str


@dataclass
class FieldTranslation:
    field_name: str
    translations: Dict[str, str] = field(default_factory=dict)


def _language_name(code: Optional[str]) -> str:
    if not code:
        return "the source language"
    return LANGUAGE_NAMES.get(code, code)


def _label_patterns(field_name: str) -> List[Pattern[str]]:
    labels = [field_name, field_name.replace("_", " ")]
    labels.extend(FIELD_LABEL_SYNONYMS.get(field_name, ()))
    for synonyms in FIELD_LABEL_SYNONYMS.values():
        labels.extend(synonyms)
    patterns: List[Pattern[str]] = []
    seen = set()
    for label in labels:
        if label in seen:
            continue
        seen.add(label)
        for template in LABEL_PREFIX_TEMPLATES:
            patterns.append(re.compile(template.format(label=re.escape(label)), re.IGNORECASE))
    return patterns


def strip_field_labels(text: str, field_name: str) -> str:
    """Remove a leading ``"label: "`` or ``"[label] "`` echoed by the model."""

    cleaned = text.strip()
    for pattern in _label_patterns(field_name):
        cleaned = pattern.sub("", cleaned, count=1)
    return cleaned.strip()


def extract_json_object(response_text: str) -> Dict[str, Any]:
    """Parse the first JSON object in a model answer (code fences tolerated)."""

    match = JSON_OBJECT_RE.search(response_text)
    candidate = match.group(0) if match else response_text
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise TranslationParseError(f"Invalid JSON in model answer: {response_text[:120]!r}") from exc
    if not isinstance(parsed, dict):
        raise TranslationParseError("Model answer is not a JSON object.")
    return parsed


def _select_languages(raw: Any, target_languages: Sequence[str]) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    selected: Dict[str, str] = {}
    for language in target_languages:
        value = raw.get(language)
        if isinstance(value, str) and value.strip():
            selected[language] = value.strip()
    return selected


def normalize_targets(target_languages: Iterable[str], source_language: Optional[str]) -> List[str]:
    targets: List[str] = []
    for language in target_languages:
        code = (language or "").strip().lower()
        if code and code != source_language and code not in targets:
            targets.append(code)
    return targets


class BatchTranslator:
    def __init__(self, gateway: LanguageModelGateway, cache: TranslationCache) -> None:
        self._gateway = gateway
        self._cache = cache

    async def translate_text(
        self,
        text: str,
        target_languages: Sequence[str],
        source_language: Optional[str] = None,
    ) -> Dict[str, str]:
        """Translate one text; raises ``ModelError`` or ``TranslationParseError``."""

        if not text or not text.strip():
            return {}
        targets = normalize_targets(target_languages, source_language)
        if not targets:
            return {}

        cache_key = build_cache_key(text, targets, source_language)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        logger.debug("Cache miss, calling the model for: %s...", text[:50])
        prompt = SINGLE_PROMPT_TEMPLATE.format(
            source_name=_language_name(source_language),
            target_names=", ".join(_language_name(code) for code in targets),
            text=text,
            target_codes=", ".join(targets),
        )
        response_text = await self._gateway.complete(prompt)
        translations = _select_languages(extract_json_object(response_text), targets)
        if translations:
            self._cache.put(cache_key, translations)
        return translations

    async def translate_batch(
        self,
        fields: Sequence[FieldText],
        target_languages: Sequence[str],
        source_language: Optional[str] = None,
    ) -> List[FieldTranslation]:
        """Translate every field, preserving input order. Never raises.

        A field whose translation failed comes back with an empty map.
        """

        if not fields:
            return []
        targets = normalize_targets(target_languages, source_language)
        valid_positions = [
            position for position, item in enumerate(fields) if item.text and item.text.strip()
        ]
        results: Dict[int, Dict[str, str]] = {}

        if targets and len(valid_positions) == 1:
            position = valid_positions[0]
            item = fields[position]
            try:
                results[position] = await self.translate_text(item.text, targets, source_language)
            except (ModelError, TranslationParseError) as exc:
                logger.error("Failed to translate %s: %s", item.field_name, exc)
        elif targets and valid_positions:
            uncached: List[int] = []
            for position in valid_positions:
                cached = self._cache.get(build_cache_key(fields[position].text, targets, source_language))
                if cached is not None:
                    results[position] = cached
                else:
                    uncached.append(position)
            if uncached:
                results.update(await self._translate_uncached(fields, uncached, targets, source_language))

        return [
            FieldTranslation(item.field_name, results.get(position, {}))
            for position, item in enumerate(fields)
        ]

    async def _translate_uncached(
        self,
        fields: Sequence[FieldText],
        positions: List[int],
        targets: List[str],
        source_language: Optional[str],
    ) -> Dict[int, Dict[str, str]]:
        numbered_texts = "\n".join(
            f'{number}. [{fields[position].field_name}] "{fields[position].text}"'
            for number, position in enumerate(positions, start=1)
        )
        prompt = BATCH_PROMPT_TEMPLATE.format(
            source_name=_language_name(source_language),
            target_names=", ".join(_language_name(code) for code in targets),
            numbered_texts=numbered_texts,
            target_codes=", ".join(targets),
        )
        logger.debug("Batch translation: calling the model for %s fields in one request", len(positions))

        try:
            response_text = await self._gateway.complete(prompt)
            parsed = extract_json_object(response_text)
        except (ModelError, TranslationParseError) as exc:
            logger.warning("Batch translation failed (%s), falling back to individual translations", exc)
            return await self._translate_individually(fields, positions, targets, source_language)

        results: Dict[int, Dict[str, str]] = {}
        for number, position in enumerate(positions, start=1):
            item = fields[position]
            translations = {
                language: strip_field_labels(text, item.field_name)
                for language, text in _select_languages(parsed.get(str(number)), targets).items()
            }
            translations = {language: text for language, text in translations.items() if text}
            results[position] = translations
            if translations:
                self._cache.put(build_cache_key(item.text, targets, source_language), translations)
            else:
                logger.warning("No translations received for field %s in batch response", item.field_name)
        return results

    async def _translate_individually(
        self,
        fields: Sequence[FieldText],
        positions: List[int],
        targets: List[str],
        source_language: Optional[str],
    ) -> Dict[int, Dict[str, str]]:
        results: Dict[int, Dict[str, str]] = {}
        for position in positions:
            item = fields[position]
            try:
                results[position] = await self.translate_text(item.text, targets, source_language)
            except (ModelError, TranslationParseError) as exc:
                logger.error("Failed to translate %s: %s", item.field_name, exc)
                results[position] = {}
        return results


__all__ = [
    "BatchTranslator",
    "FieldText",
    "FieldTranslation",
    "TranslationParseError",
    "strip_field_labels",
    "extract_json_object",
    "normalize_targets",
]
