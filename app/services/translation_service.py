"""Orchestration of entity translations: detect, translate, persist."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from app.config.supabase_client import get_supabase_client
from app.schemas import (
    BatchTranslationsResponse,
    CacheStatsResponse,
    MessageResponse,
    RetranslateResponse,
    SupportedLanguage,
    TranslationRecord,
    TranslationsResponse,
)
from app.services.batch_translator import LANGUAGE_NAMES, BatchTranslator, FieldText, normalize_targets
from app.services.language_detection import DEFAULT_LANGUAGE_CODE, LanguageDetector
from app.services.llm_gateway import LanguageModelGateway
from app.services.pre_translations import get_pre_translation
from app.services.translation_backfill import (
    BackfillProgress,
    SupabaseEntityCatalog,
    TranslationBackfillWorker,
)
from app.services.translation_cache import TranslationCache
from app.services.translation_repository import (
    DefaultLanguageError,
    DuplicateLanguageError,
    SupabaseTranslationRepository,
    TranslationPersistenceError,
)

logger = logging.getLogger(__name__)

BULK_INSERT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class SeedTranslation:
    """One field of standard seed data to store without a model call."""

    entity_type: str
    entity_id: str
    field_name: str
    text: str


class TranslationServiceError(Exception):
    """Base class for errors surfaced to callers of the translation service."""


class InvalidTargetLanguagesError(TranslationServiceError):
    """No usable target language could be resolved for the request."""


class TranslationNotFoundError(TranslationServiceError):
    pass


class LanguageCatalogError(TranslationServiceError):
    """Invalid change to the supported language catalog."""


class TranslationService:
    def __init__(
        self,
        repository: SupabaseTranslationRepository,
        translator: BatchTranslator,
        detector: LanguageDetector,
        backfill: TranslationBackfillWorker,
        cache: TranslationCache,
        *,
        default_language: str = DEFAULT_LANGUAGE_CODE,
    ) -> None:
        self._repository = repository
        self._translator = translator
        self._detector = detector
        self._backfill = backfill
        self._cache = cache
        self.default_language = default_language

    # ------------------------------------------------------------------
    # Language resolution
    # ------------------------------------------------------------------

    async def _supported_codes(self) -> List[str]:
        languages = await self._repository.get_supported_languages(active_only=True)
        codes = [language.code for language in languages]
        # An empty catalog (fresh database) falls back to the built-in languages.
        return codes or list(LANGUAGE_NAMES)

    async def _resolve_source_language(
        self,
        text: str,
        source_language: Optional[str],
        entity_label: str,
    ) -> str:
        supported = await self._supported_codes()
        if source_language:
            language = source_language.strip().lower()
            if language in supported:
                return language
            logger.warning(
                "Provided source language '%s' is not supported, using default '%s' for entity %s",
                language,
                self.default_language,
                entity_label,
            )
            return self.default_language

        if not text or not text.strip():
            return self.default_language
        detection = await self._detector.detect(text)
        if detection.language in supported:
            language = detection.language
        else:
            logger.warning(
                "Detected language '%s' is not supported, using default '%s' for entity %s",
                detection.language,
                self.default_language,
                entity_label,
            )
            language = self.default_language
        logger.info(
            "Detected language: %s (confidence: %s, method: %s), using: %s for entity %s",
            detection.language,
            detection.confidence,
            detection.method,
            language,
            entity_label,
        )
        return language

    async def _resolve_targets(
        self,
        source_language: str,
        tenant_id: Optional[str],
        target_languages: Optional[Sequence[str]],
    ) -> List[str]:
        if tenant_id:
            enabled = await self._repository.get_tenant_languages(tenant_id)
            candidates: Iterable[str] = [language.code for language in enabled]
        elif target_languages:
            candidates = target_languages
        else:
            candidates = await self._supported_codes()
        return normalize_targets(candidates, source_language)

    async def _persist_field(
        self,
        metadata_id: str,
        field_name: str,
        text: str,
        source_language: str,
        translations: Dict[str, str],
        user_id: Optional[str],
    ) -> Dict[str, str]:
        await self._repository.upsert_translation(
            metadata_id, source_language, field_name, text, is_ai_generated=False, last_updated_by=user_id
        )
        written = {source_language: text}
        for language_code, translated_text in translations.items():
            if language_code == source_language or not translated_text.strip():
                continue
            record = await self._repository.upsert_ai_translation(
                metadata_id, language_code, field_name, translated_text
            )
            if record is not None:
                written[language_code] = translated_text
        return written

    # ------------------------------------------------------------------
    # Translation operations
    # ------------------------------------------------------------------

    async def create_translations(
        self,
        entity_type: str,
        entity_id: str,
        field_name: str,
        text: str,
        *,
        source_language: Optional[str] = None,
        target_languages: Optional[Sequence[str]] = None,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> TranslationsResponse:
        """Translate one field into the tenant's languages and store every result.

        The source text is always stored. Languages the model failed to
        produce are missing from the returned map; that is not an error.
        """

        entity_label = f"{entity_type}:{entity_id}"
        source = await self._resolve_source_language(text, source_language, entity_label)
        if not text or not text.strip():
            logger.warning("Empty text for %s (%s), nothing to translate", entity_label, field_name)
            return TranslationsResponse(source_language=source, translations={})

        targets = await self._resolve_targets(source, tenant_id, target_languages)
        translations: Dict[str, str] = {}
        if targets:
            results = await self._translator.translate_batch([FieldText(field_name, text)], targets, source)
            translations = results[0].translations
            if not translations:
                logger.error("AI translation failed for %s (%s), storing source text only", entity_label, field_name)
            else:
                logger.info("Generated %s translations for %s", len(translations), entity_label)
        else:
            logger.warning("No target languages to translate to for %s", entity_label)

        metadata = await self._repository.create_or_get_metadata(entity_type, entity_id, source)
        written = await self._persist_field(metadata.id, field_name, text, source, translations, user_id)
        return TranslationsResponse(source_language=source, translations=written)

    async def create_batch_translations(
        self,
        entity_type: str,
        entity_id: str,
        fields: Sequence[FieldText],
        *,
        source_language: Optional[str] = None,
        target_languages: Optional[Sequence[str]] = None,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> BatchTranslationsResponse:
        """Translate several fields of one entity with as few model calls as possible.

        The source language is detected once, from the first non-empty field.
        """

        if not fields:
            return BatchTranslationsResponse(
                source_language=(source_language or self.default_language), translations={}
            )

        entity_label = f"{entity_type}:{entity_id}"
        detection_text = next((item.text for item in fields if item.text and item.text.strip()), "")
        source = await self._resolve_source_language(detection_text, source_language, entity_label)
        valid_fields = [item for item in fields if item.text and item.text.strip()]
        if not valid_fields:
            return BatchTranslationsResponse(source_language=source, translations={})

        targets = await self._resolve_targets(source, tenant_id, target_languages)
        results = (
            await self._translator.translate_batch(valid_fields, targets, source)
            if targets
            else [None] * len(valid_fields)
        )

        metadata = await self._repository.create_or_get_metadata(entity_type, entity_id, source)
        by_field: Dict[str, Dict[str, str]] = {}
        for item, result in zip(valid_fields, results):
            translations = result.translations if result is not None else {}
            if targets and not translations:
                logger.error("AI translation failed for %s (%s), storing source text only", entity_label, item.field_name)
            by_field[item.field_name] = await self._persist_field(
                metadata.id, item.field_name, item.text, source, translations, user_id
            )
        return BatchTranslationsResponse(source_language=source, translations=by_field)

    async def update_translation(
        self,
        entity_type: str,
        entity_id: str,
        language_code: str,
        field_name: str,
        translated_text: str,
        user_id: Optional[str] = None,
    ) -> TranslationRecord:
        """Store a manual edit; it will not be replaced by later AI translations."""

        metadata = await self._repository.create_or_get_metadata(entity_type, entity_id, language_code)
        record = await self._repository.upsert_translation(
            metadata.id,
            language_code,
            field_name,
            translated_text,
            is_ai_generated=False,
            last_updated_by=user_id,
        )
        logger.info(
            "Updated translation for %s:%s (%s:%s)", entity_type, entity_id, language_code, field_name
        )
        return record

    async def get_translation(
        self,
        entity_type: str,
        entity_id: str,
        language_code: str,
        field_name: str,
        fallback_language: Optional[str] = None,
    ) -> Optional[str]:
        return await self._repository.get_translation(
            entity_type,
            entity_id,
            language_code,
            field_name,
            fallback_language or self.default_language,
        )

    async def get_entity_translations(self, entity_type: str, entity_id: str) -> Dict[str, Dict[str, str]]:
        organized: Dict[str, Dict[str, str]] = {}
        for record in await self._repository.get_entity_translations(entity_type, entity_id):
            organized.setdefault(record.field_name, {})[record.language_code] = record.translated_text
        return organized

    async def delete_entity_translations(self, entity_type: str, entity_id: str) -> None:
        await self._repository.delete_entity_translations(entity_type, entity_id)
        logger.info("Deleted translations for %s:%s", entity_type, entity_id)

    async def retranslate(
        self,
        entity_type: str,
        entity_id: str,
        target_languages: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        overwrite_manual: bool = False,
    ) -> RetranslateResponse:
        """Regenerate the AI translations of an entity from its source-language text."""

        metadata = await self._repository.get_translation_metadata(entity_type, entity_id)
        if metadata is None:
            raise TranslationNotFoundError(f"No translation metadata found for {entity_type}:{entity_id}")

        source = metadata.source_language
        candidates = target_languages if target_languages else await self._supported_codes()
        targets = normalize_targets(candidates, source)
        if not targets:
            raise InvalidTargetLanguagesError("No target languages specified")

        records = await self._repository.get_entity_translations(entity_type, entity_id)
        source_texts: Dict[str, str] = {}
        for record in records:
            if record.language_code == source:
                source_texts[record.field_name] = record.translated_text
            elif record.language_code == self.default_language:
                source_texts.setdefault(record.field_name, record.translated_text)
        if not source_texts:
            raise TranslationNotFoundError("No source translation found for re-translation")

        results = await self._translator.translate_batch(
            [FieldText(field_name, text) for field_name, text in source_texts.items()],
            targets,
            source,
        )
        fields_translated: List[str] = []
        for result in results:
            written = False
            for language_code, translated_text in result.translations.items():
                record = await self._repository.upsert_ai_translation(
                    metadata.id,
                    language_code,
                    result.field_name,
                    translated_text,
                    overwrite_manual=overwrite_manual,
                )
                written = written or record is not None
            if written:
                fields_translated.append(result.field_name)

        logger.info(
            "Re-translated %s:%s for languages: %s",
            entity_type,
            entity_id,
            ", ".join(targets),
            extra={"user_id": user_id, "overwrite_manual": overwrite_manual},
        )
        return RetranslateResponse(
            message="Translations regenerated successfully",
            target_languages=targets,
            fields_translated=fields_translated,
        )

    async def insert_translations_directly(
        self,
        entity_type: str,
        entity_id: str,
        field_name: str,
        text: str,
        *,
        source_language: Optional[str] = None,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Store seed data in every enabled language without calling the model.

        Known texts use their pre-translation; others are copied as-is.
        Failures are logged only.
        """

        source = source_language or self.default_language
        try:
            languages = [self.default_language]
            if tenant_id:
                languages = [language.code for language in await self._repository.get_tenant_languages(tenant_id)]
            metadata = await self._repository.create_or_get_metadata(entity_type, entity_id, source)
            for language_code in languages:
                await self._repository.upsert_translation(
                    metadata.id,
                    language_code,
                    field_name,
                    get_pre_translation(text, language_code) or text,
                    is_ai_generated=False,
                    last_updated_by=user_id if language_code == source else None,
                )
        except TranslationPersistenceError as exc:
            logger.error("Failed to insert direct translations for %s:%s: %s", entity_type, entity_id, exc)
            return
        logger.info("Inserted direct translations for %s:%s (%s)", entity_type, entity_id, field_name)

    async def bulk_insert_translations_directly(
        self,
        items: Sequence[SeedTranslation],
        tenant_id: Optional[str] = None,
    ) -> int:
        """Seed many entities at once without calling the model.

        Metadata is created in one statement and translation rows are written
        in chunks of ``BULK_INSERT_BATCH_SIZE``. A failing chunk is logged and
        the next one is still attempted. Returns the number of rows written.
        """

        if not items:
            return 0
        try:
            languages = [self.default_language]
            if tenant_id:
                languages = [language.code for language in await self._repository.get_tenant_languages(tenant_id)]
            metadata_ids = await self._repository.bulk_create_metadata(
                [(item.entity_type, item.entity_id) for item in items], self.default_language
            )
        except TranslationPersistenceError as exc:
            logger.error("Failed to bulk insert translation metadata: %s", exc)
            return 0

        rows: List[Dict[str, object]] = []
        for item in items:
            metadata_id = metadata_ids.get((item.entity_type, item.entity_id))
            if metadata_id is None:
                continue
            for language_code in languages:
                rows.append(
                    {
                        "metadata_id": metadata_id,
                        "language_code": language_code,
                        "field_name": item.field_name,
                        "translated_text": get_pre_translation(item.text, language_code) or item.text,
                        "is_ai_generated": False,
                        "last_updated_by": None,
                    }
                )

        written = 0
        for start in range(0, len(rows), BULK_INSERT_BATCH_SIZE):
            batch_number = start // BULK_INSERT_BATCH_SIZE + 1
            try:
                written += await self._repository.bulk_upsert_translations(
                    rows[start : start + BULK_INSERT_BATCH_SIZE]
                )
            except TranslationPersistenceError as exc:
                logger.error("Failed to bulk insert translations batch %s: %s", batch_number, exc)
        logger.info("Bulk inserted %s translations for %s entities", written, len(metadata_ids))
        return written

    # ------------------------------------------------------------------
    # Language catalog and tenant languages
    # ------------------------------------------------------------------

    async def get_supported_languages(self, active_only: bool = True) -> List[SupportedLanguage]:
        return await self._repository.get_supported_languages(active_only=active_only)

    async def get_default_language(self) -> Optional[SupportedLanguage]:
        return await self._repository.get_default_language()

    async def create_language(
        self,
        code: str,
        name: str,
        native_name: str,
        *,
        rtl: bool = False,
        is_default: bool = False,
    ) -> SupportedLanguage:
        try:
            language = await self._repository.create_language(
                code, name, native_name, rtl=rtl, is_default=is_default
            )
        except DuplicateLanguageError as exc:
            raise LanguageCatalogError(str(exc)) from exc
        logger.info("Created language %s", code)
        return language

    async def update_language(self, code: str, **updates: Optional[object]) -> SupportedLanguage:
        try:
            language = await self._repository.update_language(code, updates)
        except DefaultLanguageError as exc:
            raise LanguageCatalogError(str(exc)) from exc
        if language is None:
            raise TranslationNotFoundError(f"Language {code} not found")
        return language

    async def delete_language(self, code: str) -> None:
        try:
            deleted = await self._repository.delete_language(code)
        except DefaultLanguageError as exc:
            raise LanguageCatalogError(str(exc)) from exc
        if not deleted:
            raise TranslationNotFoundError(f"Language {code} not found")
        logger.info("Deactivated language %s", code)

    async def get_tenant_languages(self, tenant_id: str) -> List[SupportedLanguage]:
        return await self._repository.get_tenant_languages(tenant_id)

    async def get_available_languages_for_tenant(self, tenant_id: str) -> List[SupportedLanguage]:
        return await self._repository.get_available_languages_for_tenant(tenant_id)

    async def enable_language_for_tenant(
        self,
        tenant_id: str,
        language_code: str,
        user_id: Optional[str] = None,
    ) -> MessageResponse:
        """Enable a language and translate the tenant's existing data in the background."""

        language = await self._repository.get_language(language_code)
        if language is None or not language.is_active:
            raise LanguageCatalogError(f"Language {language_code} is not supported")

        newly_enabled = await self._repository.enable_language_for_tenant(tenant_id, language.code)
        logger.info(
            "Enabled language %s for tenant %s",
            language.code,
            tenant_id,
            extra={"newly_enabled": newly_enabled, "user_id": user_id},
        )
        self._backfill.schedule(tenant_id, language.code)
        return MessageResponse(
            message=(
                f"Language {language.code} enabled successfully. Translations are being processed "
                "in the background and may take a while to complete."
            )
        )

    def get_backfill_progress(self, tenant_id: str, language_code: str) -> Optional[BackfillProgress]:
        return self._backfill.get_progress(tenant_id, language_code)

    async def shutdown(self) -> None:
        await self._backfill.shutdown()

    # ------------------------------------------------------------------
    # Cache operability
    # ------------------------------------------------------------------

    def cache_stats(self) -> CacheStatsResponse:
        return CacheStatsResponse(**self._cache.stats())

    def clear_expired_cache(self) -> int:
        return self._cache.clear_expired()


def build_translation_service() -> TranslationService:
    """Wire the service against the configured Supabase project and OpenAI account."""

    client = get_supabase_client()
    cache = TranslationCache()
    gateway = LanguageModelGateway.from_environment()
    repository = SupabaseTranslationRepository(client)
    translator = BatchTranslator(gateway, cache)
    detector = LanguageDetector(gateway)
    backfill = TranslationBackfillWorker(repository, translator, SupabaseEntityCatalog(client))
    return TranslationService(repository, translator, detector, backfill, cache)


__all__ = [
    "TranslationService",
    "TranslationServiceError",
    "InvalidTargetLanguagesError",
    "TranslationNotFoundError",
    "LanguageCatalogError",
    "SeedTranslation",
    "build_translation_service",
]
