"""HTTP endpoints of the translation service."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import (
    get_current_tenant_id,
    get_current_user_id,
    get_translation_service,
    require_tenant_id,
)
from app.schemas import (
    BackfillStatusResponse,
    BatchTranslationCreatePayload,
    BatchTranslationsResponse,
    CacheStatsResponse,
    EntityType,
    FieldName,
    LanguageCreatePayload,
    LanguageUpdatePayload,
    MessageResponse,
    RetranslatePayload,
    RetranslateResponse,
    SingleTranslationResponse,
    SupportedLanguage,
    TranslationRecord,
    TranslationsResponse,
    TranslationCreatePayload,
    TranslationUpdatePayload,
)
from app.services.batch_translator import FieldText
from app.services.llm_gateway import ModelError
from app.services.translation_repository import TranslationPersistenceError
from app.services.translation_service import (
    InvalidTargetLanguagesError,
    LanguageCatalogError,
    TranslationNotFoundError,
    TranslationService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/translations", tags=["translations"])


@contextmanager
def translation_errors() -> Iterator[None]:
    """Convert translation domain errors into HTTP errors."""

    try:
        yield
    except (InvalidTargetLanguagesError, LanguageCatalogError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TranslationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TranslationPersistenceError as exc:
        logger.error("Translation persistence failed: %s", exc)
        raise HTTPException(status_code=503, detail="Supabase est temporairement inaccessible.") from exc
    except ModelError as exc:
        if not exc.retryable:
            raise
        raise HTTPException(
            status_code=503, detail="Le modèle de traduction est surchargé, réessayez plus tard."
        ) from exc


@router.post("", response_model=TranslationsResponse)
async def create_translations(
    payload: TranslationCreatePayload,
    service: TranslationService = Depends(get_translation_service),
    tenant_id: Optional[str] = Depends(get_current_tenant_id),
    user_id: Optional[str] = Depends(get_current_user_id),
) -> TranslationsResponse:
    with translation_errors():
        return await service.create_translations(
            payload.entity_type,
            str(payload.entity_id),
            payload.field_name,
            payload.text,
            source_language=payload.source_language,
            target_languages=payload.target_languages,
            tenant_id=tenant_id,
            user_id=user_id,
        )


@router.post("/batch", response_model=BatchTranslationsResponse)
async def create_batch_translations(
    payload: BatchTranslationCreatePayload,
    service: TranslationService = Depends(get_translation_service),
    tenant_id: Optional[str] = Depends(get_current_tenant_id),
    user_id: Optional[str] = Depends(get_current_user_id),
) -> BatchTranslationsResponse:
    with translation_errors():
        return await service.create_batch_translations(
            payload.entity_type,
            str(payload.entity_id),
            [FieldText(item.field_name, item.text) for item in payload.fields],
            source_language=payload.source_language,
            tenant_id=tenant_id,
            user_id=user_id,
        )


@router.put("", response_model=TranslationRecord)
async def update_translation(
    payload: TranslationUpdatePayload,
    service: TranslationService = Depends(get_translation_service),
    user_id: Optional[str] = Depends(get_current_user_id),
) -> TranslationRecord:
    with translation_errors():
        return await service.update_translation(
            payload.entity_type,
            str(payload.entity_id),
            payload.language_code,
            payload.field_name,
            payload.translated_text,
            user_id=user_id,
        )


@router.get("/entity/{entity_type}/{entity_id}", response_model=Dict[str, Dict[str, str]])
async def get_entity_translations(
    entity_type: EntityType,
    entity_id: str,
    service: TranslationService = Depends(get_translation_service),
) -> Dict[str, Dict[str, str]]:
    with translation_errors():
        return await service.get_entity_translations(entity_type, entity_id)


@router.delete("/entity/{entity_type}/{entity_id}", response_model=MessageResponse)
async def delete_entity_translations(
    entity_type: EntityType,
    entity_id: str,
    service: TranslationService = Depends(get_translation_service),
) -> MessageResponse:
    with translation_errors():
        await service.delete_entity_translations(entity_type, entity_id)
    return MessageResponse(message="Translations deleted successfully")


@router.get("/translate", response_model=SingleTranslationResponse)
async def get_translation(
    entity_type: EntityType = Query(..., alias="entityType"),
    entity_id: str = Query(..., alias="entityId"),
    language_code: str = Query(..., alias="languageCode"),
    field_name: FieldName = Query(..., alias="fieldName"),
    fallback_language: Optional[str] = Query(default=None, alias="fallbackLanguage"),
    service: TranslationService = Depends(get_translation_service),
) -> SingleTranslationResponse:
    with translation_errors():
        translation = await service.get_translation(
            entity_type, entity_id, language_code, field_name, fallback_language
        )
    return SingleTranslationResponse(translation=translation)


@router.get("/languages", response_model=List[SupportedLanguage])
async def get_supported_languages(
    active_only: bool = Query(default=True, alias="activeOnly"),
    service: TranslationService = Depends(get_translation_service),
) -> List[SupportedLanguage]:
    with translation_errors():
        return await service.get_supported_languages(active_only=active_only)


@router.get("/languages/default", response_model=SupportedLanguage)
async def get_default_language(
    service: TranslationService = Depends(get_translation_service),
) -> SupportedLanguage:
    with translation_errors():
        language = await service.get_default_language()
    if language is None:
        raise HTTPException(status_code=404, detail="Aucune langue par défaut configurée.")
    return language


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    service: TranslationService = Depends(get_translation_service),
) -> CacheStatsResponse:
    return service.cache_stats()


@router.post("/cache/clear", response_model=MessageResponse)
async def clear_expired_cache(
    service: TranslationService = Depends(get_translation_service),
) -> MessageResponse:
    removed = service.clear_expired_cache()
    return MessageResponse(message=f"Cleared {removed} expired cache entries")


@router.post("/admin/languages", response_model=SupportedLanguage, status_code=201)
async def create_language(
    payload: LanguageCreatePayload,
    service: TranslationService = Depends(get_translation_service),
) -> SupportedLanguage:
    with translation_errors():
        return await service.create_language(
            payload.code,
            payload.name,
            payload.native_name,
            rtl=payload.rtl,
            is_default=payload.is_default,
        )


@router.put("/admin/languages/{code}", response_model=SupportedLanguage)
async def update_language(
    code: str,
    payload: LanguageUpdatePayload,
    service: TranslationService = Depends(get_translation_service),
) -> SupportedLanguage:
    with translation_errors():
        return await service.update_language(code.lower(), **payload.model_dump(exclude_none=True))


@router.get("/admin/languages", response_model=List[SupportedLanguage])
async def get_all_languages(
    active_only: bool = Query(default=False, alias="activeOnly"),
    service: TranslationService = Depends(get_translation_service),
) -> List[SupportedLanguage]:
    with translation_errors():
        return await service.get_supported_languages(active_only=active_only)


@router.delete("/admin/languages/{code}", response_model=MessageResponse)
async def delete_language(
    code: str,
    service: TranslationService = Depends(get_translation_service),
) -> MessageResponse:
    with translation_errors():
        await service.delete_language(code.lower())
    return MessageResponse(message=f"Language {code.lower()} deactivated")


@router.post("/admin/retranslate", response_model=RetranslateResponse)
async def retranslate(
    payload: RetranslatePayload,
    service: TranslationService = Depends(get_translation_service),
    user_id: Optional[str] = Depends(get_current_user_id),
) -> RetranslateResponse:
    with translation_errors():
        return await service.retranslate(
            payload.entity_type,
            str(payload.entity_id),
            target_languages=payload.target_languages,
            user_id=user_id,
            overwrite_manual=payload.overwrite_manual,
        )


@router.get("/tenant/languages", response_model=List[SupportedLanguage])
async def get_tenant_languages(
    tenant_id: str = Depends(require_tenant_id),
    service: TranslationService = Depends(get_translation_service),
) -> List[SupportedLanguage]:
    with translation_errors():
        return await service.get_tenant_languages(tenant_id)


@router.get("/tenant/languages/available", response_model=List[SupportedLanguage])
async def get_available_languages(
    tenant_id: str = Depends(require_tenant_id),
    service: TranslationService = Depends(get_translation_service),
) -> List[SupportedLanguage]:
    with translation_errors():
        return await service.get_available_languages_for_tenant(tenant_id)


@router.post("/tenant/languages/{code}", response_model=MessageResponse, status_code=202)
async def enable_language_for_tenant(
    code: str,
    tenant_id: str = Depends(require_tenant_id),
    user_id: Optional[str] = Depends(get_current_user_id),
    service: TranslationService = Depends(get_translation_service),
) -> MessageResponse:
    with translation_errors():
        return await service.enable_language_for_tenant(tenant_id, code.lower(), user_id=user_id)


@router.get("/tenant/languages/{code}/backfill", response_model=BackfillStatusResponse)
async def get_backfill_status(
    code: str,
    tenant_id: str = Depends(require_tenant_id),
    service: TranslationService = Depends(get_translation_service),
) -> BackfillStatusResponse:
    progress = service.get_backfill_progress(tenant_id, code.lower())
    if progress is None:
        raise HTTPException(status_code=404, detail="Aucune traduction en arrière-plan pour cette langue.")
    return BackfillStatusResponse(
        tenant_id=progress.tenant_id,
        language_code=progress.language_code,
        status=progress.status,
        entities_seen=progress.entities_seen,
        entities_translated=progress.entities_translated,
        entities_skipped=progress.entities_skipped,
        entities_failed=progress.entities_failed,
        errors=list(progress.errors),
        started_at=progress.started_at,
        finished_at=progress.finished_at,
    )
