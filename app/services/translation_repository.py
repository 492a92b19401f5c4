"""Supabase persistence for translations, the language catalog and tenant languages."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError

from app.config.supabase_client import get_supabase_client
from app.schemas import SupportedLanguage, TranslationMetadata, TranslationRecord
from app.services.postgrest_client import first_row, is_unique_violation, postgrest_status

logger = logging.getLogger(__name__)
T = TypeVar("T")

METADATA_TABLE = "translation_metadata"
TRANSLATIONS_TABLE = "translations"
LANGUAGES_TABLE = "supported_languages"
TENANT_LANGUAGES_TABLE = "tenant_languages"

METADATA_CONFLICT_KEY = "entity_type,entity_id"
TRANSLATION_CONFLICT_KEY = "metadata_id,language_code,field_name"
TENANT_LANGUAGE_CONFLICT_KEY = "tenant_id,language_code"


class TranslationPersistenceError(Exception):
    """A read or write against the database failed. Safe to retry later."""

    retryable = True


class DefaultLanguageError(Exception):
    """Raised when a change would leave the catalog without an active default language."""


class DuplicateLanguageError(Exception):
    """Raised when a language code already exists in the catalog."""


async def run_supabase_query(
    client: Any,
    request: Callable[[Any], T],
    *,
    context: str,
    retries: int = 2,
    backoff_seconds: Sequence[float] = (0.2, 0.5, 1.0),
) -> T:
    """Run a blocking Supabase query on a worker thread.

    Transport errors get a short retry/backoff; API errors are not retried.
    Both end up as ``TranslationPersistenceError``.
    """

    if client is None:
        raise TranslationPersistenceError("Supabase client is not configured.")

    attempts = retries + 1
    for attempt in range(1, attempts + 1):
        start = time.monotonic()
        try:
            return await asyncio.to_thread(request, client)
        except PostgrestAPIError as exc:
            detail = exc.message or "Supabase API error"
            logger.error("%s failed (%s): %s", context, postgrest_status(exc), detail)
            raise TranslationPersistenceError(f"{context} failed: {detail}") from exc
        except HttpxError as exc:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Supabase call failed",
                extra={
                    "label": context,
                    "attempt": attempt,
                    "duration_ms": round(duration_ms, 2),
                    "error": str(exc),
                },
            )
            if attempt >= attempts:
                raise TranslationPersistenceError("Supabase unreachable.") from exc
            await asyncio.sleep(backoff_seconds[min(attempt - 1, len(backoff_seconds) - 1)])
    raise TranslationPersistenceError("Supabase unreachable.")


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fetch_metadata_row(client: Any, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
    response = (
        client.table(METADATA_TABLE)
        .select("*")
        .eq("entity_type", entity_type)
        .eq("entity_id", entity_id)
        .limit(1)
        .execute()
    )
    return first_row(response)


def _fetch_language_row(client: Any, code: str) -> Optional[Dict[str, Any]]:
    return first_row(client.table(LANGUAGES_TABLE).select("*").eq("code", code).limit(1).execute())


def _clear_other_defaults(client: Any, code: str) -> None:
    (
        client.table(LANGUAGES_TABLE)
        .update({"is_default": False})
        .eq("is_default", True)
        .neq("code", code)
        .execute()
    )


def _fetch_translation_row(
    client: Any, metadata_id: str, language_code: str, field_name: str
) -> Optional[Dict[str, Any]]:
    response = (
        client.table(TRANSLATIONS_TABLE)
        .select("*")
        .eq("metadata_id", metadata_id)
        .eq("language_code", language_code)
        .eq("field_name", field_name)
        .limit(1)
        .execute()
    )
    return first_row(response)


def _upsert_translation_row(
    client: Any,
    metadata_id: str,
    language_code: str,
    field_name: str,
    translated_text: str,
    is_ai_generated: bool,
    last_updated_by: Optional[str],
) -> Dict[str, Any]:
    payload = {
        "metadata_id": metadata_id,
        "language_code": language_code,
        "field_name": field_name,
        "translated_text": translated_text,
        "is_ai_generated": is_ai_generated,
        "last_updated_by": last_updated_by,
        "updated_at": _utcnow_iso(),
    }
    response = (
        client.table(TRANSLATIONS_TABLE)
        .upsert(payload, on_conflict=TRANSLATION_CONFLICT_KEY)
        .execute()
    )
    row = first_row(response)
    if row is None:
        raise TranslationPersistenceError("Translation upsert returned no row.")
    return row


class SupabaseTranslationRepository:
    """Repository over the translation tables of the back-office database."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @classmethod
    def from_environment(cls) -> "SupabaseTranslationRepository":
        return cls(get_supabase_client())

    @property
    def client(self) -> Any:
        return self._client

    async def _run(self, request: Callable[[Any], T], *, context: str) -> T:
        return await run_supabase_query(self._client, request, context=context)

    # ------------------------------------------------------------------
    # Language catalog
    # ------------------------------------------------------------------

    async def get_supported_languages(self, active_only: bool = True) -> List[SupportedLanguage]:
        def _request(client: Any) -> List[Dict[str, Any]]:
            query = client.table(LANGUAGES_TABLE).select("*")
            if active_only:
                query = query.eq("is_active", True)
            return query.order("code").execute().data or []

        rows = await self._run(_request, context="fetch supported languages")
        return [SupportedLanguage.model_validate(row) for row in rows]

    async def get_language(self, code: str) -> Optional[SupportedLanguage]:
        row = await self._run(lambda client: _fetch_language_row(client, code), context="fetch language")
        return SupportedLanguage.model_validate(row) if row else None

    async def get_default_language(self) -> Optional[SupportedLanguage]:
        def _request(client: Any) -> Optional[Dict[str, Any]]:
            response = (
                client.table(LANGUAGES_TABLE)
                .select("*")
                .eq("is_default", True)
                .eq("is_active", True)
                .limit(1)
                .execute()
            )
            return first_row(response)

        row = await self._run(_request, context="fetch default language")
        return SupportedLanguage.model_validate(row) if row else None

    async def create_language(
        self,
        code: str,
        name: str,
        native_name: str,
        *,
        rtl: bool = False,
        is_default: bool = False,
    ) -> SupportedLanguage:
        def _request(client: Any) -> Optional[Dict[str, Any]]:
            if _fetch_language_row(client, code) is not None:
                raise DuplicateLanguageError(f"Language with code '{code}' already exists")
            response = (
                client.table(LANGUAGES_TABLE)
                .insert(
                    {
                        "code": code,
                        "name": name,
                        "native_name": native_name,
                        "rtl": rtl,
                        "is_default": is_default,
                        "is_active": True,
                    }
                )
                .execute()
            )
            if is_default:
                _clear_other_defaults(client, code)
            return first_row(response)

        try:
            row = await self._run(_request, context="create language")
        except TranslationPersistenceError as exc:
            cause = exc.__cause__
            if isinstance(cause, PostgrestAPIError) and is_unique_violation(cause):
                raise DuplicateLanguageError(f"Language with code '{code}' already exists") from cause
            raise
        if row is None:
            raise TranslationPersistenceError("Language insert returned no row.")
        return SupportedLanguage.model_validate(row)

    async def update_language(self, code: str, updates: Dict[str, Any]) -> Optional[SupportedLanguage]:
        """Apply ``updates`` to a language. Returns None when the code is unknown.

        The default language can be replaced by promoting another one, but
        never deactivated or demoted on its own.
        """

        changes = {key: value for key, value in updates.items() if value is not None}

        def _request(client: Any) -> Optional[Dict[str, Any]]:
            current = _fetch_language_row(client, code)
            if current is None or not changes:
                return current
            if current.get("is_default") and (
                changes.get("is_active") is False or changes.get("is_default") is False
            ):
                raise DefaultLanguageError("Cannot deactivate or unset the default language")
            becomes_default = changes.get("is_default", current.get("is_default"))
            stays_active = changes.get("is_active", current.get("is_active", True))
            if becomes_default and not stays_active:
                raise DefaultLanguageError("The default language must be active")
            row = first_row(client.table(LANGUAGES_TABLE).update(changes).eq("code", code).execute())
            if changes.get("is_default"):
                _clear_other_defaults(client, code)
            return row

        row = await self._run(_request, context="update language")
        return SupportedLanguage.model_validate(row) if row else None

    async def delete_language(self, code: str) -> bool:
        """Soft delete a language. Returns False when the code is unknown."""

        def _request(client: Any) -> bool:
            current = first_row(
                client.table(LANGUAGES_TABLE).select("code,is_default").eq("code", code).limit(1).execute()
            )
            if current is None:
                return False
            if current.get("is_default"):
                raise DefaultLanguageError("Cannot delete the default language")
            client.table(LANGUAGES_TABLE).update({"is_active": False}).eq("code", code).execute()
            return True

        return await self._run(_request, context="delete language")

    # ------------------------------------------------------------------
    # Tenant languages
    # ------------------------------------------------------------------

    async def get_tenant_languages(self, tenant_id: str) -> List[SupportedLanguage]:
        def _request(client: Any) -> List[Dict[str, Any]]:
            enabled = (
                client.table(TENANT_LANGUAGES_TABLE)
                .select("language_code")
                .eq("tenant_id", tenant_id)
                .execute()
            ).data or []
            codes = sorted({row["language_code"] for row in enabled if row.get("language_code")})
            if not codes:
                return []
            return (
                client.table(LANGUAGES_TABLE)
                .select("*")
                .in_("code", codes)
                .eq("is_active", True)
                .order("code")
                .execute()
            ).data or []

        rows = await self._run(_request, context="fetch tenant languages")
        return [SupportedLanguage.model_validate(row) for row in rows]

    async def get_available_languages_for_tenant(self, tenant_id: str) -> List[SupportedLanguage]:
        enabled = {language.code for language in await self.get_tenant_languages(tenant_id)}
        return [
            language
            for language in await self.get_supported_languages(active_only=True)
            if language.code not in enabled
        ]

    async def enable_language_for_tenant(self, tenant_id: str, language_code: str) -> bool:
        """Enable a language for a tenant. Returns True when it was not enabled yet."""

        def _request(client: Any) -> bool:
            existing = first_row(
                client.table(TENANT_LANGUAGES_TABLE)
                .select("id")
                .eq("tenant_id", tenant_id)
                .eq("language_code", language_code)
                .limit(1)
                .execute()
            )
            if existing is not None:
                return False
            (
                client.table(TENANT_LANGUAGES_TABLE)
                .upsert(
                    {"tenant_id": tenant_id, "language_code": language_code},
                    on_conflict=TENANT_LANGUAGE_CONFLICT_KEY,
                    ignore_duplicates=True,
                )
                .execute()
            )
            return True

        return await self._run(_request, context="enable tenant language")

    # ------------------------------------------------------------------
    # Metadata and translations
    # ------------------------------------------------------------------

    async def get_translation_metadata(self, entity_type: str, entity_id: str) -> Optional[TranslationMetadata]:
        row = await self._run(
            lambda client: _fetch_metadata_row(client, entity_type, entity_id),
            context="get translation metadata",
        )
        return TranslationMetadata.model_validate(row) if row else None

    async def create_or_get_metadata(
        self, entity_type: str, entity_id: str, source_language: str
    ) -> TranslationMetadata:
        """Return the entity's metadata row, creating it on first use.

        The source language is only recorded on creation.
        """

        def _request(client: Any) -> Dict[str, Any]:
            existing = _fetch_metadata_row(client, entity_type, entity_id)
            if existing is not None:
                return existing
            (
                client.table(METADATA_TABLE)
                .upsert(
                    {
                        "entity_type": entity_type,
                        "entity_id": entity_id,
                        "source_language": source_language,
                    },
                    on_conflict=METADATA_CONFLICT_KEY,
                    ignore_duplicates=True,
                )
                .execute()
            )
            created = _fetch_metadata_row(client, entity_type, entity_id)
            if created is None:
                raise TranslationPersistenceError("Translation metadata could not be created.")
            return created

        row = await self._run(_request, context="create translation metadata")
        return TranslationMetadata.model_validate(row)

    async def upsert_translation(
        self,
        metadata_id: str,
        language_code: str,
        field_name: str,
        translated_text: str,
        is_ai_generated: bool = True,
        last_updated_by: Optional[str] = None,
    ) -> TranslationRecord:
        row = await self._run(
            lambda client: _upsert_translation_row(
                client,
                metadata_id,
                language_code,
                field_name,
                translated_text,
                is_ai_generated,
                last_updated_by,
            ),
            context="save translation",
        )
        return TranslationRecord.model_validate(row)

    async def upsert_ai_translation(
        self,
        metadata_id: str,
        language_code: str,
        field_name: str,
        translated_text: str,
        *,
        overwrite_manual: bool = False,
    ) -> Optional[TranslationRecord]:
        """Write a model translation unless a manual edit already holds the key.

        The current row is re-read right before the write, so an edit made
        while the model call was in flight is kept. Returns None when skipped.
        """

        def _request(client: Any) -> Optional[Dict[str, Any]]:
            current = _fetch_translation_row(client, metadata_id, language_code, field_name)
            if current is not None and not current.get("is_ai_generated", True) and not overwrite_manual:
                return None
            return _upsert_translation_row(
                client, metadata_id, language_code, field_name, translated_text, True, None
            )

        row = await self._run(_request, context="save AI translation")
        if row is None:
            logger.info(
                "Kept manual translation",
                extra={"metadata_id": metadata_id, "language_code": language_code, "field_name": field_name},
            )
            return None
        return TranslationRecord.model_validate(row)

    async def get_translation(
        self,
        entity_type: str,
        entity_id: str,
        language_code: str,
        field_name: str,
        fallback_language: str = "en",
    ) -> Optional[str]:
        """Return the text in ``language_code``, else in ``fallback_language``, else None."""

        def _request(client: Any) -> Optional[str]:
            metadata = _fetch_metadata_row(client, entity_type, entity_id)
            if metadata is None:
                return None
            for language in dict.fromkeys([language_code, fallback_language]):
                row = _fetch_translation_row(client, metadata["id"], language, field_name)
                if row is not None:
                    return row.get("translated_text")
            return None

        return await self._run(_request, context="get translation")

    async def get_entity_translations(self, entity_type: str, entity_id: str) -> List[TranslationRecord]:
        def _request(client: Any) -> List[Dict[str, Any]]:
            metadata = _fetch_metadata_row(client, entity_type, entity_id)
            if metadata is None:
                return []
            return (
                client.table(TRANSLATIONS_TABLE)
                .select("*")
                .eq("metadata_id", metadata["id"])
                .order("language_code")
                .execute()
            ).data or []

        rows = await self._run(_request, context="fetch entity translations")
        return [TranslationRecord.model_validate(row) for row in rows]

    async def delete_entity_translations(self, entity_type: str, entity_id: str) -> None:
        """Delete the metadata row; its translations go with it (FK cascade)."""

        def _request(client: Any) -> None:
            (
                client.table(METADATA_TABLE)
                .delete()
                .eq("entity_type", entity_type)
                .eq("entity_id", entity_id)
                .execute()
            )

        await self._run(_request, context="delete translations")

    # ------------------------------------------------------------------
    # Bulk writes (seed data)
    # ------------------------------------------------------------------

    async def bulk_create_metadata(
        self, entities: Sequence[Tuple[str, str]], source_language: str
    ) -> Dict[Tuple[str, str], str]:
        """Create metadata for many entities and map each (type, id) to its metadata id.

        Entities that already have metadata keep their source language.
        """

        keys = list(dict.fromkeys(entities))
        if not keys:
            return {}

        def _request(client: Any) -> List[Dict[str, Any]]:
            (
                client.table(METADATA_TABLE)
                .upsert(
                    [
                        {"entity_type": entity_type, "entity_id": entity_id, "source_language": source_language}
                        for entity_type, entity_id in keys
                    ],
                    on_conflict=METADATA_CONFLICT_KEY,
                    ignore_duplicates=True,
                )
                .execute()
            )
            ids_by_type: Dict[str, List[str]] = {}
            for entity_type, entity_id in keys:
                ids_by_type.setdefault(entity_type, []).append(entity_id)
            rows: List[Dict[str, Any]] = []
            for entity_type, entity_ids in ids_by_type.items():
                rows.extend(
                    client.table(METADATA_TABLE)
                    .select("id,entity_type,entity_id")
                    .eq("entity_type", entity_type)
                    .in_("entity_id", entity_ids)
                    .execute()
                    .data
                    or []
                )
            return rows

        rows = await self._run(_request, context="bulk create translation metadata")
        return {(row["entity_type"], row["entity_id"]): row["id"] for row in rows}

    async def bulk_upsert_translations(self, rows: Sequence[Dict[str, Any]]) -> int:
        """Upsert prepared translation rows in a single statement. Returns the rows written."""

        if not rows:
            return 0
        now = _utcnow_iso()
        payload = [{**row, "updated_at": now} for row in rows]

        def _request(client: Any) -> List[Dict[str, Any]]:
            return (
                client.table(TRANSLATIONS_TABLE)
                .upsert(payload, on_conflict=TRANSLATION_CONFLICT_KEY)
                .execute()
            ).data or []

        return len(await self._run(_request, context="bulk save translations"))


__all__ = [
    "SupabaseTranslationRepository",
    "TranslationPersistenceError",
    "DefaultLanguageError",
    "DuplicateLanguageError",
    "run_supabase_query",
]
