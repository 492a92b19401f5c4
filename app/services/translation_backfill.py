"""Background translation of existing entities after a tenant enables a language.

Enabling a language returns immediately; the work happens in an asyncio task
owned by :class:`TranslationBackfillWorker`, which keeps a progress record per
(tenant, language) that callers can poll or await.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from app.services.batch_translator import BatchTranslator, FieldText
from app.services.language_detection import DEFAULT_LANGUAGE_CODE
from app.services.postgrest_client import first_row
from app.services.translation_repository import (
    SupabaseTranslationRepository,
    TranslationPersistenceError,
    run_supabase_query,
)

logger = logging.getLogger(__name__)

BACKFILL_CONCURRENCY = int(os.getenv("TRANSLATION_BACKFILL_CONCURRENCY", "4"))
MAX_RECORDED_ERRORS = 20
TENANTS_TABLE = "tenants"

Ownership = Literal["tenant", "parent", "self"]
BackfillStatus = Literal["pending", "running", "completed", "failed"]


@dataclass(frozen=True)
class EntitySource:
    """Where the raw translatable columns of one entity type live."""

    entity_type: str
    table: str
    columns: Tuple[str, ...]
    ownership: Ownership = "tenant"
    parent_table: Optional[str] = None
    parent_key: Optional[str] = None


ENTITY_SOURCES: Tuple[EntitySource, ...] = (
    EntitySource("category", "categories", ("name", "description")),
    EntitySource("food_item", "food_items", ("name", "description")),
    EntitySource("addon_group", "add_on_groups", ("name",)),
    EntitySource("addon", "add_ons", ("name",), "parent", "add_on_groups", "add_on_group_id"),
    EntitySource("variation_group", "variation_groups", ("name",)),
    EntitySource("variation", "variations", ("name",), "parent", "variation_groups", "variation_group_id"),
    EntitySource("buffet", "buffets", ("name", "description")),
    EntitySource("combo_meal", "combo_meals", ("name", "description")),
    EntitySource("menu", "menus", ("name",)),
    EntitySource("branch", "branches", ("name", "city", "address")),
    EntitySource("ingredient", "ingredients", ("name", "storage_location")),
    EntitySource("restaurant", TENANTS_TABLE, ("name",), "self"),
    EntitySource("employee", "users", ("name",)),
)


class SupabaseEntityCatalog:
    """Reads a tenant's raw entities for the backfill."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    async def list_entities(self, source: EntitySource, tenant_id: str) -> List[Dict[str, Any]]:
        columns = ",".join(("id",) + source.columns)

        def _request(client: Any) -> List[Dict[str, Any]]:
            table = client.table(source.table).select(columns)
            if source.ownership == "self":
                row = first_row(table.eq("id", tenant_id).limit(1).execute())
                return [row] if row else []
            if source.ownership == "parent":
                parents = (
                    client.table(source.parent_table)
                    .select("id")
                    .eq("tenant_id", tenant_id)
                    .execute()
                ).data or []
                parent_ids = [row["id"] for row in parents if row.get("id")]
                if not parent_ids:
                    return []
                return table.in_(source.parent_key, parent_ids).execute().data or []
            return table.eq("tenant_id", tenant_id).execute().data or []

        return await run_supabase_query(self._client, _request, context=f"list {source.table}")

    async def list_tenant_ids(self) -> List[str]:
        def _request(client: Any) -> List[Dict[str, Any]]:
            return client.table(TENANTS_TABLE).select("id").order("id").execute().data or []

        rows = await run_supabase_query(self._client, _request, context="list tenants")
        return [str(row["id"]) for row in rows if row.get("id")]


@dataclass
class BackfillProgress:
    tenant_id: str
    language_code: str
    status: BackfillStatus = "pending"
    entities_seen: int = 0
    entities_translated: int = 0
    entities_skipped: int = 0
    entities_failed: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def record_error(self, message: str) -> None:
        self.errors.append(message)
        if len(self.errors) > MAX_RECORDED_ERRORS:
            del self.errors[0]

    @property
    def done(self) -> bool:
        return self.status in ("completed", "failed")


class BackfillEntityError(Exception):
    """Raised when an entity could not be translated during a backfill."""


def _source_fields_from_rows(
    rows: Sequence[Any], source_language: Optional[str], default_language: str
) -> Tuple[str, Dict[str, str]]:
    """Pick the texts to translate from: source language, else default, else first."""

    by_language: Dict[str, Dict[str, str]] = {}
    for row in rows:
        by_language.setdefault(row.language_code, {})[row.field_name] = row.translated_text
    for language in (source_language, default_language):
        if language and language in by_language:
            return language, by_language[language]
    # Rows arrive ordered by language code.
    for language, fields in by_language.items():
        return language, fields
    return default_language, {}


class TranslationBackfillWorker:
    def __init__(
        self,
        repository: SupabaseTranslationRepository,
        translator: BatchTranslator,
        catalog: SupabaseEntityCatalog,
        *,
        sources: Sequence[EntitySource] = ENTITY_SOURCES,
        default_language: str = DEFAULT_LANGUAGE_CODE,
        concurrency: int = BACKFILL_CONCURRENCY,
    ) -> None:
        self._repository = repository
        self._translator = translator
        self._catalog = catalog
        self._sources = tuple(sources)
        self.default_language = default_language
        self._concurrency = max(1, concurrency)
        self._progress: Dict[Tuple[str, str], BackfillProgress] = {}
        self._tasks: Dict[Tuple[str, str], asyncio.Task] = {}

    def schedule(self, tenant_id: str, language_code: str) -> BackfillProgress:
        """Start a backfill in the background and return its progress record.

        A backfill already running for the same tenant and language is reused.
        """

        key = (tenant_id, language_code)
        running = self._tasks.get(key)
        if running is not None and not running.done():
            return self._progress[key]

        progress = BackfillProgress(tenant_id=tenant_id, language_code=language_code)
        self._progress[key] = progress
        task = asyncio.create_task(self.run(tenant_id, language_code, progress))
        self._tasks[key] = task
        task.add_done_callback(self._on_task_done)
        logger.info("Scheduled translation backfill", extra={"tenant_id": tenant_id, "language_code": language_code})
        return progress

    def get_progress(self, tenant_id: str, language_code: str) -> Optional[BackfillProgress]:
        return self._progress.get((tenant_id, language_code))

    async def wait(self, tenant_id: str, language_code: str) -> Optional[BackfillProgress]:
        task = self._tasks.get((tenant_id, language_code))
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.get_progress(tenant_id, language_code)

    async def shutdown(self) -> None:
        """Cancel the running backfills and wait until they have stopped."""

        running = {key: task for key, task in self._tasks.items() if not task.done()}
        for task in running.values():
            task.cancel()
        if running:
            logger.info("Cancelling %s running translation backfill(s)", len(running))
            await asyncio.gather(*running.values(), return_exceptions=True)
        for key in running:
            progress = self._progress.get(key)
            # A task cancelled before it started never ran its own bookkeeping.
            if progress is not None and not progress.done:
                progress.status = "failed"
                progress.finished_at = datetime.now(timezone.utc)
                progress.record_error("Backfill was cancelled")

    def _on_task_done(self, task: asyncio.Task) -> None:
        for key, known in list(self._tasks.items()):
            if known is task:
                del self._tasks[key]
        if task.cancelled():
            logger.warning("Translation backfill task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Translation backfill task crashed", exc_info=exc)

    async def run(
        self,
        tenant_id: str,
        language_code: str,
        progress: Optional[BackfillProgress] = None,
        *,
        entity_types: Optional[Sequence[str]] = None,
        dry_run: bool = False,
        skip_ai: bool = False,
    ) -> BackfillProgress:
        """Translate every entity of the tenant that has no row in ``language_code``.

        ``entity_types`` restricts the run to some entity types. With
        ``dry_run`` nothing is written and ``entities_translated`` counts the
        entities that would be processed. With ``skip_ai`` raw columns are
        stored as source rows but no model call is made.
        """

        if progress is None:
            progress = BackfillProgress(tenant_id=tenant_id, language_code=language_code)
            self._progress[(tenant_id, language_code)] = progress
        sources = [
            source for source in self._sources if entity_types is None or source.entity_type in entity_types
        ]
        progress.status = "running"
        progress.started_at = datetime.now(timezone.utc)
        logger.info("Starting translation of existing data to %s for tenant %s", language_code, tenant_id)

        semaphore = asyncio.Semaphore(self._concurrency)
        try:
            for source in sources:
                try:
                    entities = await self._catalog.list_entities(source, tenant_id)
                except TranslationPersistenceError as exc:
                    logger.warning("Failed to process entity type %s: %s", source.entity_type, exc)
                    progress.record_error(f"{source.entity_type}: {exc}")
                    continue

                async def _bounded(entity: Dict[str, Any], source: EntitySource = source) -> None:
                    async with semaphore:
                        await self._backfill_entity(
                            source, entity, language_code, progress, dry_run=dry_run, skip_ai=skip_ai
                        )

                await asyncio.gather(*(_bounded(entity) for entity in entities if entity.get("id")))
                logger.debug("Completed processing %s (%s entities)", source.entity_type, len(entities))
            progress.status = "completed"
        except Exception as exc:
            progress.status = "failed"
            progress.record_error(str(exc))
            raise
        finally:
            progress.finished_at = datetime.now(timezone.utc)
            if progress.status == "running":
                # Cancelled.
                progress.status = "failed"
                progress.record_error("Backfill was cancelled")

        logger.info(
            "Translation backfill finished",
            extra={
                "tenant_id": tenant_id,
                "language_code": language_code,
                "translated": progress.entities_translated,
                "skipped": progress.entities_skipped,
                "failed": progress.entities_failed,
                "dry_run": dry_run,
            },
        )
        return progress

    async def _backfill_entity(
        self,
        source: EntitySource,
        entity: Dict[str, Any],
        language_code: str,
        progress: BackfillProgress,
        *,
        dry_run: bool = False,
        skip_ai: bool = False,
    ) -> None:
        entity_id = str(entity["id"])
        progress.entities_seen += 1
        try:
            written = await self._translate_entity(
                source, entity_id, entity, language_code, dry_run=dry_run, skip_ai=skip_ai
            )
        except Exception as exc:
            progress.entities_failed += 1
            progress.record_error(f"{source.entity_type}:{entity_id}: {exc}")
            logger.warning(
                "Failed to translate %s:%s to %s: %s", source.entity_type, entity_id, language_code, exc
            )
            return
        if written:
            progress.entities_translated += 1
        else:
            progress.entities_skipped += 1

    async def _translate_entity(
        self,
        source: EntitySource,
        entity_id: str,
        entity: Dict[str, Any],
        language_code: str,
        *,
        dry_run: bool = False,
        skip_ai: bool = False,
    ) -> bool:
        existing = await self._repository.get_entity_translations(source.entity_type, entity_id)
        if any(row.language_code == language_code for row in existing):
            return False

        if existing:
            metadata = await self._repository.get_translation_metadata(source.entity_type, entity_id)
            source_language, fields = _source_fields_from_rows(
                existing,
                metadata.source_language if metadata else None,
                self.default_language,
            )
        else:
            source_language = self.default_language
            fields = {
                column: str(entity[column]).strip()
                for column in source.columns
                if entity.get(column) and str(entity[column]).strip()
            }
        migrate = not existing
        needs_model = not skip_ai and source_language != language_code
        if not fields or not (migrate or needs_model):
            return False
        if dry_run:
            logger.info("Dry run: would backfill %s:%s to %s", source.entity_type, entity_id, language_code)
            return True

        metadata = await self._repository.create_or_get_metadata(source.entity_type, entity_id, source_language)
        if migrate:
            for field_name, text in fields.items():
                await self._repository.upsert_translation(metadata.id, source_language, field_name, text, False)
        if not needs_model:
            return True

        results = await self._translator.translate_batch(
            [FieldText(field_name, text) for field_name, text in fields.items()],
            [language_code],
            source_language,
        )
        written = False
        for result in results:
            translated = result.translations.get(language_code)
            if not translated:
                continue
            record = await self._repository.upsert_ai_translation(
                metadata.id, language_code, result.field_name, translated
            )
            written = written or record is not None
        if not written:
            raise BackfillEntityError("no translation produced")
        return True


__all__ = [
    "BackfillEntityError",
    "BackfillProgress",
    "ENTITY_SOURCES",
    "EntitySource",
    "SupabaseEntityCatalog",
    "TranslationBackfillWorker",
]
