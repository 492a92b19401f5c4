"""Backfill translations for entities that existed before translations were enabled.

Usage:
    python -m app.scripts.backfill_translations [--tenant-id UUID] [--entity-type TYPE]
        [--language CODE ...] [--dry-run] [--skip-ai]

Without ``--language`` every language enabled for the tenant (other than the
default) is backfilled. ``--skip-ai`` only stores the existing column values
as default-language source rows.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional, Sequence

from app.config.supabase_client import get_supabase_client
from app.services.batch_translator import BatchTranslator
from app.services.llm_gateway import LanguageModelGateway
from app.services.translation_backfill import (
    ENTITY_SOURCES,
    BackfillProgress,
    SupabaseEntityCatalog,
    TranslationBackfillWorker,
)
from app.services.translation_cache import TranslationCache
from app.services.translation_repository import SupabaseTranslationRepository

logger = logging.getLogger(__name__)


async def backfill_translations(
    worker: TranslationBackfillWorker,
    repository: SupabaseTranslationRepository,
    catalog: SupabaseEntityCatalog,
    *,
    tenant_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    languages: Optional[Sequence[str]] = None,
    dry_run: bool = False,
    skip_ai: bool = False,
) -> List[BackfillProgress]:
    """Run the backfill for one tenant, or for every tenant, and return each run's progress."""

    tenant_ids = [tenant_id] if tenant_id else await catalog.list_tenant_ids()
    entity_types = [entity_type] if entity_type else None
    results: List[BackfillProgress] = []
    for tenant in tenant_ids:
        if skip_ai:
            targets = [worker.default_language]
        elif languages:
            targets = list(languages)
        else:
            enabled = await repository.get_tenant_languages(tenant)
            targets = [language.code for language in enabled if language.code != worker.default_language]
        if not targets:
            logger.info("No languages to backfill for tenant %s", tenant)
            continue
        for language_code in targets:
            progress = await worker.run(
                tenant,
                language_code,
                entity_types=entity_types,
                dry_run=dry_run,
                skip_ai=skip_ai,
            )
            logger.info(
                "Tenant %s, %s: processed %s, skipped %s, errors %s",
                tenant,
                language_code,
                progress.entities_translated,
                progress.entities_skipped,
                progress.entities_failed,
            )
            results.append(progress)
    return results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backfill translations for existing entities.")
    parser.add_argument("--tenant-id", help="Process only this tenant.")
    parser.add_argument(
        "--entity-type",
        choices=[source.entity_type for source in ENTITY_SOURCES],
        help="Process only this entity type.",
    )
    parser.add_argument(
        "--language",
        action="append",
        dest="languages",
        help="Target language code (repeatable). Defaults to the tenant's enabled languages.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report what would be migrated without writing.")
    parser.add_argument("--skip-ai", action="store_true", help="Only migrate existing data, no model calls.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    client = get_supabase_client()
    if client is None:
        logger.error("Missing Supabase configuration. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY.")
        return 1
    gateway = LanguageModelGateway.from_environment()
    if not args.skip_ai and not gateway.is_configured:
        logger.error("Missing OPENAI_API_KEY. Set it in .env or use --skip-ai.")
        return 1

    repository = SupabaseTranslationRepository(client)
    catalog = SupabaseEntityCatalog(client)
    worker = TranslationBackfillWorker(repository, BatchTranslator(gateway, TranslationCache()), catalog)
    results = asyncio.run(
        backfill_translations(
            worker,
            repository,
            catalog,
            tenant_id=args.tenant_id,
            entity_type=args.entity_type,
            languages=[code.strip().lower() for code in args.languages or []],
            dry_run=args.dry_run,
            skip_ai=args.skip_ai,
        )
    )
    failed = sum(progress.entities_failed for progress in results)
    logger.info(
        "Summary: processed %s, skipped %s, errors %s",
        sum(progress.entities_translated for progress in results),
        sum(progress.entities_skipped for progress in results),
        failed,
    )
    return 1 if failed or any(progress.status == "failed" for progress in results) else 0


if __name__ == "__main__":
    raise SystemExit(main())
