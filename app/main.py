"""FastAPI application exposing the translation service of the back-office."""

import logging
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI

from app.api.routes.translations import router as translations_router
from app.config.supabase_client import get_supabase_client
from app.services.translation_service import build_translation_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "translation_service", None) is None:
        app.state.translation_service = build_translation_service()
    if get_supabase_client() is None:
        logger.warning("Supabase is not configured; translation endpoints will answer 503.")
    yield
    service = getattr(app.state, "translation_service", None)
    if service is not None:
        await service.shutdown()


app = FastAPI(title="Restaurant Translations", lifespan=lifespan)

app.include_router(translations_router)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="127.0.0.1", port=8000, reload=True)
