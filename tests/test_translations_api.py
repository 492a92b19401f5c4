import base64
import json
import threading
import time

import pytest
from fastapi.testclient import TestClient
from postgrest import APIError as PostgrestAPIError

from app.api.dependencies import get_translation_service
from app.main import app
from app.services.llm_gateway import ModelError
from conftest import FakeOpenAI, dictionary_responder

ENTITY_ID = "3f2a1b4c-5d6e-4f70-8a9b-0c1d2e3f4a5b"
TENANT_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"


def _bearer(sub: str) -> str:
    payload = base64.urlsafe_b64encode(json.dumps({"sub": sub}).encode("utf-8")).decode("ascii").rstrip("=")
    return f"Bearer header.{payload}.signature"


@pytest.fixture(name="service")
def service_fixture(make_service):
    return make_service(FakeOpenAI(dictionary_responder({"Lunch": {"fr": "Déjeuner", "ar": "الغداء"}})))


@pytest.fixture(name="api_client")
def client_fixture(service):
    app.state.translation_service = service
    app.dependency_overrides[get_translation_service] = lambda: service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    app.state.translation_service = None


def test_health(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}


def test_create_translations(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/translations",
        json={
            "entity_type": "menu",
            "entity_id": ENTITY_ID,
            "field_name": "name",
            "text": "Lunch",
            "source_language": "EN",
            "target_languages": ["fr", "ar"],
        },
    )

    assert response.status_code == 200
    assert response.json() == {
        "source_language": "en",
        "translations": {"en": "Lunch", "fr": "Déjeuner", "ar": "الغداء"},
    }


def test_unknown_entity_type_is_rejected(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/translations",
        json={"entity_type": "spaceship", "entity_id": ENTITY_ID, "field_name": "name", "text": "x"},
    )

    assert response.status_code == 422


def test_batch_translations_and_entity_view(api_client: TestClient) -> None:
    created = api_client.post(
        "/api/translations/batch",
        json={
            "entity_type": "menu",
            "entity_id": ENTITY_ID,
            "source_language": "en",
            "fields": [{"field_name": "name", "text": "Lunch"}, {"field_name": "description", "text": "Noon"}],
        },
    )
    entity = api_client.get(f"/api/translations/entity/menu/{ENTITY_ID}")

    assert created.status_code == 200
    assert created.json()["translations"]["name"]["fr"] == "Déjeuner"
    assert entity.json()["description"]["ku"] == "ku:Noon"


def test_manual_update_records_the_editor(api_client: TestClient, supabase) -> None:
    response = api_client.put(
        "/api/translations",
        headers={"Authorization": _bearer("user-42")},
        json={
            "entity_type": "menu",
            "entity_id": ENTITY_ID,
            "language_code": "fr",
            "field_name": "name",
            "translated_text": "Le déjeuner",
        },
    )

    assert response.status_code == 200
    assert response.json()["is_ai_generated"] is False
    assert response.json()["last_updated_by"] == "user-42"


def test_malformed_bearer_token_is_rejected(api_client: TestClient) -> None:
    response = api_client.put(
        "/api/translations",
        headers={"Authorization": "Bearer not-a-jwt"},
        json={
            "entity_type": "menu",
            "entity_id": ENTITY_ID,
            "language_code": "fr",
            "field_name": "name",
            "translated_text": "Le déjeuner",
        },
    )

    assert response.status_code == 401


def test_get_translation_with_fallback(api_client: TestClient) -> None:
    api_client.put(
        "/api/translations",
        json={
            "entity_type": "menu",
            "entity_id": ENTITY_ID,
            "language_code": "en",
            "field_name": "name",
            "translated_text": "Lunch",
        },
    )
    params = {"entityType": "menu", "entityId": ENTITY_ID, "fieldName": "name"}

    found = api_client.get("/api/translations/translate", params={**params, "languageCode": "fr"})
    missing = api_client.get(
        "/api/translations/translate", params={**params, "languageCode": "fr", "fallbackLanguage": "ar"}
    )

    assert found.json() == {"translation": "Lunch"}
    assert missing.json() == {"translation": None}


def test_delete_entity_translations(api_client: TestClient, supabase) -> None:
    api_client.post(
        "/api/translations",
        json={"entity_type": "menu", "entity_id": ENTITY_ID, "field_name": "name", "text": "Lunch", "source_language": "en"},
    )

    response = api_client.delete(f"/api/translations/entity/menu/{ENTITY_ID}")

    assert response.status_code == 200
    assert supabase.rows("translations") == []


def test_retranslate_error_mapping(api_client: TestClient) -> None:
    missing = api_client.post(
        "/api/translations/admin/retranslate", json={"entity_type": "menu", "entity_id": ENTITY_ID}
    )
    api_client.put(
        "/api/translations",
        json={
            "entity_type": "menu",
            "entity_id": ENTITY_ID,
            "language_code": "en",
            "field_name": "name",
            "translated_text": "Lunch",
        },
    )
    no_targets = api_client.post(
        "/api/translations/admin/retranslate",
        json={"entity_type": "menu", "entity_id": ENTITY_ID, "target_languages": ["en"]},
    )
    regenerated = api_client.post(
        "/api/translations/admin/retranslate",
        json={"entity_type": "menu", "entity_id": ENTITY_ID, "target_languages": ["fr"]},
    )

    assert missing.status_code == 404
    assert no_targets.status_code == 400
    assert regenerated.json()["fields_translated"] == ["name"]


def test_persistence_failure_is_503(api_client: TestClient, supabase) -> None:
    supabase.failures["translation_metadata"] = PostgrestAPIError({"message": "down", "code": "500"})

    response = api_client.get(f"/api/translations/entity/menu/{ENTITY_ID}")

    assert response.status_code == 503


def test_overloaded_model_is_503() -> None:
    class OverloadedService:
        async def get_entity_translations(self, entity_type, entity_id):
            raise ModelError("Model is overloaded. Please try again later.", kind="overloaded")

    app.dependency_overrides[get_translation_service] = lambda: OverloadedService()
    try:
        client = TestClient(app)
        response = client.get(f"/api/translations/entity/menu/{ENTITY_ID}")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503


def test_language_admin_endpoints(api_client: TestClient) -> None:
    created = api_client.post(
        "/api/translations/admin/languages",
        json={"code": "ES", "name": "Spanish", "native_name": "Español"},
    )
    duplicate = api_client.post(
        "/api/translations/admin/languages",
        json={"code": "fr", "name": "French", "native_name": "Français"},
    )
    updated = api_client.put("/api/translations/admin/languages/es", json={"name": "Castilian"})
    default_delete = api_client.delete("/api/translations/admin/languages/en")
    unknown_update = api_client.put("/api/translations/admin/languages/xx", json={"name": "?"})
    all_languages = api_client.get("/api/translations/admin/languages")
    default = api_client.get("/api/translations/languages/default")

    assert created.status_code == 201
    assert created.json()["code"] == "es"
    assert duplicate.status_code == 400
    assert updated.json()["name"] == "Castilian"
    assert default_delete.status_code == 400
    assert unknown_update.status_code == 404
    assert "es" in [language["code"] for language in all_languages.json()]
    assert default.json()["code"] == "en"


def test_tenant_endpoints_require_a_valid_tenant(api_client: TestClient) -> None:
    assert api_client.get("/api/translations/tenant/languages").status_code == 401
    assert (
        api_client.get("/api/translations/tenant/languages", headers={"X-Tenant-Id": "not-a-uuid"}).status_code
        == 400
    )


def test_enable_language_runs_backfill_in_background(api_client: TestClient, supabase) -> None:
    supabase.seed("menus", {"id": "menu-1", "tenant_id": TENANT_ID, "name": "Lunch"})
    headers = {"X-Tenant-Id": TENANT_ID}

    response = api_client.post("/api/translations/tenant/languages/FR", headers=headers)

    assert response.status_code == 202
    assert "fr" in response.json()["message"]

    status = None
    for _ in range(50):
        status = api_client.get("/api/translations/tenant/languages/fr/backfill", headers=headers).json()
        if status["status"] in ("completed", "failed"):
            break
        time.sleep(0.05)

    assert status["status"] == "completed"
    assert status["entities_translated"] == 1
    enabled = api_client.get("/api/translations/tenant/languages", headers=headers).json()
    available = api_client.get("/api/translations/tenant/languages/available", headers=headers).json()
    assert [language["code"] for language in enabled] == ["fr"]
    assert "fr" not in [language["code"] for language in available]


def test_unknown_backfill_is_404(api_client: TestClient) -> None:
    response = api_client.get("/api/translations/tenant/languages/ku/backfill", headers={"X-Tenant-Id": TENANT_ID})

    assert response.status_code == 404


def test_cache_endpoints(api_client: TestClient) -> None:
    stats = api_client.get("/api/translations/cache/stats").json()
    cleared = api_client.post("/api/translations/cache/clear").json()

    assert stats == {"size": 0, "max_size": 100, "ttl_hours": 1.0}
    assert cleared == {"message": "Cleared 0 expired cache entries"}


def test_shutdown_cancels_running_backfills(make_service, supabase) -> None:
    supabase.seed("menus", {"id": "menu-1", "tenant_id": TENANT_ID, "name": "Lunch"})
    started, release = threading.Event(), threading.Event()
    cooperative = dictionary_responder()

    def _respond(model: str, prompt: str) -> str:
        started.set()
        release.wait(5)
        return cooperative(model, prompt)

    service = make_service(FakeOpenAI(_respond))
    stop_backfills = service.shutdown

    async def _shutdown() -> None:
        await stop_backfills()
        release.set()

    service.shutdown = _shutdown
    app.state.translation_service = service
    app.dependency_overrides[get_translation_service] = lambda: service
    try:
        with TestClient(app) as client:
            response = client.post("/api/translations/tenant/languages/fr", headers={"X-Tenant-Id": TENANT_ID})
            assert response.status_code == 202
            assert started.wait(5)
    finally:
        release.set()
        app.dependency_overrides.clear()
        app.state.translation_service = None

    progress = service.get_backfill_progress(TENANT_ID, "fr")
    assert progress.status == "failed"
    assert "Backfill was cancelled" in progress.errors
    assert supabase.find("translations", {"language_code": "fr"}) is None
