"""Shared fakes for the translation tests.

``FakeSupabase`` implements the subset of the supabase-py query builder used by
the repository and the backfill catalog, backed by plain dictionaries.
``FakeOpenAI`` answers chat completions through a responder function.
"""

from __future__ import annotations

import copy
import json
import re
import types
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from postgrest import APIError as PostgrestAPIError

from app.services.batch_translator import BatchTranslator
from app.services.language_detection import LanguageDetector
from app.services.llm_gateway import LanguageModelGateway
from app.services.translation_backfill import SupabaseEntityCatalog, TranslationBackfillWorker
from app.services.translation_cache import TranslationCache
from app.services.translation_repository import SupabaseTranslationRepository
from app.services.translation_service import TranslationService

UNIQUE_KEYS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "translation_metadata": (("entity_type", "entity_id"),),
    "translations": (("metadata_id", "language_code", "field_name"),),
    "supported_languages": (("code",),),
    "tenant_languages": (("tenant_id", "language_code"),),
}

CASCADES: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "translation_metadata": (("translations", "metadata_id"),),
}

DEFAULT_LANGUAGES = (
    {"code": "en", "name": "English", "native_name": "English", "rtl": False, "is_active": True, "is_default": True},
    {"code": "ar", "name": "Arabic", "native_name": "العربية", "rtl": True, "is_active": True, "is_default": False},
    {"code": "ku", "name": "Kurdish", "native_name": "کوردی", "rtl": True, "is_active": True, "is_default": False},
    {"code": "fr", "name": "French", "native_name": "Français", "rtl": False, "is_active": True, "is_default": False},
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self._db = db
        self._table = table
        self._operation = "select"
        self._columns = "*"
        self._filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._payload: Any = None
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._on_conflict: Optional[str] = None
        self._ignore_duplicates = False

    def select(self, columns: str = "*") -> "FakeQuery":
        self._columns = columns
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column: str, values: Sequence[Any]) -> "FakeQuery":
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self._order = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self._limit = count
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self._operation = "insert"
        self._payload = payload
        return self

    def upsert(self, payload: Any, on_conflict: Optional[str] = None, ignore_duplicates: bool = False) -> "FakeQuery":
        self._operation = "upsert"
        self._payload = payload
        self._on_conflict = on_conflict
        self._ignore_duplicates = ignore_duplicates
        return self

    def update(self, payload: Dict[str, Any]) -> "FakeQuery":
        self._operation = "update"
        self._payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self._operation = "delete"
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        return all(check(row) for check in self._filters)

    def _project(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if self._columns.strip() == "*":
            return copy.deepcopy(row)
        columns = [column.strip() for column in self._columns.split(",")]
        return {column: copy.deepcopy(row.get(column)) for column in columns}

    def execute(self) -> Any:
        self._db.executed.append((self._table, self._operation))
        failure = self._db.failures.get(self._table)
        if failure is not None:
            raise failure
        handler = getattr(self, f"_execute_{self._operation}")
        return types.SimpleNamespace(data=handler())

    def _execute_select(self) -> List[Dict[str, Any]]:
        rows = [row for row in self._db.rows(self._table) if self._matches(row)]
        if self._order is not None:
            column, desc = self._order
            rows.sort(key=lambda row: str(row.get(column) or ""), reverse=desc)
        if self._limit is not None:
            rows = rows[: self._limit]
        return [self._project(row) for row in rows]

    def _execute_insert(self) -> List[Dict[str, Any]]:
        payloads = self._payload if isinstance(self._payload, list) else [self._payload]
        return [self._db.insert_row(self._table, payload) for payload in payloads]

    def _execute_upsert(self) -> List[Dict[str, Any]]:
        payloads = self._payload if isinstance(self._payload, list) else [self._payload]
        conflict_columns = [column.strip() for column in (self._on_conflict or "id").split(",")]
        written: List[Dict[str, Any]] = []
        for payload in payloads:
            existing = self._db.find(self._table, {column: payload.get(column) for column in conflict_columns})
            if existing is None:
                written.append(self._db.insert_row(self._table, payload))
            elif not self._ignore_duplicates:
                existing.update(copy.deepcopy(payload))
                existing.setdefault("updated_at", _now_iso())
                written.append(copy.deepcopy(existing))
        return written

    def _execute_update(self) -> List[Dict[str, Any]]:
        updated = []
        for row in self._db.rows(self._table):
            if self._matches(row):
                row.update(copy.deepcopy(self._payload))
                updated.append(copy.deepcopy(row))
        return updated

    def _execute_delete(self) -> List[Dict[str, Any]]:
        deleted = [row for row in self._db.rows(self._table) if self._matches(row)]
        self._db.tables[self._table] = [row for row in self._db.rows(self._table) if not self._matches(row)]
        for row in deleted:
            for child_table, child_key in CASCADES.get(self._table, ()):
                self._db.tables[child_table] = [
                    child for child in self._db.rows(child_table) if child.get(child_key) != row.get("id")
                ]
        return deleted


class FakeSupabase:
    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.failures: Dict[str, Exception] = {}
        self.executed: List[Tuple[str, str]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def find(self, table: str, criteria: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for row in self.rows(table):
            if all(row.get(column) == value for column, value in criteria.items()):
                return row
        return None

    def insert_row(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        for key in UNIQUE_KEYS.get(table, ()):
            if self.find(table, {column: payload.get(column) for column in key}) is not None:
                raise PostgrestAPIError(
                    {"message": f"duplicate key value violates unique constraint on {table}", "code": "23505"}
                )
        row = copy.deepcopy(payload)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", _now_iso())
        row.setdefault("updated_at", row["created_at"])
        self.rows(table).append(row)
        return copy.deepcopy(row)

    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [self.insert_row(table, row) for row in rows]


class FakeOverloadError(Exception):
    def __init__(self, message: str = "Service Unavailable", status_code: int = 503) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class FakeCompletions:
    def __init__(self, responder: Callable[[str, str], str]) -> None:
        self.responder = responder
        self.calls: List[Tuple[str, str]] = []

    def create(self, *, model: str, messages: List[Dict[str, str]], **kwargs: Any) -> Any:
        prompt = messages[-1]["content"]
        self.calls.append((model, prompt))
        reply = self.responder(model, prompt)
        message = types.SimpleNamespace(content=reply)
        return types.SimpleNamespace(choices=[types.SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, responder: Callable[[str, str], str]) -> None:
        self.chat = types.SimpleNamespace(completions=FakeCompletions(responder))

    @property
    def calls(self) -> List[Tuple[str, str]]:
        return self.chat.completions.calls

    def translation_calls(self) -> List[Tuple[str, str]]:
        return [call for call in self.calls if "Detect the language" not in call[1]]


TARGETS_RE = re.compile(r"Only include the languages requested: ([a-z, ]+)")
SINGLE_TEXT_RE = re.compile(r'Text to translate: "(.*)"')
BATCH_TEXT_RE = re.compile(r'^(\d+)\. \[[^\]]+\] "(.*)"$', re.MULTILINE)


def dictionary_responder(
    dictionary: Optional[Dict[str, Dict[str, str]]] = None,
    detected: str = "en,0.95",
) -> Callable[[str, str], str]:
    """Answer prompts like a cooperative model, using ``dictionary`` when it knows the text."""

    known = dictionary or {}

    def _translate(text: str, targets: List[str]) -> Dict[str, str]:
        return {language: known.get(text, {}).get(language, f"{language}:{text}") for language in targets}

    def _respond(model: str, prompt: str) -> str:
        if "Detect the language" in prompt:
            return detected
        targets = [code.strip() for code in TARGETS_RE.search(prompt).group(1).split(",") if code.strip()]
        numbered = BATCH_TEXT_RE.findall(prompt)
        if numbered:
            return json.dumps({number: _translate(text, targets) for number, text in numbered}, ensure_ascii=False)
        text = SINGLE_TEXT_RE.search(prompt).group(1)
        return json.dumps(_translate(text, targets), ensure_ascii=False)

    return _respond


def failing_responder(model: str, prompt: str) -> str:
    raise RuntimeError("upstream exploded")


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def supabase() -> FakeSupabase:
    client = FakeSupabase()
    client.seed("supported_languages", *DEFAULT_LANGUAGES)
    return client


@pytest.fixture
def make_openai() -> Callable[..., FakeOpenAI]:
    def _make(responder: Optional[Callable[[str, str], str]] = None) -> FakeOpenAI:
        return FakeOpenAI(responder or dictionary_responder())

    return _make


@pytest.fixture
def make_service(supabase: FakeSupabase) -> Callable[..., TranslationService]:
    """Build a fully wired service over the fake Supabase and the given OpenAI fake."""

    def _make(
        openai_client: Any = None,
        *,
        cache: Optional[TranslationCache] = None,
        sleep: Callable[[float], Any] = no_sleep,
    ) -> TranslationService:
        cache = cache or TranslationCache(ttl_seconds=3600, max_size=100)
        gateway = LanguageModelGateway(
            openai_client, primary_model="primary", alternate_model="alternate", sleep=sleep
        )
        repository = SupabaseTranslationRepository(supabase)
        translator = BatchTranslator(gateway, cache)
        detector = LanguageDetector(gateway, default_language="en")
        backfill = TranslationBackfillWorker(
            repository, translator, SupabaseEntityCatalog(supabase), default_language="en"
        )
        return TranslationService(repository, translator, detector, backfill, cache, default_language="en")

    return _make
