from datetime import datetime
from typing import Dict, List, Literal, Optional, Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

EntityType = Literal[
    "ingredient",
    "category",
    "food_item",
    "addon",
    "addon_group",
    "variation",
    "variation_group",
    "buffet",
    "combo_meal",
    "menu",
    "branch",
    "customer",
    "employee",
    "tax",
    "restaurant",
    "stock_add_reason",
    "stock_deduct_reason",
    "stock_adjust_reason",
    "invoice",
]

FieldName = Literal[
    "name",
    "description",
    "title",
    "label",
    "short_description",
    "long_description",
    "city",
    "address",
    "notes",
    "country",
    "storage_location",
    "header",
    "footer",
    "terms_and_conditions",
    "reason",
]

LanguageCode = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, min_length=2, max_length=10)]


class TranslationMetadata(BaseModel):
    """One row per translated entity, recording its source language."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_type: str
    entity_id: str
    source_language: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TranslationRecord(BaseModel):
    """One translated field in one language."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    metadata_id: str
    language_code: str
    field_name: str
    translated_text: str
    is_ai_generated: bool = True
    last_updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SupportedLanguage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    name: str
    native_name: str
    rtl: bool = False
    is_active: bool = True
    is_default: bool = False


class TranslationCreatePayload(BaseModel):
    entity_type: EntityType
    entity_id: UUID
    field_name: FieldName
    text: str
    source_language: Optional[LanguageCode] = Field(
        default=None, description="Source language code (auto-detected if not provided)"
    )
    target_languages: Optional[List[LanguageCode]] = Field(
        default=None, description="Target languages, only used without a tenant context"
    )


class FieldTextPayload(BaseModel):
    field_name: FieldName
    text: str


class BatchTranslationCreatePayload(BaseModel):
    entity_type: EntityType
    entity_id: UUID
    fields: List[FieldTextPayload] = Field(default_factory=list)
    source_language: Optional[LanguageCode] = None


class TranslationUpdatePayload(BaseModel):
    entity_type: EntityType
    entity_id: UUID
    language_code: LanguageCode
    field_name: FieldName
    translated_text: Annotated[str, StringConstraints(min_length=1)]


class RetranslatePayload(BaseModel):
    entity_type: EntityType
    entity_id: UUID
    target_languages: Optional[List[LanguageCode]] = None
    overwrite_manual: bool = Field(
        default=False, description="Also replace translations edited by hand"
    )


class LanguageCreatePayload(BaseModel):
    code: LanguageCode
    name: str
    native_name: str
    rtl: bool = False
    is_default: bool = False


class LanguageUpdatePayload(BaseModel):
    name: Optional[str] = None
    native_name: Optional[str] = None
    rtl: Optional[bool] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class TranslationsResponse(BaseModel):
    source_language: str
    translations: Dict[str, str]


class BatchTranslationsResponse(BaseModel):
    source_language: str
    translations: Dict[str, Dict[str, str]]


class SingleTranslationResponse(BaseModel):
    translation: Optional[str] = None


class RetranslateResponse(BaseModel):
    message: str
    target_languages: List[str]
    fields_translated: List[str]


class MessageResponse(BaseModel):
    message: str


class CacheStatsResponse(BaseModel):
    size: int
    max_size: int
    ttl_hours: float


class BackfillStatusResponse(BaseModel):
    tenant_id: str
    language_code: str
    status: Literal["pending", "running", "completed", "failed"]
    entities_seen: int = 0
    entities_translated: int = 0
    entities_skipped: int = 0
    entities_failed: int = 0
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
