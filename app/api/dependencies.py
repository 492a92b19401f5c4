"""Request-scoped dependencies shared by the translation endpoints."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Header, HTTPException, Request

from app.services.postgrest_client import extract_bearer_token
from app.services.translation_service import TranslationService


def get_translation_service(request: Request) -> TranslationService:
    service = getattr(request.app.state, "translation_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service de traduction indisponible.")
    return service


async def get_current_tenant_id(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
) -> Optional[str]:
    """Resolve the tenant of the request, when one is given."""

    if not x_tenant_id:
        return None
    try:
        return str(UUID(x_tenant_id))
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Identifiant restaurant invalide.") from exc


async def require_tenant_id(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
) -> str:
    tenant_id = await get_current_tenant_id(x_tenant_id)
    if tenant_id is None:
        raise HTTPException(status_code=401, detail="Restaurant non authentifié.")
    return tenant_id


def decode_access_token(access_token: str) -> Dict[str, Any]:
    """Return the decoded JWT payload of a Supabase access token.

    The signature is not verified here; Supabase does that on every query.
    """

    try:
        payload_segment = access_token.split(".")[1]
        padding = "=" * (-len(payload_segment) % 4)
        decoded = base64.urlsafe_b64decode((payload_segment + padding).encode("ascii"))
        payload = json.loads(decoded.decode("utf-8"))
    except (IndexError, ValueError, binascii.Error, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=401, detail="Jeton d'authentification invalide.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=401, detail="Jeton d'authentification invalide.")
    return payload


async def get_current_user_id(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[str]:
    """Return the ``sub`` claim of the bearer token, or None for anonymous calls."""

    if not authorization:
        return None
    payload = decode_access_token(extract_bearer_token(authorization))
    subject = payload.get("sub")
    return str(subject) if subject else None


__all__ = [
    "decode_access_token",
    "get_current_tenant_id",
    "get_current_user_id",
    "get_translation_service",
    "require_tenant_id",
]
