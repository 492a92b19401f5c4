"""Shared utilities for talking to Supabase/PostgREST."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException
from postgrest import APIError as PostgrestAPIError

UNIQUE_VIOLATION_CODE = "23505"


def extract_bearer_token(header_value: Optional[str]) -> str:
    """Return the Bearer token from an Authorization header."""

    if not header_value:
        raise HTTPException(status_code=401, detail="Authentification requise.")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Jeton Bearer invalide.")
    token = parts[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Jeton Bearer manquant.")
    return token


def postgrest_status(exc: PostgrestAPIError) -> int:
    """Best effort extraction of an HTTP status code from the API error."""

    try:
        return int(exc.code) if exc.code else 502
    except (TypeError, ValueError):
        return 502


def is_unique_violation(exc: PostgrestAPIError) -> bool:
    return str(getattr(exc, "code", "")) == UNIQUE_VIOLATION_CODE


def first_row(response: Any) -> Optional[Dict[str, Any]]:
    """Return the first row of a query response, tolerating empty responses."""

    if response is None:
        return None
    rows = getattr(response, "data", None) or []
    if isinstance(rows, dict):
        return rows
    return rows[0] if rows else None


__all__ = [
    "extract_bearer_token",
    "first_row",
    "is_unique_violation",
    "postgrest_status",
]
