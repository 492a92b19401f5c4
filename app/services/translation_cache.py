"""In-memory TTL cache for model translations."""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = float(os.getenv("TRANSLATION_CACHE_TTL_SECONDS", str(24 * 60 * 60)))
CACHE_MAX_ENTRIES = int(os.getenv("TRANSLATION_CACHE_MAX_ENTRIES", "1000"))


@dataclass(frozen=True)
class CacheEntry:
    translations: Dict[str, str]
    inserted_at: float


def build_cache_key(text: str, target_languages: Iterable[str], source_language: Optional[str] = None) -> str:
    """Fingerprint a translation request.

    Single-field and batch translations share this key so either path can
    reuse the other's results.
    """

    normalized_text = text.strip().lower()
    sorted_targets = ",".join(sorted(set(target_languages)))
    source = source_language or "auto"
    raw = f"{normalized_text}\x1f{source}\x1f{sorted_targets}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class TranslationCache:
    """Thread-safe TTL cache with oldest-first eviction.

    A pure performance optimization: losing its content never affects
    correctness. Build one per process and inject it where needed.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_size: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, str]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.inserted_at > self.ttl_seconds:
                del self._entries[key]
                return None
        logger.debug("Translation cache hit", extra={"cache_key": key[:16]})
        return dict(entry.translations)

    def put(self, key: str, translations: Dict[str, str]) -> None:
        entry = CacheEntry(translations=dict(translations), inserted_at=self._clock())
        with self._lock:
            if key in self._entries:
                # Re-inserting moves the key to the newest position.
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = entry

    def clear_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, entry in self._entries.items()
                if now - entry.inserted_at > self.ttl_seconds
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("Cleared %s expired translation cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, float]:
        with self._lock:
            size = len(self._entries)
        return {
            "size": size,
            "max_size": self.max_size,
            "ttl_hours": self.ttl_seconds / 3600,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["TranslationCache", "CacheEntry", "build_cache_key"]
