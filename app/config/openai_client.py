"""OpenAI client configuration for the translation pipeline."""

import logging
import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from openai import OpenAI

load_dotenv()

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
TRANSLATION_MODEL = os.getenv("TRANSLATION_MODEL", "gpt-4.1-mini")
# Used only when the primary model reports it is overloaded.
ALTERNATE_TRANSLATION_MODEL = os.getenv("ALTERNATE_TRANSLATION_MODEL") or None
OPENAI_TIMEOUT_SECONDS = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "60"))


@lru_cache(maxsize=1)
def get_openai_client() -> Optional[OpenAI]:
    """Return the shared OpenAI client, or None when no API key is configured."""

    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not found. Translation features will be limited.")
        return None
    return OpenAI(api_key=OPENAI_API_KEY, timeout=OPENAI_TIMEOUT_SECONDS)


__all__ = [
    "get_openai_client",
    "TRANSLATION_MODEL",
    "ALTERNATE_TRANSLATION_MODEL",
]
