"""Gateway to the chat-completion backend with overload-aware retries."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional

from app.config.openai_client import (
    ALTERNATE_TRANSLATION_MODEL,
    TRANSLATION_MODEL,
    get_openai_client,
)

logger = logging.getLogger(__name__)

ModelErrorKind = Literal["overloaded", "other"]

OVERLOAD_STATUS_CODES = frozenset({503})
OVERLOAD_MESSAGE_MARKERS = ("overload", "service unavailable", "503")

ALTERNATE_SWITCH_DELAY_SECONDS = 2.0
BACKOFF_STEP_SECONDS = 5.0
MAX_RETRIES_PER_MODEL = 2


class ModelError(Exception):
    """Raised when the language model could not produce a completion."""

    def __init__(self, message: str, *, kind: ModelErrorKind = "other") -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind == "overloaded"


@dataclass(frozen=True)
class ModelFailure:
    status_code: Optional[int]
    message: str


def describe_model_failure(exc: BaseException) -> ModelFailure:
    """Extract the status code and message from an SDK or transport error."""

    status: Any = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None) or getattr(response, "status", None)
    try:
        status_code = int(status) if status is not None else None
    except (TypeError, ValueError):
        status_code = None
    message = getattr(exc, "message", None) or str(exc)
    return ModelFailure(status_code=status_code, message=str(message))


def is_overload_failure(failure: ModelFailure) -> bool:
    """Return True when the backend reports transient unavailability."""

    if failure.status_code in OVERLOAD_STATUS_CODES:
        return True
    lowered = failure.message.lower()
    return any(marker in lowered for marker in OVERLOAD_MESSAGE_MARKERS)


class LanguageModelGateway:
    """Send prompts to the primary model, falling back to an alternate on overload."""

    def __init__(
        self,
        client: Any = None,
        *,
        primary_model: str = TRANSLATION_MODEL,
        alternate_model: Optional[str] = ALTERNATE_TRANSLATION_MODEL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.primary_model = primary_model
        self.alternate_model = alternate_model
        self._sleep = sleep

    @classmethod
    def from_environment(cls) -> "LanguageModelGateway":
        return cls(get_openai_client())

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    def _request_completion(self, model: str, prompt: str) -> str:
        completion = self._client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
        if completion.choices:
            reply = completion.choices[0].message.content
            if reply:
                return reply
        raise ModelError(f"Model {model} returned an empty completion.")

    async def complete(self, prompt: str, prefer_alternate: bool = False) -> str:
        """Return the completion text for ``prompt``.

        Overloads switch once to the alternate model (after a short pause) and
        then back off 5s and 10s on the current model before giving up with a
        retryable ``ModelError``. Other failures are raised immediately.
        """

        if self._client is None:
            raise ModelError("No language model is configured.")

        use_alternate = prefer_alternate and self.alternate_model is not None
        alternate_tried = use_alternate
        retries = 0
        while True:
            model = self.alternate_model if use_alternate else self.primary_model
            start = time.monotonic()
            try:
                reply = await asyncio.to_thread(self._request_completion, model, prompt)
            except ModelError:
                raise
            except Exception as exc:
                duration_ms = (time.monotonic() - start) * 1000
                failure = describe_model_failure(exc)
                if not is_overload_failure(failure):
                    logger.error(
                        "Model call failed",
                        extra={
                            "model": model,
                            "status_code": failure.status_code,
                            "duration_ms": round(duration_ms, 2),
                            "error": failure.message,
                        },
                    )
                    raise ModelError(failure.message) from exc

                if not use_alternate and self.alternate_model and not alternate_tried:
                    logger.warning(
                        "Primary model %s overloaded, switching to alternate model %s",
                        model,
                        self.alternate_model,
                    )
                    await self._sleep(ALTERNATE_SWITCH_DELAY_SECONDS)
                    use_alternate = True
                    alternate_tried = True
                    retries = 0
                    continue

                if retries < MAX_RETRIES_PER_MODEL:
                    wait_seconds = (retries + 1) * BACKOFF_STEP_SECONDS
                    logger.warning(
                        "Model %s overloaded (attempt %s/%s). Waiting %ss before retry...",
                        model,
                        retries + 1,
                        MAX_RETRIES_PER_MODEL,
                        wait_seconds,
                    )
                    await self._sleep(wait_seconds)
                    retries += 1
                    continue

                raise ModelError(
                    "Model is overloaded. Please try again later.",
                    kind="overloaded",
                ) from exc

            logger.debug(
                "Model call succeeded",
                extra={"model": model, "duration_ms": round((time.monotonic() - start) * 1000, 2)},
            )
            return reply


__all__ = [
    "LanguageModelGateway",
    "ModelError",
    "ModelFailure",
    "describe_model_failure",
    "is_overload_failure",
]
