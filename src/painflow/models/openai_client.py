"""Client for OpenAI-compatible local LLM servers (LM Studio and friends)."""

from __future__ import annotations

import json
import logging
import threading
from typing import Protocol

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

from painflow.errors import LLMUnavailableError, PainflowError

logger = logging.getLogger(__name__)

_RESPONSE_PREVIEW_CHARS = 500


class LLMConnectionError(LLMUnavailableError):
    """Raised when the LLM endpoint refuses or drops the connection."""


class LLMTimeoutError(LLMUnavailableError):
    """Raised when a completion request exceeds the configured timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"LLM request timed out after {timeout_seconds:g}s. "
            "The model may need more time to generate the response. "
            "Consider reducing batch size or increasing llm_request_timeout_seconds."
        )
        self.timeout_seconds = timeout_seconds


class LLMResponseError(PainflowError):
    """Raised when the LLM answers with an error status or no content."""

    code = "llm_error"


class LLMResponseParseError(LLMResponseError):
    """Raised when no JSON object can be recovered from the completion text."""


class LLMJsonClient(Protocol):
    """Protocol for clients that return structured JSON."""

    def complete_json(self, *, system_prompt: str, user_prompt: str) -> dict:
        """Generate a JSON object for the given prompts."""


def extract_json_object_text(text: str) -> str | None:
    """Return the substring between the first `{` and the last `}`, if any."""

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def parse_json_object(content: str) -> dict:
    """Parse completion text as a JSON object, recovering from surrounding prose."""

    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Failed to parse LLM response as JSON, attempting recovery: %s",
            content[:_RESPONSE_PREVIEW_CHARS],
        )
        extracted = extract_json_object_text(content)
        if extracted is None:
            raise LLMResponseParseError(f"Failed to parse JSON from LLM response: {exc}") from exc
        try:
            payload = json.loads(extracted)
        except json.JSONDecodeError as inner:
            raise LLMResponseParseError(
                f"Failed to parse JSON from LLM response: {inner}"
            ) from inner

    if not isinstance(payload, dict):
        raise LLMResponseParseError(f"Expected JSON object, got {type(payload).__name__}.")
    return payload


def check_llm_health(models_url: str, *, timeout_seconds: float = 5.0) -> bool:
    """Probe the models-list endpoint; True only for a 2xx answer within the timeout."""

    try:
        response = httpx.get(models_url, timeout=timeout_seconds)
    except httpx.HTTPError as exc:
        logger.info("LLM health probe failed for %s: %s", models_url, exc)
        return False
    return response.is_success


class OpenAICompatibleJsonClient:
    """JSON-focused wrapper around chat completions on a local OpenAI-compatible server.

    No `response_format` is sent because several local servers reject
    `json_object`; JSON is recovered from the completion text instead.
    """

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "lm-studio",
        temperature: float = 0.2,
        timeout_seconds: float = 1800.0,
        max_attempts: int = 1,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
            max_retries=0,
        )
        self._model = model
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._metrics_lock = threading.Lock()
        self._request_count = 0
        self._retry_count = 0
        self._total_tokens = 0

    def _is_retryable_status_error(self, exc: BaseException) -> bool:
        """Only server-side overload is retried; connectivity is reported to the caller."""

        return isinstance(exc, (RateLimitError, InternalServerError))

    def _create_completion(self, *, system_prompt: str, user_prompt: str):
        response = None
        attempt_count = 0
        wait_strategy = wait_exponential(
            multiplier=self._backoff_seconds,
            min=self._backoff_seconds,
            max=max(self._backoff_seconds, self._backoff_seconds * 8),
        ) + wait_random(0.0, 0.25)
        retryer = Retrying(
            retry=retry_if_exception(self._is_retryable_status_error),
            wait=wait_strategy,
            stop=stop_after_attempt(self._max_attempts),
            reraise=True,
        )

        for attempt in retryer:
            with attempt:
                attempt_count += 1
                response = self._client.chat.completions.create(
                    model=self._model,
                    temperature=self._temperature,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                )

        if response is None:
            raise LLMResponseError("LLM response missing after retries.")

        usage = getattr(response, "usage", None)
        with self._metrics_lock:
            self._request_count += 1
            self._retry_count += max(0, attempt_count - 1)
            self._total_tokens += int(getattr(usage, "total_tokens", 0) or 0)
        return response

    def complete_json(self, *, system_prompt: str, user_prompt: str) -> dict:
        """Send one non-streaming chat request and parse a JSON object from the reply."""

        try:
            response = self._create_completion(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
            )
        except APITimeoutError as exc:
            raise LLMTimeoutError(self._timeout_seconds) from exc
        except APIConnectionError as exc:
            raise LLMConnectionError(f"LLM connection failed: {exc}") from exc
        except APIStatusError as exc:
            raise LLMResponseError(f"LLM error {exc.status_code}: {exc.message}") from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise LLMResponseError("No content from LLM")

        logger.debug(
            "LLM response preview (%d chars): %s",
            len(content),
            content[:_RESPONSE_PREVIEW_CHARS],
        )
        return parse_json_object(content)

    def metrics_snapshot(self) -> dict:
        """Return cumulative request/usage metrics for this client instance."""

        with self._metrics_lock:
            return {
                "request_count": self._request_count,
                "retry_count": self._retry_count,
                "total_tokens": self._total_tokens,
                "model": self._model,
            }
