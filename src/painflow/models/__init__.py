"""Model client abstractions."""

from painflow.models.openai_client import (
    LLMConnectionError,
    LLMJsonClient,
    LLMResponseError,
    LLMResponseParseError,
    LLMTimeoutError,
    OpenAICompatibleJsonClient,
    check_llm_health,
    parse_json_object,
)

__all__ = [
    "LLMConnectionError",
    "LLMJsonClient",
    "LLMResponseError",
    "LLMResponseParseError",
    "LLMTimeoutError",
    "OpenAICompatibleJsonClient",
    "check_llm_health",
    "parse_json_object",
]
