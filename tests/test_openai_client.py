"""Tests for the OpenAI-compatible JSON client, response parsing and health probe."""

from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from painflow.errors import LLMUnavailableError
from painflow.models import (
    LLMConnectionError,
    LLMResponseError,
    LLMResponseParseError,
    LLMTimeoutError,
    OpenAICompatibleJsonClient,
    check_llm_health,
    parse_json_object,
)
from painflow.models.openai_client import extract_json_object_text


class TestParseJsonObject:
    def test_plain_json(self):
        assert parse_json_object('{"clusters": []}') == {"clusters": []}

    def test_recovers_object_wrapped_in_prose(self):
        content = 'Here you go:\n```json\n{"clusters": [{"label": "a"}]}\n```\nHope it helps!'
        assert parse_json_object(content) == {"clusters": [{"label": "a"}]}

    def test_unrecoverable_text(self):
        with pytest.raises(LLMResponseParseError, match="Failed to parse JSON"):
            parse_json_object("no json here")

    def test_broken_recovered_object(self):
        with pytest.raises(LLMResponseParseError):
            parse_json_object("prefix {not: valid} suffix")

    def test_non_object_json(self):
        with pytest.raises(LLMResponseParseError, match="Expected JSON object"):
            parse_json_object("[1, 2, 3]")


def test_extract_json_object_text_spans_first_to_last_brace():
    assert extract_json_object_text('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'
    assert extract_json_object_text("} backwards {") is None


def test_timeout_message_names_the_setting():
    message = str(LLMTimeoutError(1800.0))
    assert message.startswith("LLM request timed out after 1800s.")
    assert "llm_request_timeout_seconds" in message


class TestHealthCheck:
    def test_success(self, monkeypatch):
        def fake_get(url, timeout):
            assert url == "http://localhost:1234/v1/models"
            assert timeout == 5.0
            return httpx.Response(200, request=httpx.Request("GET", url))

        monkeypatch.setattr(httpx, "get", fake_get)
        assert check_llm_health("http://localhost:1234/v1/models") is True

    def test_error_status(self, monkeypatch):
        monkeypatch.setattr(
            httpx,
            "get",
            lambda url, timeout: httpx.Response(503, request=httpx.Request("GET", url)),
        )
        assert check_llm_health("http://localhost:1234/v1/models") is False

    def test_connection_refused(self, monkeypatch):
        def fake_get(url, timeout):
            raise httpx.ConnectError("refused", request=httpx.Request("GET", url))

        monkeypatch.setattr(httpx, "get", fake_get)
        assert check_llm_health("http://localhost:1234/v1/models", timeout_seconds=0.1) is False


class _FakeCompletions:
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.requests: list[dict] = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        message = SimpleNamespace(content=outcome)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=message)],
            usage=SimpleNamespace(total_tokens=11),
        )


def _client_with(outcomes) -> tuple[OpenAICompatibleJsonClient, _FakeCompletions]:
    client = OpenAICompatibleJsonClient(
        base_url="http://localhost:1234/v1",
        model="local-model",
        timeout_seconds=30.0,
    )
    completions = _FakeCompletions(outcomes)
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return client, completions


class TestOpenAICompatibleJsonClient:
    def test_parses_reply_and_tracks_usage(self):
        client, completions = _client_with(['Sure! {"clusters": []}'])

        assert client.complete_json(system_prompt="sys", user_prompt="user") == {"clusters": []}
        request = completions.requests[0]
        assert request["model"] == "local-model"
        assert "response_format" not in request
        assert [message["role"] for message in request["messages"]] == ["system", "user"]
        assert client.metrics_snapshot()["total_tokens"] == 11

    def test_empty_content(self):
        client, _ = _client_with([""])
        with pytest.raises(LLMResponseError, match="No content from LLM"):
            client.complete_json(system_prompt="sys", user_prompt="user")

    def test_connection_error_is_reported_as_unavailable(self):
        request = httpx.Request("POST", "http://localhost:1234/v1/chat/completions")
        client, _ = _client_with([openai.APIConnectionError(request=request)])
        with pytest.raises(LLMConnectionError) as exc_info:
            client.complete_json(system_prompt="sys", user_prompt="user")
        assert isinstance(exc_info.value, LLMUnavailableError)

    def test_timeout_error(self):
        request = httpx.Request("POST", "http://localhost:1234/v1/chat/completions")
        client, _ = _client_with([openai.APITimeoutError(request=request)])
        with pytest.raises(LLMTimeoutError, match="after 30s"):
            client.complete_json(system_prompt="sys", user_prompt="user")
