"""Tests for providers/."""

from __future__ import annotations

import json

import httpx
import pytest

from appvet.models.provider import CompletionResult
from appvet.providers.anthropic import AnthropicProvider
from appvet.providers.base import BaseProvider, get_ai_provider, is_overloaded, is_rate_limited
from appvet.providers.openai_provider import OpenAIProvider


def mock_transport(monkeypatch, handler):
    """Route every httpx.AsyncClient through a MockTransport."""
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)


class TestGetAIProvider:
    def test_anthropic_provider(self):
        provider = get_ai_provider({"ai": {"provider": "anthropic"}})
        assert provider.name == "anthropic"
        assert provider.model == "claude-sonnet-4-5-20250929"

    def test_openai_provider(self):
        provider = get_ai_provider({"ai": {"provider": "openai"}})
        assert provider.name == "openai"
        assert provider.model == "gpt-4o"

    def test_invalid_provider_raises(self):
        with pytest.raises(ValueError, match="Unknown"):
            get_ai_provider({"ai": {"provider": "invalid"}})

    def test_provider_override(self):
        provider = get_ai_provider({"ai": {"provider": "anthropic"}}, provider_override="openai")
        assert provider.name == "openai"

    def test_model_override(self):
        config = {"ai": {"provider": "anthropic", "anthropic": {"model": "a"}}}
        provider = get_ai_provider(config, model_override="claude-haiku-3-5-20241022")
        assert provider.model == "claude-haiku-3-5-20241022"

    def test_common_config_excludes_provider_sections(self):
        config = {"ai": {"provider": "anthropic", "retry_attempts": 5, "anthropic": {}, "openai": {}}}
        provider = get_ai_provider(config)
        assert provider.max_attempts == 5
        assert "openai" not in provider.common


class TestStatusHelpers:
    def test_rate_limited(self):
        assert is_rate_limited(CompletionResult(success=False, status_code=429))
        assert not is_rate_limited(CompletionResult(success=False, status_code=500))

    def test_overloaded(self):
        assert is_overloaded(CompletionResult(success=False, status_code=529))
        assert is_overloaded(CompletionResult(success=False, status_code=503))
        assert not is_overloaded(CompletionResult(success=False, status_code=429))


class TestBaseProviderRetry:
    def _provider(self, attempts: int = 3) -> BaseProvider:
        return BaseProvider(
            provider_config={},
            common_config={"retry_attempts": attempts, "retry_delay_seconds": 0},
        )

    @pytest.mark.asyncio
    async def test_retries_on_rate_limit(self):
        provider = self._provider()
        call_count = 0

        async def mock_complete(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                return CompletionResult(success=False, error="429 | slow down", status_code=429)
            return CompletionResult(success=True, content="ok")

        provider.complete = mock_complete
        result = await provider.complete_with_retry("system", "user")
        assert result.success
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retries_on_overload(self):
        provider = self._provider(attempts=2)
        calls = []

        async def mock_complete(*args, **kwargs):
            calls.append(1)
            return CompletionResult(success=False, error="529 | overloaded", status_code=529)

        provider.complete = mock_complete
        result = await provider.complete_with_retry("system", "user")
        assert not result.success
        assert result.status_code == 529
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        provider = self._provider()
        calls = []

        async def mock_complete(*args, **kwargs):
            calls.append(1)
            return CompletionResult(success=False, error="401 | unauthorized", status_code=401)

        provider.complete = mock_complete
        result = await provider.complete_with_retry("system", "user")
        assert not result.success
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_error_sanitized(self):
        provider = self._provider(attempts=1)

        async def mock_complete(*args, **kwargs):
            return CompletionResult(
                success=False, error="401 | bad key sk-ant-api03-secretsecret", status_code=401
            )

        provider.complete = mock_complete
        result = await provider.complete_with_retry("system", "user")
        assert "secretsecret" not in result.error
        assert "[REDACTED_KEY]" in result.error


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        result = await AnthropicProvider({}, {}).complete("s", "u")
        assert not result.success
        assert "ANTHROPIC_API_KEY" in result.error

    @pytest.mark.asyncio
    async def test_successful_completion(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "content": [
                        {"type": "text", "text": "part one"},
                        {"type": "tool_use", "id": "x"},
                        {"type": "text", "text": "part two"},
                    ],
                    "usage": {"input_tokens": 120, "output_tokens": 30},
                },
            )

        mock_transport(monkeypatch, handler)
        result = await AnthropicProvider({}, {}).complete("system", "user", 512, 0.1)

        assert result.success
        assert result.content == "part one\npart two"
        assert result.tokens_used == {"input": 120, "output": 30}
        assert seen["headers"]["x-api-key"] == "test-key"
        assert seen["body"]["system"] == "system"
        assert seen["body"]["max_tokens"] == 512
        assert seen["body"]["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_http_error_becomes_result(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        mock_transport(monkeypatch, lambda request: httpx.Response(529, text="overloaded"))

        result = await AnthropicProvider({}, {}).complete("system", "user")
        assert not result.success
        assert result.status_code == 529
        assert result.error == "529 | overloaded"


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_successful_completion(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer test-key"
            return httpx.Response(
                200,
                json={
                    "choices": [{"message": {"content": "[]"}}],
                    "usage": {"prompt_tokens": 50, "completion_tokens": 5},
                },
            )

        mock_transport(monkeypatch, handler)
        result = await OpenAIProvider({}, {}).complete("system", "user")
        assert result.success
        assert result.content == "[]"
        assert result.tokens_used == {"input": 50, "output": 5}

    @pytest.mark.asyncio
    async def test_rate_limited(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        mock_transport(monkeypatch, lambda request: httpx.Response(429, text="rate limited"))

        result = await OpenAIProvider({}, {}).complete("system", "user")
        assert not result.success
        assert result.status_code == 429
