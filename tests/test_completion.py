"""Tests for the completion service (backend.ai.completion)."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from backend.ai.completion import FALLBACK_MESSAGES, CompletionService, classify_error
from backend.errors import CompletionServiceError

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _rate_limit(code: str | None) -> openai.RateLimitError:
    body = {"code": code, "message": "limited"} if code else None
    return openai.RateLimitError(
        "limited", response=httpx.Response(429, request=REQUEST), body=body
    )


def _response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture()
def client() -> MagicMock:
    mock = MagicMock()
    mock.chat.completions.create = AsyncMock(return_value=_response("  Hi there!  "))
    return mock


@pytest.fixture()
def service(client: MagicMock, tmp_path: Path) -> CompletionService:
    training = tmp_path / "training.txt"
    training.write_text("Answer briefly.", encoding="utf-8")
    return CompletionService(
        api_key="sk-test", model="gpt-4o-mini", training_path=training, bot_name="TestBot", client=client
    )


class TestClassifyError:
    def test_insufficient_quota(self) -> None:
        assert classify_error(_rate_limit("insufficient_quota")) == "quota_exceeded"

    def test_plain_rate_limit(self) -> None:
        assert classify_error(_rate_limit("rate_limit_exceeded")) == "rate_limited"
        assert classify_error(_rate_limit(None)) == "rate_limited"

    def test_timeout(self) -> None:
        assert classify_error(openai.APITimeoutError(request=REQUEST)) == "timeout"

    def test_other(self) -> None:
        assert classify_error(openai.APIConnectionError(request=REQUEST)) == "generic"
        assert classify_error(RuntimeError("x")) == "generic"


class TestComplete:
    async def test_returns_trimmed_text(self, service: CompletionService, client: MagicMock) -> None:
        assert await service.complete("hello") == "Hi there!"

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 500
        system, user = kwargs["messages"]
        assert system["role"] == "system"
        assert system["content"].startswith("Answer briefly.")
        assert "TestBot" in system["content"]
        assert user == {"role": "user", "content": "hello"}

    async def test_training_file_reread(self, service: CompletionService, client: MagicMock) -> None:
        service.training_path.write_text("New rules.", encoding="utf-8")

        await service.complete("hello")

        system = client.chat.completions.create.await_args.kwargs["messages"][0]
        assert system["content"].startswith("New rules.")

    async def test_missing_training_file(self, client: MagicMock, tmp_path: Path) -> None:
        service = CompletionService("sk-test", training_path=tmp_path / "nope.txt", client=client)
        assert await service.complete("hello") == "Hi there!"

    async def test_raises_classified_error(self, service: CompletionService, client: MagicMock) -> None:
        client.chat.completions.create.side_effect = _rate_limit("insufficient_quota")

        with pytest.raises(CompletionServiceError) as exc_info:
            await service.complete("hello")
        assert exc_info.value.kind == "quota_exceeded"

    async def test_empty_completion(self, service: CompletionService, client: MagicMock) -> None:
        client.chat.completions.create.return_value = _response("   ")

        with pytest.raises(CompletionServiceError):
            await service.complete("hello")


class TestGenerateReply:
    async def test_success(self, service: CompletionService) -> None:
        assert await service.generate_reply("hello") == "Hi there!"

    @pytest.mark.parametrize("error, kind", [
        (_rate_limit("insufficient_quota"), "quota_exceeded"),
        (_rate_limit("rate_limit_exceeded"), "rate_limited"),
        (openai.APITimeoutError(request=REQUEST), "timeout"),
        (openai.APIConnectionError(request=REQUEST), "generic"),
    ])
    async def test_fallbacks(
        self, service: CompletionService, client: MagicMock, error: Exception, kind: str
    ) -> None:
        client.chat.completions.create.side_effect = error

        assert await service.generate_reply("hello") == FALLBACK_MESSAGES[kind]

    def test_fallbacks_are_distinct(self) -> None:
        assert len(set(FALLBACK_MESSAGES.values())) == len(FALLBACK_MESSAGES)
