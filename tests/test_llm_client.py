"""Tests for the provider-agnostic chat-completions client."""
from __future__ import annotations

import httpx
import pytest

from cosmo.core.errors import CosmoError, CosmoErrorCode
from cosmo.core.llm_client import LLMClient

from tests.conftest import completion_body, image_body


MESSAGES = [{"role": "user", "content": "hello"}]


class TestBuildPayload:

    def test_openrouter_uses_max_tokens(self) -> None:
        payload = LLMClient().build_payload("OpenRouter", "m/1", MESSAGES, temperature=0.3, max_tokens=100)
        assert payload == {
            "model": "m/1",
            "messages": MESSAGES,
            "stream": False,
            "max_tokens": 100,
            "temperature": 0.3,
        }

    def test_lovable_uses_max_completion_tokens(self) -> None:
        payload = LLMClient().build_payload("Lovable AI", "m/1", MESSAGES, max_tokens=64)
        assert payload["max_completion_tokens"] == 64
        assert "max_tokens" not in payload

    def test_temperature_none_is_omitted(self) -> None:
        payload = LLMClient().build_payload("OpenRouter", "m/1", MESSAGES, temperature=None)
        assert "temperature" not in payload

    def test_unknown_provider(self) -> None:
        with pytest.raises(CosmoError) as exc_info:
            LLMClient().build_payload("Nowhere", "m/1", MESSAGES)
        assert exc_info.value.code is CosmoErrorCode.CONFIG_MISSING


# ---------------------------------------------------------------------------
# chat_completion
# ---------------------------------------------------------------------------


class TestChatCompletion:

    async def test_success_parses_content_and_usage(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("hi there", "m/1")))
        response = await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert response.content == "hi there"
        assert response.usage["prompt_tokens"] == 12
        assert response.model == "m/1"
        assert response.request_id == "gen-123"
        await llm.close()

    async def test_sends_bearer_and_attribution_headers(self, api_keys) -> None:
        seen: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.headers)
            return httpx.Response(200, json=completion_body("ok"))

        llm = LLMClient(transport=httpx.MockTransport(handler))
        await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert seen["authorization"] == "Bearer test-openrouter-key"
        assert seen["x-title"] == "COSMO Orchestrator"
        await llm.close()

    async def test_explicit_api_key_wins(self, make_llm) -> None:
        keys: list[str] = []

        def handler(request: httpx.Request, payload: dict) -> httpx.Response:
            keys.append(request.headers["authorization"])
            return httpx.Response(200, json=completion_body("ok"))

        llm = make_llm(handler)
        await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter", api_key="explicit")
        assert keys == ["Bearer explicit"]

    async def test_missing_key_is_config_missing(self, make_llm, monkeypatch) -> None:
        from cosmo.config import settings
        monkeypatch.setattr(settings, "openrouter_api_key", None)
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("ok")))
        with pytest.raises(CosmoError) as exc_info:
            await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert exc_info.value.code is CosmoErrorCode.CONFIG_MISSING
        assert llm.sent == []

    async def test_http_error_raises_status_error(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(429, json={"error": "slow down"}))
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert exc_info.value.response.status_code == 429
        assert len(llm.sent) == 1

    async def test_server_error_is_sent_once(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert len(llm.sent) == 1

    async def test_timeout_is_sent_once(self, make_llm, api_keys) -> None:
        def handler(request: httpx.Request, payload: dict) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        llm = make_llm(handler)
        with pytest.raises(httpx.TimeoutException):
            await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert len(llm.sent) == 1

    async def test_malformed_body(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json={"choices": []}))
        with pytest.raises(ValueError, match="no choices"):
            await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")

    async def test_non_string_content_is_none(self, make_llm, api_keys) -> None:
        body = {"choices": [{"message": {"content": None}, "finish_reason": "length"}]}
        llm = make_llm(lambda request, payload: httpx.Response(200, json=body))
        response = await llm.chat_completion(MESSAGES, model="m/1", provider="OpenRouter")
        assert response.content is None
        assert response.finish_reason == "length"


# ---------------------------------------------------------------------------
# generate_image
# ---------------------------------------------------------------------------


class TestGenerateImage:

    async def test_requests_image_modality(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=image_body("https://img.test/a.png")))
        response = await llm.generate_image("a red fox", model="img/model", provider="OpenRouter")

        assert response.images == ["https://img.test/a.png"]
        assert llm.sent == [{
            "model": "img/model",
            "messages": [{"role": "user", "content": "a red fox"}],
            "modalities": ["image", "text"],
        }]

    async def test_text_only_reply_has_no_images(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("no image")))
        response = await llm.generate_image("a red fox", model="img/model", provider="OpenRouter")
        assert response.images == []

    async def test_http_error_propagates(self, make_llm, api_keys) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(402))
        with pytest.raises(httpx.HTTPStatusError):
            await llm.generate_image("a red fox", model="img/model", provider="OpenRouter")
