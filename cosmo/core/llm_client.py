"""
LLM Client for COSMO.

One httpx connection pool serving every configured provider through the
OpenAI-compatible chat-completions wire format:

    POST <endpoint>
    {model, messages: [{role, content}], temperature, max_tokens}

Used both for the low-temperature classifier calls (intent and category
detection, image model choice), for the routed inference call and for
image generation, which asks for ``modalities: ["image", "text"]``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from cosmo.config import settings
from cosmo.core.providers import get_provider_api_key, get_provider_config

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from the LLM."""
    content: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: dict[str, Any] = field(default_factory=dict)
    model: Optional[str] = None
    status_code: int = 200
    request_id: Optional[str] = None
    images: list[str] = field(default_factory=list)


class LLMClient:
    """
    Provider-agnostic chat-completions client.

    Non-2xx responses raise ``httpx.HTTPStatusError`` so callers can map the
    status (429, 402, ...) to a domain error; a missing API key raises
    ``CosmoError(CONFIG_MISSING)`` before any request is sent.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.llm_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def build_payload(
        self,
        provider: str,
        model: str,
        messages: list[dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        """Request body; ``temperature=None`` omits the field entirely."""
        config = get_provider_config(provider)
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        payload[config.max_tokens_field] = max_tokens or settings.default_max_tokens
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: str,
        provider: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Send one chat completion request; failures propagate to the caller."""
        payload = self.build_payload(provider, model, messages, temperature, max_tokens)
        logger.debug(f"LLM request: provider={provider} model={model}, {len(messages)} messages")
        return await self._send(provider, model, payload, api_key, timeout)

    async def generate_image(
        self,
        prompt: str,
        model: str,
        provider: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """Image generation over chat completions (``modalities: [image, text]``)."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "modalities": ["image", "text"],
        }
        logger.debug(f"Image request: provider={provider} model={model}")
        return await self._send(provider, model, payload, api_key, timeout)

    async def _send(
        self,
        provider: str,
        model: str,
        payload: dict[str, Any],
        api_key: Optional[str],
        timeout: Optional[float],
    ) -> LLMResponse:
        config = get_provider_config(provider)
        key = api_key or get_provider_api_key(provider)
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            **config.extra_headers,
        }

        start = time.time()
        try:
            response = await self.client.post(
                config.endpoint,
                json=payload,
                headers=headers,
                timeout=timeout or self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"LLM {model} returned HTTP {e.response.status_code}")
            raise
        except httpx.TimeoutException:
            logger.warning(f"LLM {model} timed out after {time.time() - start:.2f}s")
            raise

        duration = time.time() - start
        data = response.json()
        usage = data.get("usage") or {}
        logger.info(
            f"LLM: {model} {duration:.2f}s, {usage.get('prompt_tokens', 0)} prompt, "
            f"{usage.get('completion_tokens', 0)} completion tokens"
        )
        parsed = self._parse_response(data)
        parsed.status_code = response.status_code
        parsed.request_id = response.headers.get("x-request-id") or data.get("id")
        return parsed

    def _parse_response(self, data: dict[str, Any]) -> LLMResponse:
        """Parse a chat-completions body; a body without choices is malformed."""
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Malformed LLM response: no choices")

        choice = choices[0] or {}
        message = choice.get("message") or {}
        content = message.get("content")
        images = [
            image["image_url"]["url"]
            for image in message.get("images") or []
            if isinstance(image, dict)
            and isinstance(image.get("image_url"), dict)
            and image["image_url"].get("url")
        ]

        return LLMResponse(
            content=content if isinstance(content, str) else None,
            finish_reason=choice.get("finish_reason"),
            usage=data.get("usage") or {},
            model=data.get("model"),
            images=images,
        )


_shared_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Process-wide client (connection pooling across requests)."""
    global _shared_client
    if _shared_client is None:
        _shared_client = LLMClient()
    return _shared_client


async def close_llm_client() -> None:
    global _shared_client
    if _shared_client is not None:
        await _shared_client.close()
        _shared_client = None
