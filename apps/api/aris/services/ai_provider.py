"""Chat model providers: OpenAI chat completions and Google Gemini.

Both speak the same small interface (``chat`` and ``validate_key``) so the
rest of the code never sees a vendor payload.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from aris.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

CHAT_TIMEOUT_SECONDS = 60.0
VALIDATE_TIMEOUT_SECONDS = 10.0

# USD per 1M tokens, approximate list prices
MODEL_PRICING: dict[str, dict[str, Decimal]] = {
    "gpt-4o-mini": {"input": Decimal("0.15"), "output": Decimal("0.60")},
    "gpt-4o": {"input": Decimal("2.50"), "output": Decimal("10.00")},
    "gpt-4.1-mini": {"input": Decimal("0.40"), "output": Decimal("1.60")},
    "gemini-2.0-flash": {"input": Decimal("0.10"), "output": Decimal("0.40")},
    "gemini-1.5-flash": {"input": Decimal("0.075"), "output": Decimal("0.30")},
    "gemini-1.5-pro": {"input": Decimal("1.25"), "output": Decimal("5.00")},
}

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.0-flash",
}


class AIProviderError(Exception):
    """The upstream model API failed or returned an unusable payload."""


@dataclass
class ChatMessage:
    role: str  # system, user or assistant
    content: str


@dataclass
class ChatResponse:
    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str

    @property
    def estimated_cost_usd(self) -> Decimal:
        pricing = MODEL_PRICING.get(self.model)
        if not pricing:
            return Decimal("0")
        million = Decimal("1000000")
        return (
            Decimal(self.prompt_tokens) / million * pricing["input"]
            + Decimal(self.completion_tokens) / million * pricing["output"]
        )


class AIProvider(ABC):
    """A chat model behind an HTTP API."""

    name: str = ""
    base_url: str = ""

    def __init__(
        self,
        api_key: str,
        default_model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model or DEFAULT_MODELS.get(self.name, "")
        self.transport = transport

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        """Run one chat completion."""

    @abstractmethod
    async def validate_key(self) -> bool:
        """True when the provider accepts the key."""

    async def _post_json(self, path: str, body: dict[str, Any], **kwargs) -> dict[str, Any]:
        """
        POST with retries and return the decoded body.

        Raises:
            AIProviderError: transport failure or HTTP error status
        """
        try:
            async with httpx.AsyncClient(timeout=CHAT_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await request_with_retries(
                    lambda: client.post(f"{self.base_url}{path}", json=body, **kwargs)
                )
        except httpx.RequestError as exc:
            raise AIProviderError(f"{self.name} request failed: {type(exc).__name__}") from exc
        if response.status_code >= 400:
            raise AIProviderError(f"{self.name} API returned HTTP {response.status_code}")
        return response.json()

    async def _get_ok(self, path: str, **kwargs) -> bool:
        try:
            async with httpx.AsyncClient(timeout=VALIDATE_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s key validation failed: %s", self.name, type(exc).__name__)
            return False
        return response.status_code == 200


class OpenAIProvider(AIProvider):
    name = "openai"
    base_url = "https://api.openai.com/v1"

    def _auth(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=2000) -> ChatResponse:
        model = model or self.default_model
        data = await self._post_json(
            "/chat/completions",
            {
                "model": model,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            headers=self._auth(),
        )
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise AIProviderError("OpenAI response missing content") from exc

        usage = data.get("usage") or {}
        return ChatResponse(
            content=content,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=model,
        )

    async def validate_key(self) -> bool:
        return await self._get_ok("/models", headers=self._auth())


class GeminiProvider(AIProvider):
    name = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    @staticmethod
    def _body(messages: list[ChatMessage], temperature: float, max_tokens: int) -> dict[str, Any]:
        # System prompts go to systemInstruction; assistant turns use the "model" role
        system = [{"text": m.content} for m in messages if m.role == "system"]
        contents = [
            {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
            for m in messages
            if m.role != "system"
        ]
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if system:
            body["systemInstruction"] = {"parts": system}
        return body

    async def chat(self, messages, model=None, temperature=0.7, max_tokens=2000) -> ChatResponse:
        model = model or self.default_model
        data = await self._post_json(
            f"/models/{model}:generateContent",
            self._body(messages, temperature, max_tokens),
            params={"key": self.api_key},
        )
        try:
            content = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIProviderError("Gemini response missing content") from exc

        usage = data.get("usageMetadata") or {}
        prompt_tokens = usage.get("promptTokenCount", 0)
        completion_tokens = usage.get("candidatesTokenCount", 0)
        return ChatResponse(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            model=model,
        )

    async def validate_key(self) -> bool:
        return await self._get_ok("/models", params={"key": self.api_key})


PROVIDERS: dict[str, type[AIProvider]] = {
    OpenAIProvider.name: OpenAIProvider,
    GeminiProvider.name: GeminiProvider,
}


def get_provider(provider_name: str, api_key: str, model: str | None = None) -> AIProvider:
    """
    Raises:
        ValueError: unknown provider name
    """
    provider_cls = PROVIDERS.get(provider_name)
    if provider_cls is None:
        raise ValueError(f"Unknown provider: {provider_name}")
    return provider_cls(api_key, default_model=model)
