"""Text generation HTTP client for the sourcing pipeline.

Speaks two wire formats:
- OpenAI-compatible /chat/completions (DeepSeek, Qwen via DashScope, Perplexity)
- Gemini REST generateContent
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel

from libs.core.config import Settings, get_settings
from libs.core.exceptions import ProviderUnavailable

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    """Supported text generation backends."""

    DEEPSEEK = "deepseek"
    QWEN = "qwen"
    GEMINI = "gemini"
    PERPLEXITY = "perplexity"


OPENAI_COMPATIBLE = {Provider.DEEPSEEK.value, Provider.QWEN.value, Provider.PERPLEXITY.value}


@dataclass(frozen=True)
class GenerationConfig:
    """
    Immutable per-call configuration.

    api_key/base_url left as None are filled from Settings at call time.
    """

    provider: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    temperature: Optional[float] = None

    def with_model(self, model: str) -> "GenerationConfig":
        return replace(self, model=model)

    def __repr__(self) -> str:
        # Keep credentials out of logs
        return f"GenerationConfig(provider={self.provider!r}, model={self.model!r})"


class GenerationResponse(BaseModel):
    """Generation response."""

    content: str
    reasoning: Optional[str] = None
    model: str
    provider: str


class TextGenerator(Protocol):
    """Anything that turns (config, messages) into a GenerationResponse."""

    async def generate(
        self, config: GenerationConfig, messages: list[dict[str, str]]
    ) -> GenerationResponse:
        ...


class TextGenerationClient:
    """Async HTTP client for the generation providers."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.providers.request_timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _resolve(self, config: GenerationConfig) -> tuple[str, str, float]:
        """Fill credential, endpoint and timeout from settings."""
        providers = self.settings.providers
        api_key = config.api_key or providers.api_key_for(config.provider)
        if not api_key:
            raise ProviderUnavailable(
                f"Missing API key for provider '{config.provider}'",
                provider=config.provider,
            )
        base_url = config.base_url or providers.base_url_for(config.provider)
        if not base_url:
            raise ProviderUnavailable(
                f"Unsupported provider '{config.provider}'",
                provider=config.provider,
            )
        timeout = config.timeout or providers.request_timeout
        return api_key, base_url.rstrip("/"), timeout

    async def generate(
        self,
        config: GenerationConfig,
        messages: list[dict[str, str]],
    ) -> GenerationResponse:
        """
        Send a completion request.

        Args:
            config: Provider/model/credential for this call
            messages: Ordered chat messages ({"role", "content"})

        Returns:
            GenerationResponse with content and optional reasoning channel

        Raises:
            ProviderUnavailable: Missing credential, HTTP or network failure, unreadable body
        """
        api_key, base_url, timeout = self._resolve(config)
        started = time.monotonic()

        try:
            if config.provider == Provider.GEMINI.value:
                response = await self._generate_gemini(config, messages, api_key, base_url, timeout)
            elif config.provider in OPENAI_COMPATIBLE:
                response = await self._generate_openai_compatible(
                    config, messages, api_key, base_url, timeout
                )
            else:
                raise ProviderUnavailable(
                    f"Unsupported provider '{config.provider}'", provider=config.provider
                )

        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(
                f"HTTP {e.response.status_code}: {e.response.text[:300]}",
                provider=config.provider,
                status_code=e.response.status_code,
                context={"model": config.model},
            ) from e

        except httpx.RequestError as e:
            raise ProviderUnavailable(
                f"Request failed: {e}",
                provider=config.provider,
                context={"model": config.model, "base_url": base_url},
            ) from e

        except ValueError as e:
            raise ProviderUnavailable(
                f"Invalid response body: {e}",
                provider=config.provider,
                context={"model": config.model},
            ) from e

        logger.debug(
            f"[LLM] {config.provider}/{config.model} answered in "
            f"{(time.monotonic() - started) * 1000:.0f}ms"
        )
        return response

    async def generate_with_escalation(
        self,
        config: GenerationConfig,
        messages: list[dict[str, str]],
    ) -> GenerationResponse:
        """
        Generate, walking the model escalation chain on quota/missing-model errors.

        Any other ProviderUnavailable is raised immediately.
        """
        from libs.llm.router import next_config

        current = config
        while True:
            try:
                return await self.generate(current, messages)
            except ProviderUnavailable as e:
                if not e.is_quota_or_missing_model:
                    raise
                fallback = next_config(current)
                if fallback is None:
                    raise
                logger.warning(
                    f"[LLM] {current.provider}/{current.model} unavailable "
                    f"(HTTP {e.status_code}), escalating to {fallback.provider}/{fallback.model}"
                )
                current = fallback

    async def _generate_openai_compatible(
        self,
        config: GenerationConfig,
        messages: list[dict[str, str]],
        api_key: str,
        base_url: str,
        timeout: float,
    ) -> GenerationResponse:
        client = await self._get_client()
        payload: dict[str, Any] = {
            "model": config.model,
            "messages": messages,
            "stream": False,
        }
        if config.temperature is not None:
            payload["temperature"] = config.temperature

        response = await client.post(
            f"{base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ProviderUnavailable("Unexpected response body", provider=config.provider)

        if data.get("error"):
            raise ProviderUnavailable(
                f"Provider error: {data['error']}", provider=config.provider
            )
        choices = data.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise ProviderUnavailable("Empty choices in response", provider=config.provider)

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ProviderUnavailable("Unexpected choice shape in response", provider=config.provider)
        return GenerationResponse(
            content=message.get("content") or "",
            reasoning=message.get("reasoning_content"),
            model=data.get("model") or config.model,
            provider=config.provider,
        )

    async def _generate_gemini(
        self,
        config: GenerationConfig,
        messages: list[dict[str, str]],
        api_key: str,
        base_url: str,
        timeout: float,
    ) -> GenerationResponse:
        client = await self._get_client()

        system_parts = []
        contents = []
        for msg in messages:
            role = msg.get("role", "user")
            text = msg.get("content") or ""
            if role == "system":
                system_parts.append({"text": text})
            else:
                contents.append({
                    "role": "model" if role == "assistant" else "user",
                    "parts": [{"text": text}],
                })

        payload: dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        if config.temperature is not None:
            payload["generationConfig"] = {"temperature": config.temperature}

        response = await client.post(
            f"{base_url}/models/{config.model}:generateContent",
            params={"key": api_key},
            json=payload,
            timeout=timeout,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ProviderUnavailable("Unexpected response body", provider=config.provider)

        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates:
            raise ProviderUnavailable("Empty candidates in response", provider=config.provider)
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            raise ProviderUnavailable("Unexpected candidate shape in response", provider=config.provider)
        parts = [p for p in parts if isinstance(p, dict)]
        text = "".join(p.get("text", "") for p in parts if not p.get("thought"))
        thoughts = "".join(p.get("text", "") for p in parts if p.get("thought"))

        return GenerationResponse(
            content=text,
            reasoning=thoughts or None,
            model=config.model,
            provider=config.provider,
        )


# Singleton instance
_client: TextGenerationClient | None = None


def get_generation_client() -> TextGenerationClient:
    """Get generation client singleton."""
    global _client
    if _client is None:
        _client = TextGenerationClient()
    return _client
