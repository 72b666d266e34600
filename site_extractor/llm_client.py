"""
Async LLM clients with a Gemini/OpenAI/Anthropic provider switch.

Uses the Factory pattern (LLMClient.create) to instantiate the right provider
based on env vars or explicit argument. Each provider implements BaseLLMClient
so the Extractor doesn't need to know which LLM is behind the call.

A client performs exactly one attempt per complete() call; retries belong to
the Extractor.
"""

import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Union

import httpx

from .schemas import ExtractorConfig, LLMCompletion, TokenUsage
from .exceptions import LLMClientError
from .logger import get_module_logger

logger = get_module_logger("llm_client")


class LLMProvider(Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    provider: str = "base"
    api_key: Optional[str] = None
    model: Optional[str] = None

    @abstractmethod
    async def complete(self, prompt: str, config: ExtractorConfig) -> LLMCompletion:
        """
        Send a prompt to the LLM and return the generated text.

        Args:
            prompt: The full extraction prompt
            config: Generation settings (temperature, token limit, timeout)

        Returns:
            LLMCompletion with text and token usage

        Raises:
            LLMClientError: On any failed attempt
        """
        pass

    async def aclose(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


class GeminiClient(BaseLLMClient):
    """Gemini generateContent REST client."""

    provider = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0
    ):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        # Only close the HTTP client if we created it
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @staticmethod
    def build_body(prompt: str, config: ExtractorConfig) -> dict:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_output_tokens,
                "responseMimeType": config.response_mime_type,
            },
        }

    async def complete(self, prompt: str, config: ExtractorConfig) -> LLMCompletion:
        api_key = config.api_key or self.api_key
        if not api_key:
            raise LLMClientError("Gemini API key not provided", provider=self.provider)

        url = config.endpoint.format(model=config.model)
        try:
            response = await self.http_client.post(
                url,
                params={"key": api_key},
                json=self.build_body(prompt, config),
                timeout=config.request_timeout,
            )
        except httpx.TimeoutException as e:
            raise LLMClientError(f"Request timed out: {e}", provider=self.provider)
        except httpx.HTTPError as e:
            raise LLMClientError(f"Network error: {e}", provider=self.provider)

        if not 200 <= response.status_code < 300:
            raise LLMClientError(
                f"API error {response.status_code}: {response.text[:500]}",
                provider=self.provider,
                status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMClientError(f"API response body is not valid JSON: {e}", provider=self.provider)

        # Expected path: candidates[0].content.parts[0].text
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise LLMClientError(
                "Invalid API response structure: no candidates[0].content.parts[0].text",
                provider=self.provider,
                details={"finish_reason": _finish_reason(data)}
            )
        if not isinstance(text, str) or not text:
            raise LLMClientError("Empty generation in candidate", provider=self.provider)

        usage = data.get("usageMetadata") or {}
        return LLMCompletion(
            text=text,
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokenCount"),
                completion_tokens=usage.get("candidatesTokenCount"),
                total_tokens=usage.get("totalTokenCount"),
            ),
            model=config.model,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()


def _finish_reason(data: Any) -> Optional[str]:
    try:
        return data["candidates"][0].get("finishReason")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


class OpenAIClient(BaseLLMClient):
    """OpenAI API client."""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini"
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise LLMClientError("OpenAI API key not provided", provider=self.provider)
        self.model = model

        # Lazy import: only require the openai SDK when this provider is used
        try:
            from openai import AsyncOpenAI
            self.client = AsyncOpenAI(api_key=self.api_key)
        except ImportError:
            raise LLMClientError(
                "openai package not installed. Run: pip install openai",
                provider=self.provider
            )

    async def complete(self, prompt: str, config: ExtractorConfig) -> LLMCompletion:
        kwargs = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": config.temperature,
            "max_tokens": config.max_output_tokens,
            "timeout": config.request_timeout,
        }
        if config.response_mime_type == "application/json":
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            raise LLMClientError(
                f"OpenAI API call failed: {e}",
                provider=self.provider,
                status_code=getattr(e, "status_code", None)
            )

        if not response.choices or not response.choices[0].message.content:
            raise LLMClientError("OpenAI returned no generation candidate", provider=self.provider)

        usage = response.usage
        return LLMCompletion(
            text=response.choices[0].message.content,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", None),
                completion_tokens=getattr(usage, "completion_tokens", None),
                total_tokens=getattr(usage, "total_tokens", None),
            ),
            model=self.model,
        )

    async def aclose(self) -> None:
        await self.client.close()


class AnthropicClient(BaseLLMClient):
    """Anthropic API client."""

    provider = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514"
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise LLMClientError("Anthropic API key not provided", provider=self.provider)
        self.model = model

        try:
            import anthropic
            self.client = anthropic.AsyncAnthropic(api_key=self.api_key)
        except ImportError:
            raise LLMClientError(
                "anthropic package not installed. Run: pip install anthropic",
                provider=self.provider
            )

    async def complete(self, prompt: str, config: ExtractorConfig) -> LLMCompletion:
        # Anthropic has no JSON response mode, so ask for it in the prompt
        if config.response_mime_type == "application/json":
            prompt = f"{prompt}\n\nRespond with valid JSON only, no additional text."

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=config.max_output_tokens,
                temperature=config.temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=config.request_timeout,
            )
        except Exception as e:
            logger.error(f"Anthropic API error: {e}")
            raise LLMClientError(
                f"Anthropic API call failed: {e}",
                provider=self.provider,
                status_code=getattr(e, "status_code", None)
            )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise LLMClientError("Anthropic returned no generation candidate", provider=self.provider)

        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", None)
        output_tokens = getattr(usage, "output_tokens", None)
        total = input_tokens + output_tokens if input_tokens is not None and output_tokens is not None else None
        return LLMCompletion(
            text=text,
            usage=TokenUsage(prompt_tokens=input_tokens, completion_tokens=output_tokens, total_tokens=total),
            model=self.model,
        )

    async def aclose(self) -> None:
        await self.client.close()


class LLMClient:
    """
    Factory class for creating LLM clients with provider switch.

    Usage:
        # Using environment variable LLM_PROVIDER
        client = LLMClient.create()

        # Explicit provider
        client = LLMClient.create(provider=LLMProvider.OPENAI)
        client = LLMClient.create(provider="anthropic")
    """

    @staticmethod
    def create(
        provider: Union[LLMProvider, str, None] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ) -> BaseLLMClient:
        """
        Create an LLM client for the specified provider.

        Args:
            provider: LLM provider (defaults to env var LLM_PROVIDER or 'gemini')
            api_key: API key (defaults to provider-specific env var)
            model: Model name (OpenAI/Anthropic only; Gemini takes it from
                   the ExtractorConfig)
            http_client: Shared httpx client for the Gemini provider

        Returns:
            Configured LLM client
        """
        # Resolve provider: explicit arg > env var > default to Gemini
        if not isinstance(provider, LLMProvider):
            provider_str = (provider or os.getenv("LLM_PROVIDER", "gemini")).lower()
            try:
                provider = LLMProvider(provider_str)
            except ValueError:
                logger.warning(f"Unknown LLM provider '{provider_str}', defaulting to gemini")
                provider = LLMProvider.GEMINI

        logger.info(f"Creating LLM client for provider: {provider.value}")

        if provider == LLMProvider.GEMINI:
            return GeminiClient(api_key=api_key, http_client=http_client)

        kwargs = {"api_key": api_key}
        if model:
            kwargs["model"] = model
        if provider == LLMProvider.OPENAI:
            return OpenAIClient(**kwargs)
        return AnthropicClient(**kwargs)
