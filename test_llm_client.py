"""
Tests for the Gemini REST client, the provider factory and external prompt
loading. HTTP is served by httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from site_extractor.llm_client import GeminiClient, LLMClient, LLMProvider
from site_extractor.prompts import (
    PromptOverrides, build_prompt, get_site_instructions, load_external_prompt_config,
    render_page_content, SITE_INSTRUCTIONS,
)
from site_extractor.extractor import Extractor
from site_extractor.exceptions import ErrorType, LLMClientError
from site_extractor.schemas import ExtractorConfig, PageData
from site_extractor.site_types import SiteType

from conftest import RecordingSleep


def gemini_payload(text: str) -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5, "totalTokenCount": 15},
    }


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestGeminiClient:

    @pytest.mark.asyncio
    async def test_request_and_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=gemini_payload('{"title": "Hello"}'))

        config = ExtractorConfig(api_key="secret", model="gemini-test", temperature=0.2)
        async with mock_client(handler) as http:
            completion = await GeminiClient(http_client=http).complete("PROMPT", config)

        assert seen["url"].path.endswith("/models/gemini-test:generateContent")
        assert seen["url"].params["key"] == "secret"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "PROMPT"
        assert seen["body"]["generationConfig"] == {
            "temperature": 0.2,
            "maxOutputTokens": 2048,
            "responseMimeType": "application/json",
        }
        assert completion.text == '{"title": "Hello"}'
        assert completion.model == "gemini-test"
        assert completion.usage.prompt_tokens == 10
        assert completion.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request):
            return httpx.Response(429, text="Resource has been exhausted (e.g. check quota).")

        async with mock_client(handler) as http:
            with pytest.raises(LLMClientError) as exc_info:
                await GeminiClient(http_client=http).complete("p", ExtractorConfig(api_key="k"))

        assert exc_info.value.status_code == 429
        assert exc_info.value.message.startswith("API error 429:")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload, message", [
        ({"candidates": []}, "Invalid API response structure"),
        ({"promptFeedback": {"blockReason": "SAFETY"}}, "Invalid API response structure"),
        (gemini_payload(""), "Empty generation"),
    ])
    async def test_missing_text(self, payload, message):
        async with mock_client(lambda request: httpx.Response(200, json=payload)) as http:
            with pytest.raises(LLMClientError) as exc_info:
                await GeminiClient(http_client=http).complete("p", ExtractorConfig(api_key="k"))
        assert exc_info.value.message.startswith(message)

    @pytest.mark.asyncio
    async def test_body_not_json(self):
        async with mock_client(lambda request: httpx.Response(200, text="<html>oops</html>")) as http:
            with pytest.raises(LLMClientError, match="not valid JSON"):
                await GeminiClient(http_client=http).complete("p", ExtractorConfig(api_key="k"))

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as http:
            with pytest.raises(LLMClientError, match="Network error"):
                await GeminiClient(http_client=http).complete("p", ExtractorConfig(api_key="k"))

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        async with mock_client(lambda request: httpx.Response(200)) as http:
            with pytest.raises(LLMClientError, match="key not provided"):
                await GeminiClient(http_client=http).complete("p", ExtractorConfig())

    @pytest.mark.asyncio
    async def test_extractor_retries_server_errors(self):
        responses = [
            httpx.Response(503, text="The model is overloaded."),
            httpx.Response(200, json=gemini_payload('```json\n{"title": "Recovered title"}\n```')),
        ]

        sleep = RecordingSleep()
        config = ExtractorConfig(api_key="k")
        async with mock_client(lambda request: responses.pop(0)) as http:
            extractor = Extractor(
                llm_client=GeminiClient(http_client=http), config=config, sleep=sleep,
                jitter=lambda low, high: 0.0, prompt_overrides=PromptOverrides(),
            )
            result = await extractor.extract(PageData(title="A page", text_content="text"))

        assert result.success is True
        assert result.data == {"title": "Recovered title"}
        assert result.metadata.attempt_count == 2
        assert result.metadata.usage.total_tokens == 15
        assert sleep.delays == [1.0]


class TestFactory:

    @pytest.mark.asyncio
    async def test_default_is_gemini(self, monkeypatch):
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        client = LLMClient.create(api_key="k")
        assert isinstance(client, GeminiClient)
        assert client.api_key == "k"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unknown_provider_falls_back(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "bogus")
        client = LLMClient.create()
        assert isinstance(client, GeminiClient)
        await client.aclose()

    @pytest.mark.parametrize("provider, env_var", [
        (LLMProvider.OPENAI, "OPENAI_API_KEY"),
        ("anthropic", "ANTHROPIC_API_KEY"),
    ])
    def test_missing_key_for_sdk_providers(self, monkeypatch, provider, env_var):
        monkeypatch.delenv(env_var, raising=False)
        with pytest.raises(LLMClientError, match="API key not provided"):
            LLMClient.create(provider=provider)

    def test_extractor_reports_client_setup_as_config_error(self, monkeypatch):
        from site_extractor.exceptions import ConfigError

        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ConfigError):
            Extractor(config=ExtractorConfig(api_key="k"), provider="openai")


class TestExternalPrompts:

    @pytest.mark.asyncio
    async def test_overrides_loaded(self):
        payload = {
            "basePrompt": "Custom instructions ({schemaVersion})",
            "siteInstructions": {"amazon": "AMAZON ONLY", "myspace": "ignored"},
        }
        async with mock_client(lambda request: httpx.Response(200, json=payload)) as http:
            overrides = await load_external_prompt_config("https://prompts.example.com/x.json", http)

        assert overrides.site_instructions == {SiteType.AMAZON: "AMAZON ONLY"}
        prompt = build_prompt(PageData(title="T"), "amazon", overrides=overrides)
        assert prompt.startswith("Custom instructions (site-extractor-v1)")
        assert "AMAZON ONLY" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["a", "list"]),
    ])
    async def test_failure_falls_back(self, response, caplog):
        async with mock_client(lambda request: response) as http:
            overrides = await load_external_prompt_config("https://prompts.example.com/x.json", http)

        assert overrides == PromptOverrides()
        assert "External prompt config failed" in caplog.text

    @pytest.mark.asyncio
    async def test_no_url(self):
        assert await load_external_prompt_config(None) == PromptOverrides()

    def test_site_instructions_fallback(self):
        assert get_site_instructions("myspace") == SITE_INSTRUCTIONS[SiteType.GENERIC]

    def test_render_truncates(self):
        page = PageData(title="T", text_content="x" * 50, meta={"description": "d" * 600}, description="D")
        rendered = render_page_content(page, max_content_length=10)
        assert "TEXT: " + "x" * 10 + "\n" in rendered
        meta_line = next(line for line in rendered.split("\n") if line.startswith("META: "))
        assert len(meta_line) == len("META: ") + 500
        assert rendered.endswith("DESCRIPTION: D")
