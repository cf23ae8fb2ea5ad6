"""
Unit Tests for Model Providers

Ollama is exercised through httpx.MockTransport; OpenAI and Gemini through
stand-in clients. No network access.
"""

import pytest
import sys
import os
from types import SimpleNamespace

import httpx

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "linguamate", "src"))

from linguamate.providers import (
    GeminiProvider,
    OllamaProvider,
    OpenAIProvider,
    get_provider,
)
from linguamate.usage_tracker import UsageTracker


def ollama_with(handler, **kwargs):
    return OllamaProvider(
        model_name="llama2",
        base_url="http://ollama.test",
        transport=httpx.MockTransport(handler),
        **kwargs
    )


class TestOllamaProvider:

    @pytest.mark.asyncio
    async def test_successful_generation(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"response": "こんにちは", "prompt_eval_count": 12, "eval_count": 4})

        result = await ollama_with(handler).generate("say hi")

        assert result.text == "こんにちは"
        assert result.input_tokens == 12
        assert result.output_tokens == 4
        assert seen["url"] == "http://ollama.test/api/generate"
        assert b'"stream":false' in seen["body"].replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_connection_refused_returns_friendly_text(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await ollama_with(handler).generate("hi")
        assert "Could not connect to Ollama" in result.text

    @pytest.mark.asyncio
    async def test_unknown_model(self):
        result = await ollama_with(lambda request: httpx.Response(404, text="model not found")).generate("hi")
        assert 'The model "llama2" was not found' in result.text

    @pytest.mark.asyncio
    async def test_bad_request(self):
        result = await ollama_with(lambda request: httpx.Response(400, text="bad")).generate("hi")
        assert "issue with the request format" in result.text

    @pytest.mark.asyncio
    async def test_invalid_payload(self):
        result = await ollama_with(lambda request: httpx.Response(200, json={"done": True})).generate("hi")
        assert "invalid response format" in result.text

    @pytest.mark.asyncio
    async def test_usage_is_logged(self):
        tracker = UsageTracker()
        provider = ollama_with(
            lambda request: httpx.Response(200, json={"response": "ok", "prompt_eval_count": 3, "eval_count": 2}),
            usage_tracker=tracker,
            user_id="learner-1",
        )

        await provider.generate("hi")
        summary = await tracker.get_usage_summary("learner-1")

        assert summary["totalRequests"] == 1
        assert summary["totalTokens"] == 5


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3),
        )


def openai_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestOpenAIProvider:

    @pytest.mark.asyncio
    async def test_mock_reply_without_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAIProvider(api_key="")

        result = await provider.generate("hola")

        assert result.text == 'This is a mock response. You said: "hola"'

    @pytest.mark.asyncio
    async def test_completion(self):
        completions = FakeCompletions(content="Bonjour !")
        provider = OpenAIProvider(model_name="gpt-3.5-turbo", client=openai_client(completions))

        result = await provider.generate("hello")

        assert result.text == "Bonjour !"
        assert result.input_tokens == 7
        assert completions.calls[0]["temperature"] == 0.7
        assert completions.calls[0]["messages"][-1] == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message,expected", [
        ("Incorrect API key provided", "issue with the API key"),
        ("You exceeded your quota, check your billing details", "billing issue"),
        ("Rate limit reached for requests", "rate limit has been reached"),
        ("The model `gpt-9` does not exist", "issue with the AI models"),
        ("socket closed", "error while processing your request"),
    ])
    async def test_errors_become_friendly_text(self, message, expected):
        provider = OpenAIProvider(client=openai_client(FakeCompletions(error=RuntimeError(message))))

        result = await provider.generate("hello")

        assert expected in result.text


class FakeGeminiModel:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error

    async def generate_content_async(self, prompt):
        if self.error:
            raise self.error
        return SimpleNamespace(
            text=self.text,
            usage_metadata=SimpleNamespace(prompt_token_count=10, candidates_token_count=5),
        )


class TestGeminiProvider:

    @pytest.fixture
    def provider(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        return GeminiProvider(model_name="gemini-2.0-flash")

    @pytest.mark.asyncio
    async def test_missing_key_returns_error_text(self, provider):
        result = await provider.generate("hi")
        assert "Gemini API" in result.text

    @pytest.mark.asyncio
    async def test_generation(self, provider):
        provider.model = FakeGeminiModel(text='{"response": "やあ"}')

        result = await provider.generate("hi")

        assert result.text == '{"response": "やあ"}'
        assert result.output_tokens == 5

    @pytest.mark.asyncio
    async def test_api_error_returns_error_text(self, provider):
        provider.model = FakeGeminiModel(error=RuntimeError("quota"))

        result = await provider.generate("hi")

        assert result.text == GeminiProvider.ERROR_MESSAGE


class TestGetProvider:

    def test_selects_by_name(self):
        assert isinstance(get_provider("ollama"), OllamaProvider)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert isinstance(get_provider(), OpenAIProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_provider("claude")
