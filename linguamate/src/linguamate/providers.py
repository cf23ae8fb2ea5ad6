"""
Model Generation Providers

Thin adapters over the hosted/local language models. Every provider exposes
`async generate(prompt) -> GenerationResult` and never raises on upstream
failures: the learner gets a friendly canned reply instead.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import google.generativeai as genai
from openai import AsyncOpenAI
from dotenv import load_dotenv

from linguamate.usage_tracker import UsageTracker

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Model output plus token accounting (0 when the backend does not report it)."""
    text: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class BaseProvider:
    """Shared usage logging for providers."""

    name = "base"

    def __init__(self, usage_tracker: Optional[UsageTracker] = None, user_id: str = "anonymous"):
        self.usage_tracker = usage_tracker
        self.user_id = user_id

    async def generate(self, prompt: str) -> GenerationResult:
        raise NotImplementedError

    async def _record_usage(self, result: GenerationResult):
        if not self.usage_tracker:
            return
        try:
            await self.usage_tracker.log_usage(
                self.user_id, result.model, result.input_tokens, result.output_tokens
            )
        except Exception as e:
            logger.warning(f"⚠️ [{self.name}] Failed to log usage: {e}")


class GeminiProvider(BaseProvider):
    """Google Gemini through google-generativeai."""

    name = "Gemini"

    GENERATION_CONFIG = {
        "temperature": 1,
        "top_p": 0.95,
        "top_k": 40,
        "max_output_tokens": 8192,
        "response_mime_type": "text/plain",
    }

    ERROR_MESSAGE = (
        "I encountered an error while connecting to the Gemini API. "
        "Please check your API key and internet connection."
    )
    EMPTY_MESSAGE = "I couldn't generate a proper response. Let's try again!"

    def __init__(self, model_name: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.model_name = model_name or os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.model = None

        if api_key:
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(
                self.model_name,
                generation_config=self.GENERATION_CONFIG,
            )
            logger.info(f"✅ [Gemini] Model initialized: {self.model_name}")
        else:
            logger.warning("⚠️ [Gemini] GOOGLE_API_KEY not set, replies will be canned errors")

    async def generate(self, prompt: str) -> GenerationResult:
        if self.model is None:
            return GenerationResult(text=self.ERROR_MESSAGE, model=self.model_name)

        try:
            response = await self.model.generate_content_async(prompt)
            text = response.text
        except Exception as e:
            logger.error(f"❌ [Gemini] Error calling Gemini API: {e}")
            return GenerationResult(text=self.ERROR_MESSAGE, model=self.model_name)

        if not text:
            logger.error("❌ [Gemini] Invalid response format from Gemini")
            return GenerationResult(text=self.EMPTY_MESSAGE, model=self.model_name)

        usage = getattr(response, "usage_metadata", None)
        result = GenerationResult(
            text=text,
            model=self.model_name,
            input_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            output_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )
        await self._record_usage(result)
        return result


class OllamaProvider(BaseProvider):
    """Local Ollama server, non-streaming /api/generate."""

    name = "Ollama"

    def __init__(
        self,
        model_name: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.model_name = model_name or os.getenv("OLLAMA_MODEL", "llama2")
        self.base_url = (base_url or os.getenv("OLLAMA_URL", "http://localhost:11434")).rstrip("/")
        self.timeout = timeout
        self.transport = transport
        logger.info(f"✅ [Ollama] Using {self.base_url} with model {self.model_name}")

    async def generate(self, prompt: str) -> GenerationResult:
        payload = {"model": self.model_name, "prompt": prompt, "stream": False}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.ConnectError as e:
            logger.error(f"❌ [Ollama] Connection refused: {e}")
            return GenerationResult(
                text="Could not connect to Ollama. Please make sure Ollama is running and accessible.",
                model=self.model_name,
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"❌ [Ollama] HTTP {status}: {e.response.text[:200]}")
            if status == 404:
                text = f'The model "{self.model_name}" was not found. Please check available models with "ollama list".'
            elif status == 400:
                text = "There was an issue with the request format. Please check the server logs."
            else:
                text = self._generic_error()
            return GenerationResult(text=text, model=self.model_name)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ [Ollama] Error calling Ollama API: {e}")
            return GenerationResult(text=self._generic_error(), model=self.model_name)

        if not isinstance(data, dict) or not data.get("response"):
            logger.error(f"❌ [Ollama] Invalid response format: {str(data)[:200]}")
            return GenerationResult(
                text="Sorry, I received an invalid response format from the AI model.",
                model=self.model_name,
            )

        result = GenerationResult(
            text=data["response"],
            model=self.model_name,
            input_tokens=data.get("prompt_eval_count", 0) or 0,
            output_tokens=data.get("eval_count", 0) or 0,
        )
        await self._record_usage(result)
        return result

    @staticmethod
    def _generic_error() -> str:
        return (
            "I encountered an error while connecting to the Ollama AI service. "
            "Please check if Ollama is running properly."
        )


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions; returns a mock reply when no key is configured."""

    name = "OpenAI"

    def __init__(self, model_name: Optional[str] = None, api_key: Optional[str] = None, client=None, **kwargs):
        super().__init__(**kwargs)
        self.model_name = model_name or os.getenv("OPENAI_MODEL", "gpt-3.5-turbo")
        self.llm_client: Optional[AsyncOpenAI] = client

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if self.llm_client is None and api_key and api_key.strip():
            self.llm_client = AsyncOpenAI(api_key=api_key)

        if self.llm_client is None:
            logger.warning("⚠️ [OpenAI] OPENAI_API_KEY not set, using mock responses")

    async def generate(self, prompt: str) -> GenerationResult:
        if self.llm_client is None:
            return GenerationResult(text=f'This is a mock response. You said: "{prompt}"', model="mock")

        try:
            response = await self.llm_client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": "You are a helpful language tutor."},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.7,
            )
        except Exception as e:
            logger.error(f"❌ [OpenAI] Error calling OpenAI API: {e}")
            return GenerationResult(text=self._error_message(str(e)), model=self.model_name)

        text = response.choices[0].message.content if response.choices else None
        usage = getattr(response, "usage", None)
        result = GenerationResult(
            text=text or "Sorry, I could not generate a response.",
            model=self.model_name,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        await self._record_usage(result)
        return result

    @staticmethod
    def _error_message(error: str) -> str:
        lowered = error.lower()
        if "api key" in lowered:
            return "There seems to be an issue with the API key. The API key might be invalid or expired."
        if "billing" in lowered:
            return "There seems to be a billing issue with the OpenAI account. Please check your account status."
        if "rate limit" in lowered:
            return "The OpenAI API rate limit has been reached. Please try again later."
        if "model" in lowered:
            return (
                "There was an issue with the AI models. The server might be using models "
                "that are not available with your current API key."
            )
        return (
            "I encountered an error while processing your request. "
            "This might be due to API limits or configuration issues."
        )


PROVIDERS = {
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
}


def get_provider(name: Optional[str] = None, **kwargs) -> BaseProvider:
    """
    Create the configured provider.

    Args:
        name: Provider name (gemini, ollama, openai); defaults to LLM_PROVIDER

    Raises:
        ValueError: for unknown provider names
    """
    name = (name or os.getenv("LLM_PROVIDER", "gemini")).strip().lower()
    if name not in PROVIDERS:
        raise ValueError(f"Unknown LLM provider: {name}. Expected one of: {', '.join(PROVIDERS)}")
    return PROVIDERS[name](**kwargs)
