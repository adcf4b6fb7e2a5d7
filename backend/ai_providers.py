"""AI provider adapters behind one interface.

Every provider turns a prompt into raw response text. HTTP goes through an
injected httpx.AsyncClient so callers control pooling and tests can mount a
MockTransport.
"""

from __future__ import annotations

import json
import random
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from errors import ProviderError, ProviderTimeout, RateLimited
from logger import AICallTracker, extract_token_usage, get_ai_logger
from prompts import build_ollama_enhanced_prompt
from settings import (
    DEFAULT_TEMPERATURE,
    OLLAMA_DEFAULT_MODEL,
    OLLAMA_FALLBACK_MODELS,
    OLLAMA_PROBE_TIMEOUT,
    Settings,
)

ai_log = get_ai_logger()

SYSTEM_PROMPT = (
    "You are a quiz question generator. CRITICAL FORMATTING RULES:\n\n"
    "1. MATHEMATICAL EXPRESSIONS: For ALL mathematical expressions, equations, formulas, or "
    "symbols, you MUST use LaTeX syntax wrapped in $ or $$ delimiters. Examples: inline math "
    "like $E = mc^2$ or $\\frac{x+1}{2}$, display math like $$\\int_0^\\infty e^{-x} dx = 1$$. "
    "NEVER output math as plain text.\n\n"
    "2. CODE SNIPPETS: For ALL code snippets, you MUST use markdown code blocks with language "
    "specification. Format: ```language\\ncode here\\n```. Use inline code `like this` for "
    "variable names, function names, and keywords. NEVER output code as plain text.\n\n"
    "3. OUTPUT FORMAT: Always output valid JSON arrays starting with [ and ending with ]."
)

CLAUDE_ENDPOINT = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
OPENAI_ENDPOINT = "https://api.openai.com/v1/chat/completions"
GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models"

# Status code -> (message, messageKey)
STATUS_MESSAGES = {
    400: ("Invalid request. Please check your input and try again.", "error_invalid_request"),
    401: ("Invalid API key. Please check your credentials.", "error_invalid_api_key"),
    402: ("Billing or quota issue. Please check your account balance.",
          "error_api_quota_exceeded"),
    403: ("API access forbidden. Please check your API key permissions.", "error_api_forbidden"),
    404: ("Model or endpoint not found.", "error_model_not_found"),
}


def max_tokens_for(question_count: Optional[int]) -> int:
    """Output budget: ~2000 tokens per question, never below 8192."""
    count = max(1, min(question_count or 5, 20))
    return max(8192, count * 2000)


def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    ai_log.error(f"❌ {provider} API error {status}: {response.text[:300]}")
    if status == 429:
        retry_after = response.headers.get("retry-after", "")
        raise RateLimited(f"{provider} rate limit exceeded. Please try again later.",
                          retry_after=int(retry_after) if retry_after.isdigit() else 60)
    message, key = STATUS_MESSAGES.get(status, (f"{provider} API error ({status})",
                                                f"error_{provider.lower()}_api"))
    raise ProviderError(message, status_code=status if status in STATUS_MESSAGES else 502,
                        message_key=key, provider=provider)


class AIProvider(ABC):
    """One hosted or local model service."""

    name: str = ""
    requires_key: bool = True
    default_model: str = ""

    def __init__(self, client: httpx.AsyncClient, *, model: Optional[str] = None,
                 api_key: Optional[str] = None, timeout: float = 120.0,
                 temperature: float = DEFAULT_TEMPERATURE):
        self.client = client
        self.model = model or self.default_model
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self.temperature = temperature

    def prepare_prompt(self, prompt: str) -> str:
        return prompt

    @abstractmethod
    async def _send(self, prompt: str, question_count: int) -> httpx.Response:
        """Issue the HTTP call and return the (already checked) response."""

    async def _payload(self, response: httpx.Response) -> dict[str, Any]:
        return response.json()

    @abstractmethod
    def extract_text(self, payload: dict[str, Any]) -> str:
        """Pull the generated text out of the provider's response body."""

    async def request(self, prompt: str, *, question_count: int = 5) -> dict[str, Any]:
        """Call the provider and return its raw JSON body."""
        if self.requires_key and not self.api_key:
            raise ProviderError("API key is required", status_code=400,
                                message_key="error_api_key_required", provider=self.name)
        prompt = self.prepare_prompt(prompt)
        tracker = AICallTracker(provider=self.name, model=self.model, prompt_chars=len(prompt),
                                extra={"question_count": question_count})
        tracker.start()
        try:
            response = await self._send(prompt, question_count)
            raise_for_provider_status(self.name, response)
            payload = await self._payload(response)
        except httpx.TimeoutException as e:
            tracker.finish(success=False, error="timeout")
            raise ProviderTimeout(f"{self.name} request timed out", provider=self.name) from e
        except httpx.HTTPError as e:
            tracker.finish(success=False, error=str(e))
            raise ProviderError(f"Failed to connect to {self.name}: {e}",
                                message_key=f"error_{self.name.lower()}_connect",
                                provider=self.name) from e
        except (ProviderError, RateLimited) as e:
            tracker.finish(success=False, error=str(e),
                           status_code=getattr(e, "status_code", None))
            raise

        tracker.finish(response_chars=len(self.extract_text(payload)),
                       token_usage=extract_token_usage(payload),
                       status_code=response.status_code)
        return payload

    async def generate(self, prompt: str, *, question_count: int = 5) -> str:
        payload = await self.request(prompt, question_count=question_count)
        text = self.extract_text(payload)
        if not text.strip():
            raise ProviderError(f"{self.name} returned an empty response", provider=self.name)
        return text


class OllamaProvider(AIProvider):
    """Local model server; the generate endpoint streams NDJSON chunks."""

    name = "Ollama"
    requires_key = False
    default_model = OLLAMA_DEFAULT_MODEL

    def __init__(self, client: httpx.AsyncClient, *, base_url: str,
                 rng: Optional[random.Random] = None, **kwargs: Any):
        super().__init__(client, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.rng = rng or random.Random()

    def prepare_prompt(self, prompt: str) -> str:
        return build_ollama_enhanced_prompt(prompt, rng=self.rng)

    async def _send(self, prompt: str, question_count: int) -> httpx.Response:
        body = {
            "model": self.model,
            "prompt": prompt,
            "stream": True,
            "options": {"temperature": self.temperature, "seed": self.rng.randint(0, 9999)},
        }
        request = self.client.build_request("POST", f"{self.base_url}/api/generate", json=body,
                                            timeout=self.timeout)
        response = await self.client.send(request, stream=True)
        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
        return response

    async def _payload(self, response: httpx.Response) -> dict[str, Any]:
        """Fold the stream into one body shaped like the non-streaming reply."""
        pieces: list[str] = []
        final: dict[str, Any] = {}
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    ai_log.warning(f"⚠️ Skipping malformed Ollama chunk: {line[:80]}")
                    continue
                if chunk.get("error"):
                    raise ProviderError(f"Ollama error: {chunk['error']}", provider=self.name)
                pieces.append(chunk.get("response", ""))
                if chunk.get("done"):
                    final = chunk
        finally:
            await response.aclose()
        return {**final, "response": "".join(pieces)}

    def extract_text(self, payload: dict[str, Any]) -> str:
        return payload.get("response", "") or ""

    async def list_models(self) -> list[str]:
        return await list_ollama_models(self.client, self.base_url)


class OpenAIProvider(AIProvider):
    name = "OpenAI"
    default_model = "gpt-4o-mini"

    async def _send(self, prompt: str, question_count: int) -> httpx.Response:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
        }
        return await self.client.post(OPENAI_ENDPOINT, json=body, timeout=self.timeout,
                                      headers={"Authorization": f"Bearer {self.api_key}"})

    def extract_text(self, payload: dict[str, Any]) -> str:
        try:
            return payload["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            return ""


class ClaudeProvider(AIProvider):
    """Anthropic messages API with an assistant prefill of `[`."""

    name = "Claude"
    default_model = "claude-sonnet-4-5"
    prefill = "["

    async def _send(self, prompt: str, question_count: int) -> httpx.Response:
        body = {
            "model": self.model,
            "max_tokens": max_tokens_for(question_count),
            "system": SYSTEM_PROMPT,
            "messages": [
                {"role": "user", "content": prompt},
                {"role": "assistant", "content": self.prefill},
            ],
        }
        headers = {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION}
        return await self.client.post(CLAUDE_ENDPOINT, json=body, headers=headers,
                                      timeout=self.timeout)

    def extract_text(self, payload: dict[str, Any]) -> str:
        blocks = payload.get("content") or []
        text = "".join(b.get("text", "") for b in blocks if isinstance(b, dict))
        if not text:
            return ""
        # The prefill is not echoed back
        return text if text.lstrip().startswith(self.prefill) else self.prefill + text


class GeminiProvider(AIProvider):
    name = "Gemini"
    default_model = "gemini-2.5-flash"

    async def _send(self, prompt: str, question_count: int) -> httpx.Response:
        body = {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": max_tokens_for(question_count),
            },
        }
        return await self.client.post(f"{GEMINI_ENDPOINT}/{self.model}:generateContent",
                                      params={"key": self.api_key}, json=body,
                                      timeout=self.timeout)

    def extract_text(self, payload: dict[str, Any]) -> str:
        try:
            parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return ""
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


PROVIDERS: dict[str, type[AIProvider]] = {
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
}


def get_provider(name: str, client: httpx.AsyncClient, settings: Settings, *,
                 model: Optional[str] = None, api_key: Optional[str] = None) -> AIProvider:
    """Build a provider, preferring the server-side key over a client-supplied one."""
    key = (name or "").lower()
    if key not in PROVIDERS:
        raise ProviderError(f"Unknown AI provider: {name}", status_code=400,
                            message_key="error_unknown_provider", provider=name)
    if key == "ollama":
        return OllamaProvider(client, base_url=settings.ollama_url, model=model,
                              timeout=settings.ai_request_timeout)
    server_key, server_model = {
        "openai": (settings.openai_api_key, settings.openai_model),
        "claude": (settings.claude_api_key, settings.claude_model),
        "gemini": (settings.gemini_api_key, settings.gemini_model),
    }[key]
    return PROVIDERS[key](client, model=model or server_model, api_key=server_key or api_key,
                          timeout=settings.ai_request_timeout)


async def list_ollama_models(client: httpx.AsyncClient, base_url: str) -> list[str]:
    """Installed local models, or the fallback list when the server is unreachable."""
    try:
        response = await client.get(f"{base_url.rstrip('/')}/api/tags",
                                    timeout=OLLAMA_PROBE_TIMEOUT)
        response.raise_for_status()
        models = [m.get("name") for m in response.json().get("models", []) if m.get("name")]
    except (httpx.HTTPError, ValueError) as e:
        ai_log.warning(f"⚠️ Ollama unavailable ({e.__class__.__name__}), using fallback models")
        return list(OLLAMA_FALLBACK_MODELS)
    ai_log.debug(f"Loaded Ollama models: {models}")
    return models or list(OLLAMA_FALLBACK_MODELS)
