"""Text generation for security enrichment and conversation.

One async entry point, ``generate(prompt)``, over Gemini, GPT, Claude or a
local Ollama model. Unlike a narrator that quietly returns nothing, failures
raise TextGenerationError: the enrichment stage must be able to record why it
degraded.

Usage:
    generator = TextGenerator(provider="gemini", api_key="...")
    text = await generator.generate("Summarize these findings: ...")
"""

import hashlib
import logging

import httpx

from sentinelhub.config import Settings

logger = logging.getLogger(__name__)


_DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "ollama": "llama3.1:8b",
}

_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"
_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"

SYSTEM_PROMPT = (
    "You are a friendly, experienced cybersecurity expert. Be conversational and "
    "natural, like talking to a colleague. Adjust your response length to the "
    "question: brief for simple questions, detailed for complex ones. Use markdown "
    "naturally (**, -, numbers) but don't force it."
)


class TextGenerationError(Exception):
    """The text generation provider failed or returned nothing usable."""


class TextGenerator:
    """Provider-agnostic async text generation.

    Args:
        provider: 'gemini', 'openai', 'anthropic', 'ollama', or None (disabled)
        api_key: API key for the provider (unused for ollama)
        model: Model ID (defaults per provider)
        base_url: Ollama base URL
        max_tokens: Default maximum response tokens
        timeout: HTTP timeout in seconds
    """

    def __init__(
        self,
        provider: str | None,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str = "http://localhost:11434",
        max_tokens: int = 600,
        timeout: float = 30.0,
    ) -> None:
        self.provider = provider
        self.api_key = api_key
        self.model = model or _DEFAULT_MODELS.get(provider or "", provider or "")
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._cache: dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "TextGenerator":
        return cls(
            provider=settings.ai_provider,
            api_key=settings.ai_api_key(),
            model=settings.ai_model,
            base_url=settings.ollama_base_url,
            max_tokens=settings.ai_max_tokens,
            timeout=settings.ai_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        """True when a provider is set and, except for ollama, has a key."""
        if self.provider is None:
            return False
        return self.provider == "ollama" or bool(self.api_key)

    def _cache_key(self, prompt: str, max_tokens: int, temperature: float) -> str:
        raw = f"{self.provider}|{self.model}|{max_tokens}|{temperature}|{prompt}"
        return hashlib.sha256(raw.encode()).hexdigest()

    async def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> str:
        """Generate a response for ``prompt``.

        Identical prompts are answered from an in-process cache.

        Raises:
            TextGenerationError: If unconfigured, on HTTP errors or empty output
        """
        if not self.configured:
            raise TextGenerationError("Text generation provider not configured")

        tokens = max_tokens or self.max_tokens
        key = self._cache_key(prompt, tokens, temperature)
        if key in self._cache:
            logger.debug("Generator cache hit (%s)", self.provider)
            return self._cache[key]

        try:
            if self.provider == "gemini":
                text = await self._call_gemini(prompt, tokens, temperature)
            elif self.provider == "openai":
                text = await self._call_openai(prompt, tokens, temperature)
            elif self.provider == "anthropic":
                text = await self._call_anthropic(prompt, tokens, temperature)
            elif self.provider == "ollama":
                text = await self._call_ollama(prompt, tokens, temperature)
            else:
                raise TextGenerationError(f"Unknown provider: {self.provider}")
        except httpx.HTTPError as e:
            raise TextGenerationError(f"{self.provider} request failed: {e}") from e

        text = (text or "").strip()
        if not text:
            raise TextGenerationError(f"Empty response from {self.provider}")

        self._cache[key] = text
        logger.info("Generated %d chars with %s/%s", len(text), self.provider, self.model)
        return text

    @staticmethod
    def _check(response: httpx.Response, provider: str) -> dict:
        if response.status_code != 200:
            logger.warning("%s API error: %d %s", provider, response.status_code, response.text[:200])
            raise TextGenerationError(f"{provider} API error: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            logger.warning("%s returned a non-JSON body: %s", provider, response.text[:200])
            raise TextGenerationError(f"{provider} returned invalid JSON") from e

    async def _call_gemini(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Call the Gemini generateContent API (key in query string)."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                _GEMINI_URL.format(model=self.model),
                params={"key": self.api_key},
                json={
                    "contents": [{"parts": [{"text": f"{SYSTEM_PROMPT}\n\n{prompt}"}]}],
                    "generationConfig": {
                        "temperature": temperature,
                        "maxOutputTokens": max_tokens,
                        "topP": 0.95,
                        "topK": 64,
                    },
                },
            )
        data = self._check(response, "Gemini")
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return parts[0].get("text") if parts else None

    async def _call_openai(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Call the OpenAI Chat Completions API."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                _OPENAI_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                },
            )
        data = self._check(response, "OpenAI")
        choices = data.get("choices") or []
        return choices[0].get("message", {}).get("content") if choices else None

    async def _call_anthropic(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Call the Anthropic Messages API."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                _ANTHROPIC_URL,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                },
                json={
                    "model": self.model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "system": SYSTEM_PROMPT,
                    "messages": [{"role": "user", "content": prompt}],
                },
            )
        data = self._check(response, "Anthropic")
        content = data.get("content") or []
        if content and content[0].get("type") == "text":
            return content[0]["text"]
        return None

    async def _call_ollama(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Call a local Ollama chat endpoint."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "stream": False,
                    "options": {"temperature": temperature, "num_predict": max_tokens},
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                },
            )
        data = self._check(response, "Ollama")
        return (data.get("message") or {}).get("content")
