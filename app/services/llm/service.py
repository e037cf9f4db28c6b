"""LLM providers: OpenRouter, Groq, Gemini.

Each provider takes a system prompt and a user payload and returns the raw
completion text. Providers are tried in the configured order by callers that
wrap them in a fallback pipeline; a provider never retries on its own.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
TEMPERATURE = 0.3
MAX_TOKENS = 4000

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def extract_json(text: str) -> str:
    """Strip markdown code fences around a JSON completion."""
    stripped = (text or "").strip()
    if stripped.startswith("```"):
        stripped = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", stripped))
    return stripped


class LlmProvider(ABC):
    """A chat-completion upstream."""

    name: str = "llm"

    def __init__(self, timeout: float = 60.0) -> None:
        self._timeout = timeout

    @abstractmethod
    async def complete(self, system_prompt: str, user_payload: str) -> str:
        """Return the completion text. Raises on transport or API errors."""
        pass


class OpenRouterProvider(LlmProvider):
    name = "openrouter"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        super().__init__(timeout)
        if not api_key:
            raise ValueError("OPENROUTER_API_KEY not provided")
        self._api_key = api_key
        self._model = model
        logger.info(f"[LLM] OpenRouter ready: {self._model}")

    async def complete(self, system_prompt: str, user_payload: str) -> str:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                OPENROUTER_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "HTTP-Referer": "https://waypoint.app",
                    "X-Title": "Waypoint Adventure Context",
                },
                json={
                    "model": self._model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_payload},
                    ],
                    "temperature": TEMPERATURE,
                    "max_tokens": MAX_TOKENS,
                },
            )
            response.raise_for_status()
            data = response.json()

        choices = data.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        return (content or "").strip()


class GroqProvider(LlmProvider):
    name = "groq"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        from groq import AsyncGroq

        super().__init__(timeout)
        if not api_key:
            raise ValueError("GROQ_API_KEY not provided")
        self._client = AsyncGroq(api_key=api_key)
        self._model = model
        logger.info(f"[LLM] Groq ready: {self._model}")

    async def complete(self, system_prompt: str, user_payload: str) -> str:
        try:
            resp = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_payload},
                    ],
                    temperature=TEMPERATURE,
                    max_tokens=MAX_TOKENS,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[Groq] Timeout after {self._timeout}s")
            raise
        return (resp.choices[0].message.content or "").strip()


class GeminiProvider(LlmProvider):
    name = "gemini"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        from google import genai

        super().__init__(timeout)
        if not api_key:
            raise ValueError("GEMINI_API_KEY not provided")
        self._client = genai.Client(api_key=api_key)
        self._model = model
        logger.info(f"[LLM] Gemini ready: {self._model}")

    async def complete(self, system_prompt: str, user_payload: str) -> str:
        # Sent as one prompt so models without system instructions behave the same
        prompt = f"{system_prompt}\n\n{user_payload}"
        try:
            resp = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._model,
                    contents=prompt,
                    config={"temperature": TEMPERATURE, "max_output_tokens": MAX_TOKENS},
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[Gemini] Timeout after {self._timeout}s")
            raise
        return (resp.text or "").strip()


def create_llm_providers(
    order: Sequence[str],
    openrouter_api_key: Optional[str] = None,
    openrouter_model: str = "anthropic/claude-sonnet-4",
    groq_api_key: Optional[str] = None,
    groq_model: str = "llama-3.1-8b-instant",
    gemini_api_key: Optional[str] = None,
    gemini_model: str = "gemini-2.0-flash",
    timeout: float = 60.0,
) -> list[LlmProvider]:
    """Build the configured providers in ``order``, skipping unusable ones."""
    factories = {
        "openrouter": (OpenRouterProvider, openrouter_api_key, openrouter_model),
        "groq": (GroqProvider, groq_api_key, groq_model),
        "gemini": (GeminiProvider, gemini_api_key, gemini_model),
    }

    providers: list[LlmProvider] = []
    for name in order:
        if name not in factories:
            logger.warning(f"[LLM] Unknown provider '{name}' ignored")
            continue
        provider_cls, api_key, model = factories[name]
        if not api_key:
            continue
        try:
            providers.append(provider_cls(api_key, model, timeout))
        except Exception as e:
            logger.info(f"[LLM] {name} init failed: {e}")

    if not providers:
        logger.warning("[LLM] No LLM provider available; adventure context is disabled")
    return providers
