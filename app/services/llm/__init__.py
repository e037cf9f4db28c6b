"""LLM providers: OpenRouter, Groq, Gemini."""

from .service import (
    GeminiProvider,
    GroqProvider,
    LlmProvider,
    OpenRouterProvider,
    create_llm_providers,
    extract_json,
)

__all__ = [
    "GeminiProvider",
    "GroqProvider",
    "LlmProvider",
    "OpenRouterProvider",
    "create_llm_providers",
    "extract_json",
]
