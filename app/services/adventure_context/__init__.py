"""LLM-generated travel context for adventure plans."""

from .service import (
    CONTEXT_FIELDS,
    SYSTEM_PROMPT,
    AdventureContextService,
    classify_completion,
    parse_context,
)

__all__ = [
    "CONTEXT_FIELDS",
    "SYSTEM_PROMPT",
    "AdventureContextService",
    "classify_completion",
    "parse_context",
]
