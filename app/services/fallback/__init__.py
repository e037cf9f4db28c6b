"""Fallback fetch pipeline with per-field result merging."""

from .service import (
    Accumulator,
    AttemptOutcome,
    AttemptProfile,
    AttemptRecord,
    FallbackPipeline,
    PipelineResult,
    is_empty,
)

__all__ = [
    "Accumulator",
    "AttemptOutcome",
    "AttemptProfile",
    "AttemptRecord",
    "FallbackPipeline",
    "PipelineResult",
    "is_empty",
]
