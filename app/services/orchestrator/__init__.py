"""Cache, rate limit and produce: one orchestrator per operation."""

from .service import RequestOrchestrator

__all__ = ["RequestOrchestrator"]
