"""AI reply generation."""

from backend.ai.completion import FALLBACK_MESSAGES, CompletionService, classify_error

__all__ = ["FALLBACK_MESSAGES", "CompletionService", "classify_error"]
