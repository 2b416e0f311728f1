"""Reply generation through the OpenAI chat-completions API.

The system prompt is the current contents of the training file, re-read on
every call so edits from the dashboard apply to the next message. Failures
are classified so the bot can answer with a fitting canned message instead
of going silent.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import openai
from openai import AsyncOpenAI

from backend.errors import CompletionServiceError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
TEMPERATURE = 0.7
MAX_TOKENS = 500

QUOTA_EXCEEDED = "quota_exceeded"
RATE_LIMITED = "rate_limited"
TIMEOUT = "timeout"
GENERIC = "generic"

FALLBACK_MESSAGES = {
    QUOTA_EXCEEDED: "Sorry, my API quota is exhausted right now. Please contact the administrator.",
    RATE_LIMITED: "I'm receiving too many requests. Please wait a moment and try again.",
    TIMEOUT: "Sorry, I'm taking too long to think. Please try again in a moment.",
    GENERIC: "Sorry, I'm having technical problems right now. Please try again later.",
}


def classify_error(exc: BaseException) -> str:
    """Map an OpenAI client exception to a fallback kind."""
    if isinstance(exc, openai.RateLimitError):
        code = getattr(exc, "code", None)
        if code is None and isinstance(getattr(exc, "body", None), dict):
            code = exc.body.get("code")
        return QUOTA_EXCEEDED if code == "insufficient_quota" else RATE_LIMITED
    if isinstance(exc, openai.APITimeoutError):
        return TIMEOUT
    return GENERIC


class CompletionService:
    """Generates bot replies with the configured model."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        training_path: str | Path | None = None,
        bot_name: str = "SalvoRadaBot",
        timeout: float = 30,
        client: Any = None,
    ):
        self.model = model
        self.training_path = Path(training_path) if training_path else None
        self.bot_name = bot_name
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def system_prompt(self) -> str:
        training = ""
        if self.training_path and self.training_path.exists():
            try:
                training = self.training_path.read_text(encoding="utf-8")
            except OSError:
                logger.warning("Cannot read training prompt %s", self.training_path)
        return (
            f"{training}\n\nYou are a helpful assistant named {self.bot_name}. "
            "Be friendly and direct in your answers."
        )

    async def complete(self, message: str) -> str:
        """Return the model's reply to ``message``.

        Raises:
            CompletionServiceError: With ``kind`` set to the failure class.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt()},
                    {"role": "user", "content": message},
                ],
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
            )
        except openai.OpenAIError as exc:
            kind = classify_error(exc)
            raise CompletionServiceError(f"Completion failed ({kind}): {exc}", kind=kind) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise CompletionServiceError("Completion returned no text", kind=GENERIC)
        return content.strip()

    async def generate_reply(self, message: str) -> str:
        """Like ``complete`` but never raises: failures become a canned reply."""
        try:
            return await self.complete(message)
        except CompletionServiceError as exc:
            logger.error("AI completion error: %s", exc)
            return FALLBACK_MESSAGES.get(exc.kind, FALLBACK_MESSAGES[GENERIC])
