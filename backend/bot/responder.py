"""Auto responder - answers every inbound WhatsApp message with an AI reply."""

from __future__ import annotations

import logging

from backend.ai.completion import CompletionService
from backend.errors import StoreIOError, TransportError
from backend.stores.conversations import Author, ConversationLog, Direction
from backend.transport.whatsapp_client import InboundMessage

logger = logging.getLogger(__name__)

MEDIA_PLACEHOLDER = "[media]"
APOLOGY_MESSAGE = "Sorry, I'm having technical problems. Please try again in a few moments."


class AutoResponder:
    """Logs inbound messages, replies through the completion service, logs the reply."""

    def __init__(self, completion: CompletionService, conversations: ConversationLog):
        self.completion = completion
        self.conversations = conversations

    def _record(self, number: str, text: str, author: Author, direction: Direction) -> None:
        try:
            self.conversations.append(number, text, author, direction)
        except StoreIOError:
            logger.exception("Could not save conversation record for %s", number)

    async def handle(self, message: InboundMessage) -> str | None:
        """Process one inbound message.

        Returns:
            The text sent back, or None if nothing was sent.
        """
        body = message.body or MEDIA_PLACEHOLDER
        logger.info("Message from %s: %r", message.phone_number, body[:50])

        if message.from_me:
            self._record(message.phone_number, body, Author.BOT, Direction.SENT)
            return None

        self._record(message.phone_number, body, Author.USER, Direction.RECEIVED)
        if message.reply is None:
            logger.warning("Message from %s has no reply channel", message.phone_number)
            return None

        reply_text = await self.completion.generate_reply(body)
        try:
            await message.reply(reply_text)
        except TransportError as exc:
            logger.error("Failed to reply to %s: %s", message.phone_number, exc)
            return await self._apologise(message)

        logger.info("Reply sent to %s", message.phone_number)
        self._record(message.phone_number, reply_text, Author.BOT, Direction.SENT)
        return reply_text

    async def _apologise(self, message: InboundMessage) -> str | None:
        try:
            await message.reply(APOLOGY_MESSAGE)
        except TransportError as exc:
            logger.error("Could not send apology to %s: %s", message.phone_number, exc)
            return None
        self._record(message.phone_number, APOLOGY_MESSAGE, Author.BOT, Direction.SENT)
        return APOLOGY_MESSAGE
