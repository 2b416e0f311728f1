"""Scheduler loop - delivers due scheduled messages through the WhatsApp transport.

Every tick lists the scheduled-message store and, for each pending record
whose trigger instant has passed, resolves the recipient, sends the body and
marks the record sent. A failed delivery leaves the record pending; it is
retried on the next tick.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from backend.errors import StoreIOError, TransportError
from backend.loops.base_loop import PollingLoop
from backend.stores.conversations import Author, ConversationLog, Direction
from backend.stores.scheduled import ScheduledMessage, ScheduledMessageStore
from backend.utils.logging_utils import log_action
from backend.utils.timestamps import now_iso, utc_now
from backend.utils.uuid_utils import correlation_id

ACTOR = "scheduler"


class SchedulerLoop(PollingLoop):
    """Fixed-interval delivery of pending scheduled messages."""

    def __init__(
        self,
        store: ScheduledMessageStore,
        transport: Any,
        conversations: ConversationLog | None = None,
        audit_dir: str | Path | None = None,
        interval: float = 30,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(interval, clock)
        self.store = store
        self.transport = transport
        self.conversations = conversations
        self.audit_dir = Path(audit_dir) if audit_dir else None

    async def tick(self, now: datetime) -> list[str]:
        """Deliver every pending message due at ``now``.

        Returns:
            Keys of the messages delivered in this pass.
        """
        if not self.transport.is_ready:
            self.logger.debug("Transport not ready, skipping scheduler pass")
            return []

        try:
            messages = self.store.list()
        except StoreIOError:
            self.logger.exception("Cannot read scheduled messages, skipping pass")
            return []

        delivered: list[str] = []
        for message in messages:
            if message.is_sent:
                continue
            if not message.is_complete:
                self.logger.warning("Scheduled message %s is incomplete, skipping", message.key)
                continue
            trigger = message.trigger_instant(self.store.zone)
            if trigger is None:
                self.logger.warning(
                    "Scheduled message %s has invalid date/time %r %r, skipping",
                    message.key, message.date, message.time,
                )
                continue
            if now < trigger:
                continue
            if await self._deliver(message, now):
                delivered.append(message.key)

        if delivered:
            self.logger.info("Delivered %d scheduled message(s)", len(delivered))
        return delivered

    async def _deliver(self, message: ScheduledMessage, now: datetime) -> bool:
        try:
            chat_id = await self.transport.resolve_number(message.recipient)
        except TransportError as exc:
            self.logger.error("Cannot resolve %s for %s: %s", message.recipient, message.key, exc)
            self._log_error(message.key, f"resolve_failed: {exc}")
            return False

        if chat_id is None:
            self.logger.warning("Number %s is not on WhatsApp (%s)", message.recipient, message.key)
            self._log_error(message.key, "number_not_registered")
            return False

        try:
            await self.transport.send_message(chat_id, message.body)
        except TransportError as exc:
            self.logger.error("Failed to send scheduled message %s: %s", message.key, exc)
            self._log_error(message.key, f"send_failed: {exc}")
            return False

        try:
            self.store.mark_sent(message.key, now=now)
        except StoreIOError:
            # Delivered but not marked; the next pass will send it again
            self.logger.exception("Sent %s but could not mark it sent", message.key)
            self._log_error(message.key, "mark_sent_failed")
            return False

        if self.conversations is not None:
            try:
                self.conversations.append(
                    message.recipient, message.body, Author.BOT, Direction.SENT, now=now
                )
            except StoreIOError:
                self.logger.exception("Could not record scheduled delivery %s", message.key)

        self.logger.info("Scheduled message sent to %s (%s)", message.recipient, message.key)
        self._audit(
            "scheduled_delivery",
            message.key,
            "success",
            parameters={"recipient": message.recipient, "scheduled_for": f"{message.date} {message.time}"},
        )
        return True

    # ── Audit Logging ───────────────────────────────────────────────

    def _audit(self, action_type: str, target: str, result: str, **fields: Any) -> None:
        if self.audit_dir is None:
            return
        try:
            log_action(
                self.audit_dir / "actions",
                {
                    "timestamp": now_iso(),
                    "correlation_id": correlation_id(),
                    "actor": ACTOR,
                    "action_type": action_type,
                    "target": target,
                    "result": result,
                    **fields,
                },
            )
        except OSError:
            self.logger.exception("Failed to write audit log")

    def _log_error(self, target: str, error_msg: str) -> None:
        if self.audit_dir is None:
            return
        try:
            log_action(
                self.audit_dir / "errors",
                {
                    "timestamp": now_iso(),
                    "correlation_id": correlation_id(),
                    "actor": ACTOR,
                    "action_type": "error",
                    "target": target,
                    "error": error_msg,
                    "result": "failure",
                },
            )
        except OSError:
            self.logger.exception("Failed to write error log")
