"""WhatsApp client - sends and receives messages on WhatsApp Web via Playwright.

The client keeps one persistent browser context (so the pairing survives
restarts) and polls the page on a fixed interval. Each poll:

    1. works out the session state (ready, QR shown, phone disconnected ...)
       and emits ``qr`` / ``ready`` / ``disconnected`` when it changes;
    2. when ready, opens every chat with an unread badge, reads its unseen
       messages and emits ``message`` with one ``InboundMessage`` each.

Outbound sends go through the ``/send?phone=`` URL. The page is shared by
polling, sends and QR capture, so every page interaction holds ``_page_lock``.

Usage:
    # First-time setup (headed browser for QR code scan)
    whatsapp-console --setup
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

from backend.errors import TransportError
from backend.loops.base_loop import PollingLoop
from backend.utils.phone import digits_only, number_from_data_id
from backend.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

WHATSAPP_URL = "https://web.whatsapp.com"
SEND_URL = WHATSAPP_URL + "/send?phone={phone}"

EVENTS = ("qr", "ready", "disconnected", "message")

# How many handled message ids to remember for de-duplication
SEEN_IDS_LIMIT = 500

# Upper bound on bubbles read from one chat per poll
MAX_UNREAD_PER_CHAT = 20

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

# Selectors for WhatsApp Web DOM
SELECTORS = {
    "qr_code": 'canvas[aria-label*="Scan this QR code"]',
    "qr_code_fallback": 'div[data-testid="qrcode"], div[role="img"][aria-label*="QR"]',
    "qr_canvas": 'canvas[aria-label*="QR"], div[data-testid="qrcode"] canvas',
    "phone_disconnected": 'div[data-testid="alert-phone"], div[data-testid="alert-banner"]',
    "loading": 'div[data-testid="startup"]',
    "conversation_header": 'div[data-testid="conversation-header"] span[dir="auto"]',
    "conversation_panel": 'div[data-testid="conversation-panel-wrapper"], #main',
    "message_row": "div.message-in, div.message-out",
    "message_text": 'span.selectable-text span, span[data-testid="msg-text"] span, span.selectable-text',
    "message_id_holder": "[data-id]",
    "composer": 'footer div[contenteditable="true"][role="textbox"], div[contenteditable="true"][data-tab="10"]',
    "send_button": 'button[aria-label="Send"], span[data-icon="send"]',
    "invalid_number": (
        'div[data-animate-modal-popup="true"]:has-text("invalid"), '
        'div[role="dialog"]:has-text("invalid")'
    ),
    "chat_title": "#pane-side span[title]",
    "unread_badge": 'span[aria-label*="unread"], span[data-testid="icon-unread-count"]',
}

# Any of these means the chat list has rendered, i.e. the device is paired
CHAT_LOADED_SELECTOR = ", ".join([
    'div[data-testid="chat-list"]',
    'div[aria-label="Chat list"]',
    "#pane-side",
    'div[role="listitem"]',
    'div[role="row"]',
])

# Chat list or QR code: the page has finished its startup screen
PAGE_SETTLED_SELECTOR = ", ".join([
    CHAT_LOADED_SELECTOR,
    'canvas[aria-label*="QR code"]',
    'div[data-testid="qrcode"]',
    'div[role="img"][aria-label*="QR"]',
])

UNREAD_ROW_STRATEGIES = [
    ("row + aria unread", 'div[role="row"]:has(span[aria-label*="unread"])'),
    ("row + icon-unread-count", 'div[role="row"]:has(span[data-testid="icon-unread-count"])'),
    (
        "cell-frame + icon-unread-count",
        'div[data-testid="cell-frame-container"]:has(span[data-testid="icon-unread-count"])',
    ),
    ("listitem + aria unread", 'div[role="listitem"]:has(span[aria-label*="unread"])'),
]

READY = "ready"
QR_CODE = "qr_code"
PHONE_DISCONNECTED = "phone_disconnected"
LOADING = "loading"
UNKNOWN = "unknown"


def chat_id_for(number: str) -> str:
    return f"{digits_only(number)}@c.us"


@dataclass
class InboundMessage:
    """A message read from WhatsApp Web.

    ``reply`` sends text back into the same chat.
    """

    phone_number: str
    body: str
    chat_name: str = ""
    from_me: bool = False
    message_id: str = ""
    received_at: datetime = field(default_factory=utc_now)
    reply: Callable[[str], Awaitable[None]] | None = None


Handler = Callable[..., Awaitable[None]]


class WhatsAppClient(PollingLoop):
    """WhatsApp Web transport: readiness events, inbox polling and sends."""

    def __init__(
        self,
        session_path: str = "config/whatsapp_session",
        headless: bool = True,
        check_interval: float = 5,
    ):
        super().__init__(check_interval)
        self.session_path = Path(session_path)
        self.headless = headless
        self._handlers: dict[str, list[Handler]] = {event: [] for event in EVENTS}
        self._state = UNKNOWN
        self._ready = False
        self._current_qr: str | None = None
        self._seen_ids: OrderedDict[str, None] = OrderedDict()
        self._page_lock = asyncio.Lock()
        self._playwright = None
        self._context = None
        self._page = None

    # ── Events ──────────────────────────────────────────────────────

    def on(self, event: str, handler: Handler) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown event: {event}")
        self._handlers[event].append(handler)

    async def _emit(self, event: str, *args: Any) -> None:
        for handler in self._handlers[event]:
            try:
                await handler(*args)
            except Exception:
                self.logger.exception("Handler for '%s' failed", event)

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def current_qr(self) -> str | None:
        """Latest pairing QR as a PNG data URL, while one is displayed."""
        return self._current_qr

    # ── Session / Browser Management ────────────────────────────────

    async def _launch_browser(self) -> None:
        """Launch Playwright browser with persistent context for session."""
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self.session_path.mkdir(parents=True, exist_ok=True)

        self._context = await self._playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.session_path),
            headless=self.headless,
            user_agent=USER_AGENT,
            args=[
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--no-sandbox",
            ],
        )
        self._page = self._context.pages[0] if self._context.pages else await self._context.new_page()
        await self._page.set_viewport_size({"width": 1280, "height": 720})

    async def _close_browser(self) -> None:
        """Close browser and cleanup."""
        if self._context:
            await self._context.close()
            self._context = None
            self._page = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    async def _ensure_browser(self) -> None:
        if self._page is None or self._context is None:
            await self._launch_browser()

    async def _navigate_to_whatsapp(self) -> None:
        """Open WhatsApp Web and wait for the chat list or the QR code."""
        assert self._page is not None
        self.logger.debug("Navigating to web.whatsapp.com...")
        await self._page.goto(WHATSAPP_URL, wait_until="domcontentloaded", timeout=60000)
        try:
            await self._page.wait_for_selector(PAGE_SETTLED_SELECTOR, timeout=60000)
        except Exception:
            self.logger.warning("No expected elements found. Page may still be loading.")

    async def _is_chat_loaded(self) -> bool:
        assert self._page is not None
        return await self._page.query_selector(CHAT_LOADED_SELECTOR) is not None

    async def _check_session_state(self) -> str:
        """Check current WhatsApp Web session state.

        Returns:
            One of: "ready", "qr_code", "phone_disconnected", "loading", "unknown"
        """
        assert self._page is not None

        if await self._is_chat_loaded():
            if await self._page.query_selector(SELECTORS["phone_disconnected"]):
                return PHONE_DISCONNECTED
            return READY

        if await self._page.query_selector(SELECTORS["qr_code"]):
            return QR_CODE
        if await self._page.query_selector(SELECTORS["qr_code_fallback"]):
            return QR_CODE
        if await self._page.query_selector(SELECTORS["loading"]):
            return LOADING

        return UNKNOWN

    async def _capture_qr(self) -> str | None:
        """Screenshot the QR element into a ``data:image/png;base64`` URL."""
        assert self._page is not None
        element = await self._page.query_selector(SELECTORS["qr_canvas"])
        if element is None:
            element = await self._page.query_selector(SELECTORS["qr_code_fallback"])
        if element is None:
            return None
        png = await element.screenshot(type="png")
        return "data:image/png;base64," + base64.b64encode(png).decode("ascii")

    async def _apply_state(self, state: str) -> None:
        """Record a new session state and emit the matching event."""
        previous = self._state
        self._state = state

        if state == READY:
            self._current_qr = None
            if not self._ready:
                self._ready = True
                self.logger.info("WhatsApp client is ready")
                await self._emit("ready")
            return

        if self._ready:
            self._ready = False
            self.logger.warning("WhatsApp client disconnected (state: %s)", state)
            await self._emit("disconnected", state)

        if state == QR_CODE:
            qr = await self._capture_qr()
            if qr and qr != self._current_qr:
                self._current_qr = qr
                self.logger.info("QR code received, scan it from the dashboard")
                await self._emit("qr", qr)
        elif state != previous:
            self.logger.info("WhatsApp Web state: %s", state)

    async def setup_session(self) -> bool:
        """Interactive setup: open headed browser for QR code scanning.

        Returns:
            True if session was established successfully.
        """
        self.logger.info("Starting WhatsApp Web session setup (headed mode)...")

        original_headless = self.headless
        self.headless = False

        try:
            await self._launch_browser()
            await self._navigate_to_whatsapp()

            state = await self._check_session_state()
            if state == READY:
                self.logger.info("Already logged in! Session is valid.")
                return True

            if state == QR_CODE:
                self.logger.info(
                    "QR code displayed. Scan with your phone:\n"
                    "  1. Open WhatsApp on your phone\n"
                    "  2. Go to Settings > Linked Devices > Link a Device\n"
                    "  3. Scan the QR code in the browser window\n"
                    "  Waiting up to 5 minutes..."
                )
                try:
                    await self._page.wait_for_selector(CHAT_LOADED_SELECTOR, timeout=300000)
                except Exception:
                    self.logger.error("QR code scan timed out after 5 minutes.")
                    return False
                self.logger.info("Login detected! Session saved to %s", self.session_path)
                return True

            self.logger.warning("Unexpected state during setup: %s", state)
            return False

        finally:
            self.headless = original_headless
            await self._close_browser()

    # ── Inbox ───────────────────────────────────────────────────────

    async def tick(self, now: datetime) -> list[InboundMessage]:
        """One poll: refresh the session state and read unread chats."""
        async with self._page_lock:
            await self._ensure_browser()
            assert self._page is not None
            if "web.whatsapp.com" not in (self._page.url or ""):
                await self._navigate_to_whatsapp()

            await self._apply_state(await self._check_session_state())
            if not self._ready:
                return []
            messages = await self._scan_unread_chats()

        # Dispatch outside the lock: replies need the page too
        for message in messages:
            await self._emit("message", message)
        return messages

    async def _get_unread_rows(self) -> list[Any]:
        assert self._page is not None
        for strategy_name, selector in UNREAD_ROW_STRATEGIES:
            try:
                rows = await self._page.query_selector_all(selector)
            except Exception:
                self.logger.debug("Unread strategy '%s' failed", strategy_name, exc_info=True)
                continue
            if rows:
                self.logger.debug("Unread strategy '%s': %d rows", strategy_name, len(rows))
                return rows
        return []

    async def _chat_name_from_row(self, row: Any) -> str:
        for sel in ('span[dir="auto"][title]', "span[title]"):
            el = await row.query_selector(sel)
            if el:
                title = await el.get_attribute("title")
                if title and title.strip():
                    return title.strip()
        return ""

    async def _unread_count(self, row: Any) -> int | None:
        """Unread badge of a chat-list row, e.g. ``3 unread messages``."""
        badge = await row.query_selector(SELECTORS["unread_badge"])
        if badge is None:
            return None
        label = await badge.get_attribute("aria-label") or await badge.inner_text()
        match = re.search(r"\d+", label or "")
        return int(match.group()) if match else None

    async def _scan_unread_chats(self) -> list[InboundMessage]:
        messages: list[InboundMessage] = []
        for row in await self._get_unread_rows():
            chat_name = await self._chat_name_from_row(row)
            try:
                limit = await self._unread_count(row) or MAX_UNREAD_PER_CHAT
                await row.click()
                await self._page.wait_for_selector(SELECTORS["conversation_panel"], timeout=5000)
                messages.extend(await self._read_new_messages(chat_name, min(limit, MAX_UNREAD_PER_CHAT)))
            except Exception:
                self.logger.debug("Error reading chat '%s'", chat_name, exc_info=True)
                continue
        if messages:
            self.logger.info("Read %d new message(s)", len(messages))
        return messages

    async def _read_new_messages(
        self, chat_name: str, limit: int = MAX_UNREAD_PER_CHAT
    ) -> list[InboundMessage]:
        """Unseen bubbles at the bottom of the open chat, oldest first.

        Walks back from the newest bubble and stops at an already handled id,
        at an outgoing bubble that precedes the new incoming ones, or after
        ``limit`` bubbles.
        """
        assert self._page is not None
        rows = await self._page.query_selector_all(SELECTORS["message_row"])
        batch: list[InboundMessage] = []

        for row in reversed(rows):
            if len(batch) >= limit:
                break
            holder = await row.query_selector(SELECTORS["message_id_holder"])
            data_id = (await holder.get_attribute("data-id") if holder else None) or ""
            if data_id and data_id in self._seen_ids:
                break

            from_me = "message-out" in (await row.get_attribute("class") or "")
            if from_me and batch:
                break

            text_el = await row.query_selector(SELECTORS["message_text"])
            body = (await text_el.inner_text()).strip() if text_el else ""
            number = number_from_data_id(data_id) or digits_only(chat_name)
            if not number:
                self.logger.debug("Could not work out a number for chat '%s'", chat_name)
                break

            fallback_id = f"{number}|{body}"
            if not data_id and fallback_id in self._seen_ids:
                break
            batch.append(
                InboundMessage(
                    phone_number=number,
                    body=body,
                    chat_name=chat_name,
                    from_me=from_me,
                    message_id=data_id or fallback_id,
                    reply=self._replier(number),
                )
            )
            if from_me:
                break

        batch.reverse()
        for message in batch:
            self._remember(message.message_id)
        return batch

    def _remember(self, message_id: str) -> None:
        self._seen_ids[message_id] = None
        while len(self._seen_ids) > SEEN_IDS_LIMIT:
            self._seen_ids.popitem(last=False)

    def _replier(self, number: str) -> Callable[[str], Awaitable[None]]:
        async def reply(text: str) -> None:
            await self.send_message(chat_id_for(number), text)

        return reply

    # ── Outbound ────────────────────────────────────────────────────

    async def _open_chat_by_number(self, number: str) -> bool:
        """Open the chat for ``number``; False if WhatsApp rejects the number."""
        assert self._page is not None
        await self._page.goto(SEND_URL.format(phone=quote(number)), wait_until="domcontentloaded")
        try:
            await self._page.wait_for_selector(
                f'{SELECTORS["composer"]}, {SELECTORS["invalid_number"]}', timeout=30000
            )
        except Exception as exc:
            raise TransportError(f"Chat for {number} did not open") from exc
        return await self._page.query_selector(SELECTORS["invalid_number"]) is None

    async def resolve_number(self, number: str) -> str | None:
        """Return the chat id for ``number``, or None if it is not on WhatsApp.

        Raises:
            TransportError: If the client is not ready or the page fails.
        """
        digits = digits_only(number)
        if not digits:
            return None
        if not self._ready:
            raise TransportError("WhatsApp client is not ready")
        async with self._page_lock:
            try:
                await self._ensure_browser()
                found = await self._open_chat_by_number(digits)
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(f"Could not resolve {digits}: {exc}") from exc
        if not found:
            self.logger.warning("Number %s is not registered on WhatsApp", digits)
            return None
        return chat_id_for(digits)

    async def send_message(self, chat_id: str, text: str) -> None:
        """Type ``text`` into the chat ``chat_id`` and send it.

        Raises:
            TransportError: If the chat cannot be opened or the send fails.
        """
        number = digits_only(chat_id.split("@", 1)[0])
        if not number:
            raise TransportError(f"Invalid chat id: {chat_id!r}")
        async with self._page_lock:
            try:
                await self._ensure_browser()
                if not await self._open_chat_by_number(number):
                    raise TransportError(f"Number {number} is not registered on WhatsApp")
                composer = await self._page.wait_for_selector(SELECTORS["composer"], timeout=15000)
                await composer.click()
                for i, line in enumerate(text.split("\n")):
                    if i:
                        await self._page.keyboard.press("Shift+Enter")
                    await self._page.keyboard.insert_text(line)
                await self._page.keyboard.press("Enter")
                await asyncio.sleep(1)
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(f"Failed to send to {number}: {exc}") from exc
        self.logger.info("Message sent to %s (%d chars)", number, len(text))

    # ── Lifecycle ───────────────────────────────────────────────────

    async def run(self) -> None:
        """Polling loop with browser lifecycle management."""
        try:
            async with self._page_lock:
                await self._ensure_browser()
                await self._navigate_to_whatsapp()
            await super().run()
        finally:
            await self.close()

    async def close(self) -> None:
        self.stop()
        if self._ready:
            self._ready = False
            await self._emit("disconnected", "shutdown")
        await self._close_browser()
