"""WhatsApp AI console - process wiring, HTTP server and CLI.

Serves the dashboard from ``public/`` and the Socket.IO gateway from one
aiohttp application, and runs the WhatsApp client and the scheduler loop as
background tasks for the lifetime of the app.

Usage:
    # Run the console
    whatsapp-console

    # First-time setup (headed browser for QR code scan)
    whatsapp-console --setup

    # Print a hashed credential line for data/users.txt
    whatsapp-console --hash-password s3cret --username maria
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any

import socketio
from aiohttp import web

from backend.ai.completion import CompletionService
from backend.bot.responder import AutoResponder
from backend.config import PROTECTED_FILES, Settings, load_env_file, load_settings
from backend.errors import ConfigError
from backend.gateway.events import AppState, EventGateway
from backend.loops.scheduler import SchedulerLoop
from backend.stores.conversations import ConversationLog
from backend.stores.credentials import DEFAULT_PASSWORD, DEFAULT_USERNAME, CredentialStore, hash_password
from backend.stores.prompt_files import PromptFileStore
from backend.stores.scheduled import ScheduledMessageStore
from backend.stores.sessions import SessionTokens
from backend.transport.whatsapp_client import WhatsAppClient
from backend.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)

# ── App Context ─────────────────────────────────────────────────────


@dataclass
class AppContext:
    """Everything the running console owns, built once per process."""

    settings: Settings
    state: AppState
    credentials: CredentialStore
    conversations: ConversationLog
    schedule: ScheduledMessageStore
    prompts: PromptFileStore
    transport: Any
    scheduler: SchedulerLoop
    responder: AutoResponder
    gateway: EventGateway
    tasks: list[asyncio.Task] = field(default_factory=list)


APP_CONTEXT = web.AppKey("app_context", AppContext)


def build_context(
    settings: Settings,
    sio: socketio.AsyncServer,
    transport: Any = None,
    completion: CompletionService | None = None,
) -> AppContext:
    zone = settings.zone
    state = AppState()
    credentials = CredentialStore(settings.users_path)
    conversations = ConversationLog(
        settings.conversations_path,
        max_records=settings.max_conversations,
        display_zone=zone,
    )
    schedule = ScheduledMessageStore(settings.schedule_dir, zone=zone)
    prompts = PromptFileStore(
        settings.data_dir,
        settings.training_path,
        settings.prompt_log_path,
        protected=PROTECTED_FILES,
        display_zone=zone,
    )
    transport = transport or WhatsAppClient(
        session_path=str(settings.session_path),
        headless=settings.headless,
        check_interval=settings.inbox_interval,
    )
    completion = completion or CompletionService(
        api_key=settings.api_key,
        model=settings.openai_model,
        training_path=settings.training_path,
        bot_name=settings.bot_name,
        timeout=settings.openai_timeout,
    )
    tokens = SessionTokens(settings.session_secret, ttl_seconds=settings.session_ttl_hours * 3600)

    gateway = EventGateway(
        sio,
        state,
        credentials=credentials,
        tokens=tokens,
        conversations=conversations,
        schedule=schedule,
        prompts=prompts,
        audit_dir=settings.audit_dir,
    )
    gateway.register()

    responder = AutoResponder(completion, conversations)
    transport.on("qr", gateway.push_qr)
    transport.on("ready", gateway.push_ready)
    transport.on("disconnected", gateway.push_disconnected)
    transport.on("message", responder.handle)

    scheduler = SchedulerLoop(
        schedule,
        transport,
        conversations=conversations,
        audit_dir=settings.audit_dir,
        interval=settings.scheduler_interval,
    )

    return AppContext(
        settings=settings,
        state=state,
        credentials=credentials,
        conversations=conversations,
        schedule=schedule,
        prompts=prompts,
        transport=transport,
        scheduler=scheduler,
        responder=responder,
        gateway=gateway,
    )


# ── Lifecycle ───────────────────────────────────────────────────────


def prepare_storage(ctx: AppContext) -> None:
    """Create missing directories and default files."""
    settings = ctx.settings
    for directory in (settings.data_dir, settings.schedule_dir, settings.public_dir):
        directory.mkdir(parents=True, exist_ok=True)
    ctx.prompts.ensure_defaults(settings.bot_name)
    ctx.credentials.ensure_default()
    ctx.conversations.ensure_exists()


async def _run_transport(transport: Any) -> None:
    try:
        await transport.run()
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("WhatsApp client failed to start")


async def on_startup(app: web.Application) -> None:
    ctx = app[APP_CONTEXT]
    ctx.tasks.append(asyncio.create_task(_run_transport(ctx.transport)))
    ctx.tasks.append(asyncio.create_task(ctx.scheduler.run()))

    settings = ctx.settings
    logger.info("=" * 50)
    logger.info("Server running on port %d", settings.port)
    logger.info("AI model: %s", settings.openai_model)
    logger.info("Data directory: %s", settings.data_dir.resolve())
    logger.info("Conversations: %s", settings.conversations_path.resolve())
    logger.info("Scheduled messages: %s", settings.schedule_dir.resolve())
    logger.info("Schedule timezone: %s", settings.schedule_timezone)
    if ctx.credentials.validate(DEFAULT_USERNAME, DEFAULT_PASSWORD):
        logger.warning("Default login %s/%s is active, change it in users.txt", DEFAULT_USERNAME, DEFAULT_PASSWORD)
    logger.info("=" * 50)


async def on_cleanup(app: web.Application) -> None:
    ctx = app[APP_CONTEXT]
    ctx.scheduler.stop()
    ctx.transport.stop()
    for task in ctx.tasks:
        task.cancel()
    for task in ctx.tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    await ctx.transport.close()
    logger.info("Console shut down")


# ── HTTP ────────────────────────────────────────────────────────────


async def index(request: web.Request) -> web.StreamResponse:
    public_dir = request.app[APP_CONTEXT].settings.public_dir
    index_file = public_dir / "index.html"
    if not index_file.exists():
        raise web.HTTPNotFound(text="Dashboard not installed")
    return web.FileResponse(index_file)


def build_app(
    settings: Settings,
    transport: Any = None,
    completion: CompletionService | None = None,
) -> web.Application:
    """Create the aiohttp app with Socket.IO attached and the context wired."""
    sio = socketio.AsyncServer(async_mode="aiohttp", cors_allowed_origins="*")
    app = web.Application()
    sio.attach(app)

    ctx = build_context(settings, sio, transport=transport, completion=completion)
    prepare_storage(ctx)
    app[APP_CONTEXT] = ctx

    app.router.add_get("/", index)
    app.router.add_static("/", settings.public_dir, show_index=False)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


# ── CLI Entry Point ─────────────────────────────────────────────────


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="WhatsApp AI console")
    parser.add_argument(
        "--setup",
        action="store_true",
        help="First-time setup: open headed browser for QR code scan",
    )
    parser.add_argument(
        "--hash-password",
        metavar="PASSWORD",
        help="Print a users.txt line with a hashed password and exit",
    )
    parser.add_argument(
        "--username",
        default=DEFAULT_USERNAME,
        help="Username for --hash-password (default: admin)",
    )
    parser.add_argument("--port", type=int, help="Override PORT")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the console."""
    args = _parse_args(argv)

    if args.hash_password is not None:
        print(f"{args.username}|{hash_password(args.hash_password)}")
        return

    if args.setup:
        load_env_file()
        setup_logging()
        client = WhatsAppClient(
            session_path=os.getenv("WHATSAPP_SESSION_PATH", "config/whatsapp_session"),
        )
        if asyncio.run(client.setup_session()):
            logger.info("Setup complete! You can now run the console normally.")
        else:
            logger.error("Setup failed. Please try again.")
            sys.exit(1)
        return

    try:
        settings = load_settings()
    except ConfigError as exc:
        setup_logging()
        logger.error("%s", exc)
        sys.exit(1)

    setup_logging(settings.log_level)
    if args.port:
        settings.port = args.port

    app = build_app(settings)
    web.run_app(app, port=settings.port, print=None)


if __name__ == "__main__":
    main()
