"""Socket.IO event gateway for the dashboard.

Every command except ``login`` and ``validar_sessao`` requires the calling
connection to hold a session. A rejected or failed command answers with the
command's own error event; the connection stays open.

Payload keys are read in English (``username``, ``name`` ...) with the
dashboard's legacy aliases (``usuario``, ``nome`` ...) accepted as well.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import socketio

from backend.errors import ProtectedFileError, StoreIOError
from backend.stores.conversations import ConversationLog, parse_limit
from backend.stores.credentials import CredentialStore
from backend.stores.prompt_files import PromptFileStore
from backend.stores.scheduled import ScheduledMessageStore
from backend.stores.sessions import SessionRegistry, SessionTokens
from backend.utils.logging_utils import log_action
from backend.utils.timestamps import now_iso
from backend.utils.uuid_utils import correlation_id

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated"
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_SESSION = "Invalid session"
CONTENT_NOT_TEXT = "File content must be text"

FIELD_ALIASES = {
    "username": ("username", "usuario"),
    "password": ("password", "senha"),
    "name": ("name", "nome"),
    "content": ("content", "conteudo"),
    "prompt": ("prompt",),
    "recipient": ("recipient", "numero"),
    "body": ("body", "mensagem"),
    "date": ("date", "data"),
    "time": ("time", "hora"),
    "filter": ("filter", "filtroNumero"),
    "limit": ("limit", "limite"),
    "mode": ("mode", "modo"),
}

MODE_ALIASES = {"todas": "all", "recebidas": "received", "enviadas": "sent"}


def field_of(data: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` (or one of its aliases) from a client payload."""
    if not isinstance(data, dict):
        return default
    for name in FIELD_ALIASES.get(key, (key,)):
        if data.get(name) is not None:
            return data[name]
    return default


def text_field(data: Any, key: str) -> str | None:
    """Read a text field; None when the client sent something other than a string."""
    value = field_of(data, key, "")
    return value if isinstance(value, str) else None


def normalise_mode(mode: Any) -> str:
    value = str(mode or "all").lower()
    return MODE_ALIASES.get(value, value)


@dataclass
class AppState:
    """Process-wide state shared by the gateway and the transport callbacks."""

    sessions: SessionRegistry = field(default_factory=SessionRegistry)
    whatsapp_ready: bool = False
    current_qr: str | None = None


class EventGateway:
    """Registers the dashboard's Socket.IO handlers on ``sio``."""

    def __init__(
        self,
        sio: socketio.AsyncServer,
        state: AppState,
        credentials: CredentialStore,
        tokens: SessionTokens,
        conversations: ConversationLog,
        schedule: ScheduledMessageStore,
        prompts: PromptFileStore,
        audit_dir: str | Path | None = None,
    ):
        self.sio = sio
        self.state = state
        self.credentials = credentials
        self.tokens = tokens
        self.conversations = conversations
        self.schedule = schedule
        self.prompts = prompts
        self.audit_dir = Path(audit_dir) if audit_dir else None

    @property
    def sessions(self) -> SessionRegistry:
        return self.state.sessions

    def register(self) -> None:
        handlers = {
            "connect": self.on_connect,
            "disconnect": self.on_disconnect,
            "login": self.login,
            "validar_sessao": self.validate_session,
            "listar_arquivos_prompts": self.list_files,
            "carregar_arquivo": self.load_file,
            "salvar_arquivo": self.save_file,
            "criar_arquivo": self.create_file,
            "excluir_arquivo": self.delete_file,
            "salvar_prompt": self.save_prompt,
            "agendar_mensagem": self.schedule_message,
            "listar_agendamentos": self.list_schedules,
            "listar_conversas": self.list_conversations,
            "exportar_conversas": self.export_conversations,
            "limpar_conversas": self.clear_conversations,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler)

    async def _emit(self, event: str, data: Any = None, *, to: str) -> None:
        if data is None:
            await self.sio.emit(event, to=to)
        else:
            await self.sio.emit(event, data, to=to)

    async def _require_session(self, sid: str, error_event: str) -> bool:
        if self.sessions.is_authenticated(sid):
            return True
        logger.warning("Unauthenticated %s from %s", error_event, sid)
        await self._emit(error_event, NOT_AUTHENTICATED, to=sid)
        return False

    # ── Connection / Session ────────────────────────────────────────

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        logger.info("Client connected: %s", sid)

    async def on_disconnect(self, sid: str, *args: Any) -> None:
        self.sessions.revoke(sid)
        logger.info("Client disconnected: %s", sid)

    async def _replay_whatsapp_state(self, sid: str) -> None:
        if self.state.whatsapp_ready:
            await self._emit("ready", to=sid)
        elif self.state.current_qr:
            await self._emit("qr", self.state.current_qr, to=sid)

    async def login(self, sid: str, data: Any = None) -> None:
        username = field_of(data, "username", "")
        password = field_of(data, "password", "")
        logger.info("Login attempt: %s", username)

        if not isinstance(username, str) or not self.credentials.validate(username, password):
            self._audit("login", str(username), "failure")
            await self._emit("login_erro", INVALID_CREDENTIALS, to=sid)
            return

        username = username.strip()
        self.sessions.establish(sid, username)
        await self._emit("login_ok", {"token": self.tokens.issue(username)}, to=sid)
        await self._emit("sessao_valida", to=sid)
        self._audit("login", username, "success")
        logger.info("Login successful: %s", username)
        await self._replay_whatsapp_state(sid)

    async def validate_session(self, sid: str, token: Any = None) -> None:
        username = self.tokens.verify(token)
        if username is None:
            await self._emit("login_erro", INVALID_SESSION, to=sid)
            return
        self.sessions.establish(sid, username)
        await self._emit("sessao_valida", to=sid)
        logger.info("Session restored for %s (%s)", username, sid)
        await self._replay_whatsapp_state(sid)

    # ── Prompt Files ────────────────────────────────────────────────

    async def list_files(self, sid: str, data: Any = None) -> None:
        if not self.sessions.is_authenticated(sid):
            await self._emit("arquivos_lista", [], to=sid)
            return
        try:
            names = self.prompts.list_files()
        except StoreIOError:
            logger.exception("Failed to list prompt files")
            names = []
        await self._emit("arquivos_lista", names, to=sid)

    async def load_file(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "erro_arquivo"):
            return
        name = field_of(data, "name")
        try:
            content = self.prompts.read(name)
        except ValueError as exc:
            await self._emit("erro_arquivo", str(exc), to=sid)
            return
        except StoreIOError:
            await self._emit("erro_arquivo", "File not found", to=sid)
            return
        await self._emit("conteudo_arquivo", {"name": name, "content": content}, to=sid)

    async def save_file(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "erro_salvar"):
            return
        name = field_of(data, "name")
        content = text_field(data, "content")
        if content is None:
            await self._emit("erro_salvar", CONTENT_NOT_TEXT, to=sid)
            return
        try:
            self.prompts.write(name, content)
        except ValueError as exc:
            await self._emit("erro_salvar", str(exc), to=sid)
            return
        except StoreIOError:
            logger.exception("Failed to save %s", name)
            await self._emit("erro_salvar", "Error saving file", to=sid)
            return
        await self._emit("arquivo_salvo", {"name": name}, to=sid)

    async def create_file(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "erro_criar"):
            return
        name = field_of(data, "name")
        content = text_field(data, "content")
        if content is None:
            await self._emit("erro_criar", CONTENT_NOT_TEXT, to=sid)
            return
        try:
            self.prompts.create(name, content)
        except ValueError as exc:
            await self._emit("erro_criar", str(exc), to=sid)
            return
        except FileExistsError:
            await self._emit("erro_criar", "File already exists", to=sid)
            return
        except StoreIOError:
            logger.exception("Failed to create %s", name)
            await self._emit("erro_criar", "Error creating file", to=sid)
            return
        await self._emit("arquivo_criado", {"name": name}, to=sid)

    async def delete_file(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "erro_excluir"):
            return
        name = field_of(data, "name")
        try:
            self.prompts.delete(name)
        except ValueError as exc:
            await self._emit("erro_excluir", str(exc), to=sid)
            return
        except ProtectedFileError:
            await self._emit("erro_excluir", "This file is protected", to=sid)
            return
        except StoreIOError:
            logger.exception("Failed to delete %s", name)
            await self._emit("erro_excluir", "Error deleting file", to=sid)
            return
        self._audit("file_deleted", name, "success", actor=self.sessions.username_for(sid))
        await self._emit("arquivo_excluido", {"name": name}, to=sid)

    async def save_prompt(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "prompt_erro"):
            return
        prompt = field_of(data, "prompt", "")
        if not isinstance(prompt, str) or not prompt.strip():
            await self._emit("prompt_erro", "Prompt must not be empty", to=sid)
            return
        try:
            self.prompts.append_training(prompt.strip())
        except StoreIOError:
            logger.exception("Failed to save training prompt")
            await self._emit("prompt_erro", "Error saving prompt", to=sid)
            return
        await self._emit("prompt_salvo", to=sid)

    # ── Scheduling ──────────────────────────────────────────────────

    async def schedule_message(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "erro_agendamento"):
            return
        try:
            message = self.schedule.create(
                str(field_of(data, "recipient", "")),
                str(field_of(data, "date", "")),
                str(field_of(data, "time", "")),
                str(field_of(data, "body", "")),
            )
        except ValueError as exc:
            await self._emit("erro_agendamento", str(exc), to=sid)
            return
        except StoreIOError:
            logger.exception("Failed to schedule message")
            await self._emit("erro_agendamento", "Internal error", to=sid)
            return
        await self._emit("mensagem_agendada", {"key": message.key}, to=sid)

    async def list_schedules(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "agendamentos_erro"):
            return
        try:
            items = [message.to_dict() for message in self.schedule.list()]
        except StoreIOError:
            logger.exception("Failed to list scheduled messages")
            await self._emit("agendamentos_erro", "Error loading schedule", to=sid)
            return
        await self._emit("agendamentos_lista", items, to=sid)

    # ── Conversations ───────────────────────────────────────────────

    async def list_conversations(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "conversas_erro"):
            return
        mode = normalise_mode(field_of(data, "mode"))
        try:
            items = self.conversations.query(
                parse_limit(field_of(data, "limit")),
                str(field_of(data, "filter", "")),
                mode,
            )
        except StoreIOError:
            logger.exception("Failed to list conversations")
            await self._emit("conversas_erro", "Error loading conversations", to=sid)
            return
        await self._emit(
            "conversas_lista", {"items": items, "mode": mode, "total": len(items)}, to=sid
        )

    async def export_conversations(self, sid: str, data: Any = None) -> dict[str, Any]:
        """Acknowledged command: the return value is the client's callback payload."""
        if not self.sessions.is_authenticated(sid):
            return {"erro": NOT_AUTHENTICATED}
        try:
            items = self.conversations.query(
                parse_limit(field_of(data, "limit")), str(field_of(data, "filter", "")), "all"
            )
        except StoreIOError:
            logger.exception("Failed to export conversations")
            return {"erro": "Error exporting conversations"}
        return {"success": True, "items": items, "total": len(items)}

    async def clear_conversations(self, sid: str, data: Any = None) -> None:
        if not await self._require_session(sid, "conversas_erro"):
            return
        try:
            self.conversations.clear()
        except StoreIOError:
            logger.exception("Failed to clear conversations")
            await self._emit("conversas_erro", "Error clearing conversations", to=sid)
            return
        self._audit("conversations_cleared", "conversations", "success", actor=self.sessions.username_for(sid))
        await self._emit("conversas_limpas", to=sid)

    # ── Push Events ─────────────────────────────────────────────────

    async def _broadcast(self, event: str, data: Any = None) -> None:
        for sid in self.sessions.connections():
            await self._emit(event, data, to=sid)

    async def push_qr(self, qr: str) -> None:
        self.state.current_qr = qr
        self.state.whatsapp_ready = False
        await self._broadcast("qr", qr)

    async def push_ready(self) -> None:
        self.state.whatsapp_ready = True
        self.state.current_qr = None
        await self._broadcast("ready")

    async def push_disconnected(self, reason: str | None = None) -> None:
        self.state.whatsapp_ready = False
        self.state.current_qr = None
        await self._broadcast("disconnected")

    # ── Audit Logging ───────────────────────────────────────────────

    def _audit(self, action_type: str, target: str, result: str, actor: str | None = None) -> None:
        if self.audit_dir is None:
            return
        try:
            log_action(
                self.audit_dir / "actions",
                {
                    "timestamp": now_iso(),
                    "correlation_id": correlation_id(),
                    "actor": actor or "gateway",
                    "action_type": action_type,
                    "target": target,
                    "result": result,
                },
            )
        except OSError:
            logger.exception("Failed to write audit log")
