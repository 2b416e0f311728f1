"""Environment-driven settings for the console.

Values come from the process environment after ``python-dotenv`` has loaded
``config/.env`` (or ``.env``). Only ``GPT_API_KEY`` is required.
"""

from __future__ import annotations

import os
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path

from dotenv import load_dotenv

from backend.errors import ConfigError
from backend.utils.timestamps import resolve_timezone

DEFAULT_PORT = 3000

CONVERSATIONS_FILE = "conversations.json"
TRAINING_FILE = "training.txt"
USERS_FILE = "users.txt"
PROMPT_LOG_FILE = "prompts_log.txt"

PROTECTED_FILES = frozenset({USERS_FILE, TRAINING_FILE, PROMPT_LOG_FILE, CONVERSATIONS_FILE})


@dataclass
class Settings:
    api_key: str
    port: int = DEFAULT_PORT
    data_dir: Path = Path("data")
    schedule_dir: Path = Path("scheduled_messages")
    public_dir: Path = Path("public")
    session_path: Path = Path("config/whatsapp_session")
    headless: bool = True
    inbox_interval: float = 5.0
    scheduler_interval: float = 30.0
    schedule_timezone: str = "-03:00"
    openai_model: str = "gpt-4o-mini"
    openai_timeout: float = 30.0
    session_secret: str = ""
    session_ttl_hours: float = 168.0
    bot_name: str = "SalvoRadaBot"
    max_conversations: int = 2000
    log_level: str = "INFO"

    @property
    def conversations_path(self) -> Path:
        return self.data_dir / CONVERSATIONS_FILE

    @property
    def training_path(self) -> Path:
        return self.data_dir / TRAINING_FILE

    @property
    def users_path(self) -> Path:
        return self.data_dir / USERS_FILE

    @property
    def prompt_log_path(self) -> Path:
        return self.data_dir / PROMPT_LOG_FILE

    @property
    def audit_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def zone(self) -> tzinfo:
        """Zone in which scheduled dates/times and local timestamps are read."""
        return resolve_timezone(self.schedule_timezone)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``env`` (defaults to ``os.environ``).

        Raises:
            ConfigError: If ``GPT_API_KEY`` is missing or a value is malformed.
        """
        env = os.environ if env is None else env

        api_key = (env.get("GPT_API_KEY") or "").strip().strip('"').strip("'")
        if not api_key:
            raise ConfigError("GPT_API_KEY not found in environment or .env")

        schedule_timezone = env.get("SCHEDULE_TIMEZONE", "-03:00")
        try:
            resolve_timezone(schedule_timezone)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        return cls(
            api_key=api_key,
            port=_int(env, "PORT", DEFAULT_PORT),
            data_dir=Path(env.get("DATA_DIR", "data")),
            schedule_dir=Path(env.get("SCHEDULE_DIR", "scheduled_messages")),
            public_dir=Path(env.get("PUBLIC_DIR", "public")),
            session_path=Path(env.get("WHATSAPP_SESSION_PATH", "config/whatsapp_session")),
            headless=env.get("WHATSAPP_HEADLESS", "true").lower() == "true",
            inbox_interval=_float(env, "WHATSAPP_CHECK_INTERVAL", 5.0),
            scheduler_interval=_float(env, "SCHEDULER_INTERVAL", 30.0),
            schedule_timezone=schedule_timezone,
            openai_model=env.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_timeout=_float(env, "OPENAI_TIMEOUT", 30.0),
            # A random secret means tokens stop validating after a restart
            session_secret=env.get("SESSION_SECRET") or secrets.token_hex(32),
            session_ttl_hours=_float(env, "SESSION_TTL_HOURS", 168.0),
            bot_name=env.get("BOT_NAME", "SalvoRadaBot"),
            max_conversations=_int(env, "MAX_CONVERSATIONS", 2000),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def load_env_file(env_file: Path | None = None) -> None:
    """Load ``config/.env`` (project convention), falling back to ``.env``."""
    env_path = env_file or Path("config") / ".env"
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()


def load_settings(env_file: Path | None = None) -> Settings:
    """Load the env file and build settings."""
    load_env_file(env_file)
    return Settings.from_env()


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
