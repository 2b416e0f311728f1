"""Editable text files in the data directory (prompts, credentials, notes).

Backs the dashboard's file editor and the "train the bot" command, which
appends to the training prompt and records the entry in the prompt log.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, tzinfo
from pathlib import Path

from backend.errors import ProtectedFileError, StoreIOError
from backend.utils.timestamps import format_local, utc_now

logger = logging.getLogger(__name__)

EDITABLE_SUFFIX = ".txt"
PROMPT_LOG_HEADER = "=== PROMPT LOG ===\n"


def default_training_prompt(bot_name: str) -> str:
    return f"You are a helpful assistant named {bot_name}.\n"


class PromptFileStore:
    """Plain-name file access confined to ``data_dir``."""

    def __init__(
        self,
        data_dir: str | Path,
        training_path: str | Path,
        prompt_log_path: str | Path,
        protected: Iterable[str] = (),
        display_zone: tzinfo | None = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.training_path = Path(training_path)
        self.prompt_log_path = Path(prompt_log_path)
        self.protected = frozenset(protected)
        self.display_zone = display_zone
        self._lock = threading.RLock()

    def resolve(self, name: object) -> Path:
        """Map a client-supplied name to a path inside ``data_dir``.

        Raises:
            ValueError: If the name is empty or tries to leave the directory.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("File name is required")
        name = name.strip()
        if "/" in name or "\\" in name or name in (".", "..") or name.startswith("."):
            raise ValueError(f"Invalid file name: {name!r}")
        return self.data_dir / name

    def ensure_defaults(self, bot_name: str) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if not self.training_path.exists():
            self.training_path.write_text(default_training_prompt(bot_name), encoding="utf-8")
            logger.info("Created training prompt: %s", self.training_path)
        if not self.prompt_log_path.exists():
            self.prompt_log_path.write_text(PROMPT_LOG_HEADER, encoding="utf-8")
            logger.info("Created prompt log: %s", self.prompt_log_path)

    def list_files(self) -> list[str]:
        try:
            return sorted(
                p.name for p in self.data_dir.iterdir()
                if p.is_file() and p.name.endswith(EDITABLE_SUFFIX)
            )
        except OSError as exc:
            raise StoreIOError(f"Cannot list {self.data_dir}: {exc}") from exc

    def read(self, name: str) -> str:
        path = self.resolve(name)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreIOError(f"Cannot read {path.name}: {exc}") from exc

    def write(self, name: str, content: str) -> None:
        path = self.resolve(name)
        with self._lock:
            try:
                path.write_text(content or "", encoding="utf-8")
            except OSError as exc:
                raise StoreIOError(f"Cannot write {path.name}: {exc}") from exc
        logger.info("File saved: %s", path.name)

    def create(self, name: str, content: str | None = None) -> None:
        """Create a new file; existing files are never overwritten.

        Raises:
            FileExistsError: If ``name`` already exists.
        """
        path = self.resolve(name)
        with self._lock:
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(content or "")
            except FileExistsError:
                raise
            except OSError as exc:
                raise StoreIOError(f"Cannot create {path.name}: {exc}") from exc
        logger.info("File created: %s", path.name)

    def delete(self, name: str) -> None:
        """Delete a file.

        Raises:
            ProtectedFileError: If ``name`` is one of the protected files.
        """
        path = self.resolve(name)
        if path.name in self.protected:
            raise ProtectedFileError(f"{path.name} is protected")
        with self._lock:
            try:
                path.unlink()
            except OSError as exc:
                raise StoreIOError(f"Cannot delete {path.name}: {exc}") from exc
        logger.info("File deleted: %s", path.name)

    def append_training(self, prompt: str, now: datetime | None = None) -> None:
        moment = now or utc_now()
        stamp = format_local(moment, self.display_zone) if self.display_zone else moment.isoformat()
        with self._lock:
            try:
                with self.training_path.open("a", encoding="utf-8") as handle:
                    handle.write(f"\n{prompt}\n")
                with self.prompt_log_path.open("a", encoding="utf-8") as handle:
                    handle.write(f"[{stamp}] {prompt}\n---\n")
            except OSError as exc:
                raise StoreIOError(f"Cannot append training prompt: {exc}") from exc
        logger.info("Training prompt appended (%d chars)", len(prompt))
