"""Error taxonomy shared by the stores, transport, AI client and gateway."""

from __future__ import annotations


class ConsoleError(Exception):
    """Base class for every error the console raises on purpose."""


class ConfigError(ConsoleError):
    """Missing or invalid configuration. Fatal at startup."""


class StoreIOError(ConsoleError):
    """A file-backed store could not be read or written."""


class ProtectedFileError(StoreIOError):
    """Attempt to delete a file the console depends on."""


class TransportError(ConsoleError):
    """WhatsApp resolve/send failure. Retried by the caller, never fatal."""


class CompletionServiceError(ConsoleError):
    """Completion call failed; ``kind`` selects the fallback reply.

    Kinds: ``quota_exceeded``, ``rate_limited``, ``timeout``, ``generic``.
    """

    def __init__(self, message: str, kind: str = "generic") -> None:
        super().__init__(message)
        self.kind = kind
