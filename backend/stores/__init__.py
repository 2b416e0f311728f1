"""File-backed and in-memory stores used by the gateway and the loops."""

from backend.stores.conversations import Author, ConversationLog, ConversationRecord, Direction
from backend.stores.credentials import CredentialStore, hash_password
from backend.stores.prompt_files import PromptFileStore
from backend.stores.scheduled import ScheduledMessage, ScheduledMessageStore, ScheduleStatus
from backend.stores.sessions import Session, SessionRegistry, SessionTokens

__all__ = [
    "Author",
    "ConversationLog",
    "ConversationRecord",
    "CredentialStore",
    "Direction",
    "PromptFileStore",
    "ScheduleStatus",
    "ScheduledMessage",
    "ScheduledMessageStore",
    "Session",
    "SessionRegistry",
    "SessionTokens",
    "hash_password",
]
