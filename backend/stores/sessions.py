"""In-memory session registry and signed session tokens.

A session links one Socket.IO connection id to the username that logged in
on it. Sessions live only as long as the connection (and the process).

Tokens let a browser that already logged in re-establish a session on a new
connection without re-sending credentials. They are signed with the process
secret and expire after a configurable TTL; verifying one does not consult
the credential store.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from backend.utils.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class Session:
    connection_id: str
    username: str
    established_at: datetime = field(default_factory=utc_now)


class SessionRegistry:
    """Maps connection ids to authenticated users."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def establish(self, connection_id: str, username: str) -> Session:
        session = Session(connection_id=connection_id, username=username)
        self._sessions[connection_id] = session
        logger.debug("Session established: %s -> %s", connection_id, username)
        return session

    def is_authenticated(self, connection_id: str) -> bool:
        return connection_id in self._sessions

    def username_for(self, connection_id: str) -> str | None:
        session = self._sessions.get(connection_id)
        return session.username if session else None

    def revoke(self, connection_id: str) -> Session | None:
        session = self._sessions.pop(connection_id, None)
        if session:
            logger.debug("Session revoked: %s (%s)", connection_id, session.username)
        return session

    def connections(self) -> list[str]:
        """Snapshot of authenticated connection ids."""
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)


class SessionTokens:
    """Issues and verifies ``base64url(username:issued_ms).signature`` tokens."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("Session secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._clock = clock

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, username: str) -> str:
        issued_ms = int(self._clock() * 1000)
        raw = f"{username}:{issued_ms}".encode("utf-8")
        payload = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: object) -> str | None:
        """Return the token's username, or None if it is forged, malformed or expired."""
        if not isinstance(token, str) or "." not in token:
            return None

        payload, signature = token.rsplit(".", 1)
        expected = self._sign(payload).encode("ascii")
        if not hmac.compare_digest(expected, signature.encode("utf-8")):
            logger.warning("Rejected session token with bad signature")
            return None

        try:
            padded = payload + "=" * (-len(payload) % 4)
            decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
            username, issued_raw = decoded.rsplit(":", 1)
            issued_ms = int(issued_raw)
        except (ValueError, UnicodeError, binascii.Error):
            return None

        if not username:
            return None

        if self.ttl_seconds is not None:
            age = self._clock() - issued_ms / 1000
            if age > self.ttl_seconds:
                logger.info("Rejected expired session token for %s", username)
                return None

        return username
