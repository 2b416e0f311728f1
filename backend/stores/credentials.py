"""Flat-file credential store for dashboard logins.

One ``username|secret`` pair per line. The file is re-read on every login
attempt, so editing it (including from the dashboard's file editor) takes
effect immediately. Secrets may be plaintext or a salted PBKDF2 hash made by
``hash_password``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from pathlib import Path

logger = logging.getLogger(__name__)

HASH_SCHEME = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 260_000
DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin123"


def hash_password(
    password: str,
    *,
    salt: str | None = None,
    iterations: int = DEFAULT_ITERATIONS,
) -> str:
    """Hash a password as ``pbkdf2_sha256$<iterations>$<salt>$<hash>``.

    Examples:
        >>> stored = hash_password("s3cret")
        >>> verify_password(stored, "s3cret")
        True
    """
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations
    )
    return f"{HASH_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_password(stored: str, candidate: str) -> bool:
    """Compare ``candidate`` against a stored secret in constant time."""
    if stored.startswith(f"{HASH_SCHEME}$"):
        try:
            _, iterations, salt, expected = stored.split("$", 3)
            digest = hashlib.pbkdf2_hmac(
                "sha256", candidate.encode("utf-8"), salt.encode("utf-8"), int(iterations)
            )
        except ValueError:
            logger.warning("Malformed password hash in credential store")
            return False
        return hmac.compare_digest(digest.hex(), expected)

    return hmac.compare_digest(stored.encode("utf-8"), candidate.encode("utf-8"))


class CredentialStore:
    """Validates logins against the credential file, with no caching."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def ensure_default(self) -> bool:
        """Write the default admin credential if the file is missing.

        Returns:
            True if the file was created.
        """
        if self.path.exists():
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{DEFAULT_USERNAME}|{DEFAULT_PASSWORD}\n", encoding="utf-8")
        logger.info("Created default credential file: %s", self.path)
        return True

    def validate(self, username: str | None, password: str | None) -> bool:
        """Return True iff an exact (username, password) pair exists right now.

        Never raises: read failures are logged and count as a failed login.
        """
        if not isinstance(username, str) or not isinstance(password, str):
            return False

        try:
            content = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.exception("Failed to read credential store %s", self.path)
            return False

        for line in content.splitlines():
            line = line.strip()
            if not line:
                continue
            parts = line.split("|")
            if len(parts) < 2:
                continue
            if parts[0].strip() != username:
                continue
            if verify_password(parts[1].strip(), password):
                return True
        return False
