"""Persisted user session.

The session holds the OAuth tokens and the identity of the logged in
user. It is stored as JSON in the configuration directory. Storage is
behind the SessionStore protocol so callers can swap the file for an
in-memory double.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

# Seconds subtracted from the server declared token lifetime
EXPIRY_SAFETY_MARGIN = 10


class UserSession(BaseModel):
    """An authenticated user session.

    Attributes:
        refresh_token: Token to silently obtain new access tokens.
        access_token: Bearer token for registry requests.
        access_token_expires: Expiry as unix timestamp in seconds.
        user_id: Account id.
        user_email: Account email address.
        user_display_name: Account display name.
    """

    refresh_token: str | None = None
    access_token: str
    access_token_expires: int
    user_id: str = ""
    user_email: str = ""
    user_display_name: str = ""

    def is_expired(self, now: float) -> bool:
        """Check whether the access token has expired at ``now``."""
        return now >= self.access_token_expires


def expiry_from_lifetime(now: float, expires_in: int) -> int:
    """Compute the stored expiry timestamp for a token lifetime."""
    return int(now) + expires_in - EXPIRY_SAFETY_MARGIN


class SessionStore(Protocol):
    """Load/save contract for the persisted session."""

    def load(self) -> UserSession | None:
        """Return the stored session, or None if there is no usable one."""
        ...

    def save(self, session: UserSession) -> None:
        """Persist the session, replacing any previous one."""
        ...

    def clear(self) -> bool:
        """Remove the stored session. Returns True if one existed."""
        ...


class FileSessionStore:
    """SessionStore backed by a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> UserSession | None:
        try:
            content = self.path.read_bytes()
        except OSError:
            logger.debug("No session file at %s", self.path)
            return None
        try:
            return UserSession.model_validate_json(content)
        except ValidationError as e:
            logger.info("Ignoring unreadable session file %s: %s", self.path, e)
            return None

    def save(self, session: UserSession) -> None:
        """Write the session file.

        Raises:
            OSError: If the file cannot be written.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            # The mode argument only applies to new files
            os.fchmod(f.fileno(), 0o600)
            f.write(session.model_dump_json())
        logger.debug("Session written to %s", self.path)

    def clear(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info("Removed session file %s", self.path)
        return True


__all__ = [
    "EXPIRY_SAFETY_MARGIN",
    "FileSessionStore",
    "SessionStore",
    "UserSession",
    "expiry_from_lifetime",
]
