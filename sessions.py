"""Server-side sessions.

A session row only stores the principal's id. The full user is looked up again
on every ``resolve`` so profile changes and deleted accounts show up immediately.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from database import connection
from users import User, UserStore

logger = logging.getLogger(__name__)


@dataclass
class Session:
    token: str
    user_id: str
    created_at: str
    expires_at: str


class SessionManager:
    def __init__(self, db_file: Optional[str], user_store: UserStore, ttl_seconds: int = 604800) -> None:
        self.db_file = db_file
        self.user_store = user_store
        self.ttl_seconds = ttl_seconds

    def establish(self, user: User, previous_token: Optional[str] = None) -> Session:
        """Bind ``user`` to a fresh session token.

        Any session the client presented before logging in is dropped so a
        pre-login token can never carry the new identity.
        """
        if previous_token:
            self.terminate(previous_token)
        now = datetime.now(timezone.utc)
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user.id,
            created_at=now.isoformat(),
            expires_at=(now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        )
        with connection(self.db_file) as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (session.token, session.user_id, session.created_at, session.expires_at),
            )
        return session

    def resolve(self, token: Optional[str]) -> Optional[User]:
        """Return the user behind ``token``, or None if the token is unknown, expired or orphaned."""
        if not token:
            return None
        now = datetime.now(timezone.utc).isoformat()
        with connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT user_id FROM sessions WHERE token = ? AND expires_at > ?",
                (token, now),
            ).fetchone()
        if row is None:
            return None
        return self.user_store.find_by_id(row["user_id"])

    def terminate(self, token: Optional[str]) -> None:
        """Invalidate a session. Unknown or already-terminated tokens are ignored."""
        if not token:
            return
        with connection(self.db_file) as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))

    def purge_expired(self) -> int:
        now = datetime.now(timezone.utc).isoformat()
        with connection(self.db_file) as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE expires_at <= ?", (now,))
            removed = cursor.rowcount
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed
