from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field, asdict
from typing import Dict, Optional

from database import connection, utcnow_iso
from errors import ConflictError

logger = logging.getLogger(__name__)

LOCAL = "local"
GOOGLE = "google"


def normalize_email(raw: Optional[str]) -> str:
    """Trim and lowercase an email address; None becomes an empty string."""
    if raw is None:
        return ""
    return str(raw).strip().lower()


def _conflict_message(provider: str) -> str:
    if provider == LOCAL:
        return "An account with this email already exists"
    return "An account for this provider profile already exists"


@dataclass
class User:
    """An account, local (email + password) or linked to a Google profile."""

    id: str
    provider: str
    provider_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    password_hash: Optional[str] = field(default=None, repr=False)
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None

    def to_public_dict(self) -> dict:
        """Serializable view of the user; the password hash is never included."""
        data = asdict(self)
        data.pop("password_hash", None)
        data.pop("provider_id", None)
        return data

    @staticmethod
    def from_row(row: sqlite3.Row) -> "User":
        return User(**{key: row[key] for key in row.keys()})


class UserStore:
    """Lookup and creation of user records.

    Subclasses enforce one local user per normalized email and one user per
    provider id. Lookups by email are exact matches on the normalized form.
    """

    def find_by_email(self, provider: str, email: str) -> Optional[User]:
        raise NotImplementedError

    def find_by_provider_id(self, provider_id: str) -> Optional[User]:
        raise NotImplementedError

    def find_by_id(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def create(self, *, provider: str, provider_id: str, email: Optional[str] = None,
               name: Optional[str] = None, password_hash: Optional[str] = None,
               avatar_url: Optional[str] = None) -> User:
        raise NotImplementedError

    @staticmethod
    def _new_user(provider: str, provider_id: str, email: Optional[str], name: Optional[str],
                  password_hash: Optional[str], avatar_url: Optional[str]) -> User:
        if provider == LOCAL and email is not None:
            email = normalize_email(email)
        return User(
            id=uuid.uuid4().hex,
            provider=provider,
            provider_id=provider_id,
            email=email,
            name=name,
            password_hash=password_hash,
            avatar_url=avatar_url,
            created_at=utcnow_iso(),
        )


class SQLiteUserStore(UserStore):
    """User records in the ``users`` table."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def _find_one(self, where: str, params: tuple) -> Optional[User]:
        with connection(self.db_file) as conn:
            row = conn.execute(f"SELECT * FROM users WHERE {where}", params).fetchone()
        return User.from_row(row) if row else None

    def find_by_email(self, provider: str, email: str) -> Optional[User]:
        return self._find_one("provider = ? AND email = ?", (provider, normalize_email(email)))

    def find_by_provider_id(self, provider_id: str) -> Optional[User]:
        return self._find_one("provider_id = ?", (provider_id,))

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self._find_one("id = ?", (user_id,))

    def create(self, *, provider: str, provider_id: str, email: Optional[str] = None,
               name: Optional[str] = None, password_hash: Optional[str] = None,
               avatar_url: Optional[str] = None) -> User:
        user = self._new_user(provider, provider_id, email, name, password_hash, avatar_url)
        try:
            with connection(self.db_file) as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, provider, provider_id, email, name, password_hash, avatar_url, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (user.id, user.provider, user.provider_id, user.email, user.name,
                     user.password_hash, user.avatar_url, user.created_at),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(_conflict_message(provider)) from e
        logger.info("Created %s user %s", provider, user.id)
        return user


class InMemoryUserStore(UserStore):
    """Process-local user store for tests and demos."""

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._lock = threading.RLock()

    def find_by_email(self, provider: str, email: str) -> Optional[User]:
        email = normalize_email(email)
        with self._lock:
            for user in self._users.values():
                if user.provider == provider and user.email == email:
                    return user
        return None

    def find_by_provider_id(self, provider_id: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.provider_id == provider_id:
                    return user
        return None

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def create(self, *, provider: str, provider_id: str, email: Optional[str] = None,
               name: Optional[str] = None, password_hash: Optional[str] = None,
               avatar_url: Optional[str] = None) -> User:
        user = self._new_user(provider, provider_id, email, name, password_hash, avatar_url)
        with self._lock:
            if self.find_by_provider_id(provider_id) is not None:
                raise ConflictError(_conflict_message(provider))
            if provider == LOCAL and self.find_by_email(LOCAL, user.email or "") is not None:
                raise ConflictError(_conflict_message(provider))
            self._users[user.id] = user
        return user

    def clear(self) -> None:
        with self._lock:
            self._users.clear()
