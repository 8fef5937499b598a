"""bcrypt password hashing."""

import bcrypt

from config import settings
from errors import HashingError

# bcrypt only looks at the first 72 bytes of a password.
_MAX_PASSWORD_BYTES = 72


def _encode(plaintext: str) -> bytes:
    return plaintext.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(plaintext: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt digest of ``plaintext``."""
    try:
        salt = bcrypt.gensalt(rounds=rounds or settings.password_hash_rounds)
        return bcrypt.hashpw(_encode(plaintext), salt).decode("utf-8")
    except (ValueError, TypeError) as exc:
        raise HashingError("Password hashing failed") from exc


def verify_password(plaintext: str, digest: str) -> bool:
    """Check ``plaintext`` against a stored digest.

    A mismatch returns False; only a malformed digest raises HashingError.
    """
    try:
        return bcrypt.checkpw(_encode(plaintext), digest.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise HashingError("Stored password digest is malformed") from exc
