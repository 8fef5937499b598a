import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

# Make sure .env is loaded before DATABASE_FILE is read, whatever the import order is.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file; stores take an explicit path to override it (tests do).
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE", "library.db")


def utcnow_iso() -> str:
    """ISO-8601 UTC timestamp with microseconds, so creation order survives sorting."""
    return datetime.now(timezone.utc).isoformat()


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Connection scoped to one operation: commits on success, rolls back on error."""
    conn = get_db_connection(db_file)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables and indexes if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                provider TEXT NOT NULL CHECK(provider IN ('local', 'google')),
                provider_id TEXT NOT NULL UNIQUE,
                email TEXT,
                name TEXT,
                password_hash TEXT,
                avatar_url TEXT,
                created_at TEXT NOT NULL
            )
        """)
        # Email is unique among local accounts only; a Google account may share it.
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_local_email ON users(email) WHERE provider = 'local'"
        )

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_expires_at ON sessions(expires_at)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                ol_key TEXT NOT NULL,
                title TEXT NOT NULL,
                author TEXT,
                first_publish_year INTEGER,
                isbn TEXT,
                user_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        # NULL owner is the master list; COALESCE makes it take part in the uniqueness check.
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_books_owner_key ON books(ol_key, COALESCE(user_id, ''))"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_user_created ON books(user_id, created_at)")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_seeds (
                user_id TEXT PRIMARY KEY,
                seeded_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the schema for the given (or default) database file."""
    create_tables(db_file)
    logger.debug("Database ready at %s", db_file or DATABASE_FILE)
