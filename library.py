import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from book import BOOK_FIELDS, Book
from database import connection, initialize_database, utcnow_iso
from errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_COLUMNS = "id, ol_key, title, author, first_publish_year, isbn, user_id, created_at, updated_at"


class Library:
    """Per-owner book lists backed by SQLite.

    Every operation takes the owner id and only ever touches rows with that
    owner; ``None`` addresses the shared master list. A record that exists
    but belongs to someone else is reported exactly like a missing one.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file
        initialize_database(db_file)

    # ------------------------- Core operations ------------------------- #
    def list_books(self, owner: Optional[str]) -> List[Book]:
        """Books of ``owner``, most recently created first."""
        with connection(self.db_file) as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM books WHERE user_id IS ? ORDER BY created_at DESC, rowid DESC",
                (owner,),
            ).fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def list_master_books(self) -> List[Book]:
        return self.list_books(None)

    def count_books(self, owner: Optional[str]) -> int:
        with connection(self.db_file) as conn:
            return conn.execute("SELECT COUNT(*) FROM books WHERE user_id IS ?", (owner,)).fetchone()[0]

    def get_book(self, owner: Optional[str], book_id: str) -> Book:
        with connection(self.db_file) as conn:
            book = self._fetch(conn, owner, book_id)
        if book is None:
            raise NotFoundError()
        return book

    def add_book(self, owner: Optional[str], fields: Dict[str, Any]) -> Book:
        """Create a book; ``ol_key`` and ``title`` are required."""
        values = self._clean_fields(fields, partial=False)
        now = utcnow_iso()
        book = Book(id=uuid.uuid4().hex, user_id=owner, created_at=now, updated_at=now, **values)
        try:
            with connection(self.db_file) as conn:
                conn.execute(
                    f"INSERT INTO books ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._row_values(book),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Book with key {book.ol_key} already exists.") from e
        return book

    def update_book(self, owner: Optional[str], book_id: str, fields: Dict[str, Any]) -> Book:
        """Overwrite the given catalog fields. Ownership can never change here."""
        values = self._clean_fields(fields, partial=True)
        try:
            with connection(self.db_file) as conn:
                book = self._fetch(conn, owner, book_id)
                if book is None:
                    raise NotFoundError()
                if not values:
                    return book
                values["updated_at"] = utcnow_iso()
                assignments = ", ".join(f"{name} = ?" for name in values)
                conn.execute(
                    f"UPDATE books SET {assignments} WHERE id = ? AND user_id IS ?",
                    (*values.values(), book_id, owner),
                )
                return self._fetch(conn, owner, book_id)
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Book with key {values.get('ol_key')} already exists.") from e

    def remove_book(self, owner: Optional[str], book_id: str) -> None:
        """Delete a book. Deleting a missing (or already deleted) book raises NotFoundError."""
        with connection(self.db_file) as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ? AND user_id IS ?", (book_id, owner))
            if cursor.rowcount == 0:
                raise NotFoundError()

    def upsert_book(self, owner: Optional[str], draft: Book) -> Book:
        """Create or overwrite the record keyed by (``draft.ol_key``, ``owner``)."""
        now = utcnow_iso()
        with connection(self.db_file) as conn:
            # The UPDATE takes SQLite's write lock, so the insert below cannot race
            # another upsert of the same key.
            cursor = conn.execute(
                """
                UPDATE books SET title = ?, author = ?, first_publish_year = ?, isbn = ?, updated_at = ?
                WHERE ol_key = ? AND user_id IS ?
                """,
                (draft.title, draft.author, draft.first_publish_year, draft.isbn, now, draft.ol_key, owner),
            )
            if cursor.rowcount == 0:
                book = Book(id=uuid.uuid4().hex, user_id=owner, created_at=now, updated_at=now,
                            **draft.catalog_fields())
                conn.execute(f"INSERT INTO books ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                             self._row_values(book))
                return book
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM books WHERE ol_key = ? AND user_id IS ?", (draft.ol_key, owner)
            ).fetchone()
            return Book.from_dict(dict(row))

    # ------------------------- Seeding ------------------------- #
    def ensure_user_books(self, owner: str) -> int:
        """Copy the master list into an empty personal list, once per user.

        The ``book_seeds`` marker is claimed in the same transaction as the
        copies and rows are inserted with OR IGNORE, so concurrent first
        requests for one user neither duplicate the list nor fail.
        The marker is only kept when something was copied, so a user who
        arrives before the master list is filled gets seeded later.
        Returns the number of books copied.
        """
        if self.count_books(owner):
            return 0
        now = utcnow_iso()
        with connection(self.db_file) as conn:
            claimed = conn.execute(
                "INSERT OR IGNORE INTO book_seeds (user_id, seeded_at) VALUES (?, ?)", (owner, now)
            ).rowcount
            if not claimed:
                return 0
            masters = conn.execute(
                f"SELECT {_COLUMNS} FROM books WHERE user_id IS NULL ORDER BY created_at, rowid"
            ).fetchall()
            if not masters:
                # Nothing to copy yet; leave the user eligible for a later master list.
                conn.execute("DELETE FROM book_seeds WHERE user_id = ?", (owner,))
                return 0
            copied = 0
            for row in masters:
                cursor = conn.execute(
                    f"INSERT OR IGNORE INTO books ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (uuid.uuid4().hex, row["ol_key"], row["title"], row["author"], row["first_publish_year"],
                     row["isbn"], owner, now, now),
                )
                copied += cursor.rowcount
        if copied:
            logger.info("Seeded %d master books for user %s", copied, owner)
        return copied

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _fetch(conn: sqlite3.Connection, owner: Optional[str], book_id: str) -> Optional[Book]:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM books WHERE id = ? AND user_id IS ?", (book_id, owner)
        ).fetchone()
        return Book.from_dict(dict(row)) if row else None

    @staticmethod
    def _row_values(book: Book) -> tuple:
        return (book.id, book.ol_key, book.title, book.author, book.first_publish_year, book.isbn,
                book.user_id, book.created_at, book.updated_at)

    @staticmethod
    def _clean_fields(fields: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        """Keep only catalog fields; ``id``, ``user_id`` and timestamps are dropped."""
        values = {name: fields[name] for name in BOOK_FIELDS if name in fields}
        if isinstance(values.get("ol_key"), str):
            values["ol_key"] = values["ol_key"].strip()
        for required in ("ol_key", "title"):
            value = values.get(required)
            missing = value is None or (isinstance(value, str) and not value.strip())
            if missing and (not partial or required in values):
                raise ValidationError(f"{required} is required")
        return values
