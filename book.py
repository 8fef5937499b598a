from __future__ import annotations


# Fields a draft carries from the catalog; the store adds id, owner and timestamps.
BOOK_FIELDS = ("ol_key", "title", "author", "first_publish_year", "isbn")


class Book:
    """A single entry in a user's (or the master) book list."""

    def __init__(self, ol_key: str, title: str, author: str | None = None,
                 first_publish_year: int | None = None, isbn: str | None = None,
                 id: str | None = None, user_id: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.ol_key = ol_key.strip()
        self.title = title
        self.author = author
        self.first_publish_year = first_publish_year
        self.isbn = isbn
        # None means the shared master list
        self.user_id = user_id
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author or 'unknown author'} ({self.ol_key})"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, ol_key={self.ol_key!r}, user_id={self.user_id!r})"

    def catalog_fields(self) -> dict:
        return {name: getattr(self, name) for name in BOOK_FIELDS}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ol_key": self.ol_key,
            "title": self.title,
            "author": self.author,
            "first_publish_year": self.first_publish_year,
            "isbn": self.isbn,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            ol_key=data["ol_key"],
            title=data["title"],
            author=data.get("author"),
            first_publish_year=data.get("first_publish_year"),
            isbn=data.get("isbn"),
            id=data.get("id"),
            user_id=data.get("user_id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
