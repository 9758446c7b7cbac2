from __future__ import annotations

from typing import Any, Mapping


class Book:
    """A catalogued title together with its copy counts."""

    def __init__(self, title: str, author: str | None = None, category: str | None = None,
                 isbn: str | None = None, total_copies: int = 0, available_copies: int | None = None,
                 available: bool | None = None, deleted: bool = False, id: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author
        self.category = category
        self.isbn = isbn.strip() if isbn else None
        self.total_copies = total_copies
        self.available_copies = total_copies if available_copies is None else available_copies
        # Stored flag; only refresh_availability() derives it from the counts
        self.available = self.available_copies > 0 if available is None else available
        self.deleted = deleted

    def refresh_availability(self) -> None:
        self.available = self.available_copies > 0

    def add_copies(self, count: int) -> None:
        self.total_copies += count
        self.available_copies += count
        self.refresh_availability()

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author or 'Unknown Author'} ({self.available_copies}/{self.total_copies} available)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "isbn": self.isbn,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "available": self.available,
            "deleted": self.deleted,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Book":
        # SQLite hands booleans back as 0/1
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            category=data["category"],
            isbn=data["isbn"],
            total_copies=data["total_copies"],
            available_copies=data["available_copies"],
            available=bool(data["available"]),
            deleted=bool(data["deleted"]),
        )
