from __future__ import annotations

from datetime import date
from typing import Any, Mapping, Optional

from book import Book
from borrower import Borrower


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


class BorrowRecord:
    """One loan of one copy of a book to one borrower.

    ``return_date`` stays ``None`` while the loan is open. ``fine_amount`` is
    always a number and is only settled when the book comes back.
    """

    def __init__(self, book: Book, borrower: Borrower, borrow_date: date, due_date: date,
                 return_date: date | None = None, fine_amount: float = 0.0, id: str | None = None) -> None:
        self.id = id
        self.book = book
        self.borrower = borrower
        self.borrow_date = borrow_date
        self.due_date = due_date
        self.return_date = return_date
        self.fine_amount = fine_amount

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def is_overdue(self, as_of: date) -> bool:
        return self.is_open and self.due_date < as_of

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book.id,
            "book_title": self.book.title,
            "borrower_id": self.borrower.id,
            "borrower_name": self.borrower.name,
            "borrow_date": self.borrow_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "fine_amount": self.fine_amount,
        }

    @staticmethod
    def from_row(data: Mapping[str, Any], book: Book, borrower: Borrower) -> "BorrowRecord":
        return BorrowRecord(
            id=data["id"],
            book=book,
            borrower=borrower,
            borrow_date=_parse_date(data["borrow_date"]),
            due_date=_parse_date(data["due_date"]),
            return_date=_parse_date(data["return_date"]),
            fine_amount=float(data["fine_amount"] or 0.0),
        )


class FinePolicy:
    """Daily late fee charged for overdue books of one category."""

    def __init__(self, category: str, fine_per_day: float, id: int | None = None) -> None:
        self.id = id
        self.category = category.strip()
        self.fine_per_day = fine_per_day

    def matches(self, category: str) -> bool:
        return self.category.lower() == category.lower()

    def to_dict(self) -> dict:
        return {"id": self.id, "category": self.category, "fine_per_day": self.fine_per_day}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "FinePolicy":
        return FinePolicy(id=data["id"], category=data["category"], fine_per_day=float(data["fine_per_day"]))
