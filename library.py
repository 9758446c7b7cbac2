import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

import database
from book import Book
from config import settings
from errors import DuplicateResourceError, ResourceNotFoundError
from stores import CatalogStore, LoanLedger
from utils.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ("title", "author", "category", "total_copies", "available_copies")


@dataclass
class Page:
    """One page of a filtered, sorted listing."""
    items: List[Book] = field(default_factory=list)
    page: int = 0
    size: int = 10
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.size - 1) // self.size if self.size else 0


class Library:
    """Manages the book catalog: ingestion, lookups, edits and soft deletion."""

    def __init__(self, db_file: Optional[str] = None, catalog: Optional[CatalogStore] = None,
                 ledger: Optional[LoanLedger] = None) -> None:
        self.db_file = db_file
        database.initialize_database(db_file)
        self.catalog = catalog or CatalogStore(db_file)
        self.ledger = ledger or LoanLedger(db_file)

    # ------------------------- Core operations ------------------------- #
    def add_or_update_book(self, title: str, author: Optional[str] = None, category: Optional[str] = None,
                           isbn: Optional[str] = None, total_copies: int = 1) -> Book:
        """Add a title to the catalog, or add copies to the live book with the same title."""
        if not TextValidator.validate_title(title):
            raise ValueError("Title must be provided")
        if total_copies is None or total_copies <= 0:
            raise ValueError("Total copies must be at least 1")

        title = title.strip()
        isbn = self._normalize_isbn(isbn)

        with database.transaction(self.db_file):
            if isbn and self.catalog.find_by_isbn(isbn):
                raise DuplicateResourceError("A book with this ISBN already exists.")

            existing = self.catalog.find_by_title(title)
            if existing:
                existing.add_copies(total_copies)
                book = self.catalog.save(existing)
                logger.info("Added %d copies to '%s' (now %d)", total_copies, title, book.total_copies)
            else:
                book = self.catalog.save(Book(title=title, author=author, category=category, isbn=isbn,
                                              total_copies=total_copies))
                logger.info("Catalogued new book '%s' with %d copies", title, total_copies)
        return book

    def list_books(self, category: Optional[str] = None, available: Optional[bool] = None,
                   page: int = 0, size: Optional[int] = None, sort_by: Optional[str] = None) -> Page:
        if page < 0:
            page = 0
        if size is None or size <= 0:
            size = settings.default_page_size
        size = min(size, settings.max_page_size)
        sort_by = sort_by or "title"
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Invalid sort_by. Allowed: {', '.join(SORTABLE_FIELDS)}")

        if category and category.strip():
            books = self.catalog.find_by_category(category.strip())
        else:
            books = self.catalog.find_all()

        if available is not None:
            books = [b for b in books if b.available == available]

        books.sort(key=lambda b: self._sort_key(b, sort_by))
        start = min(page * size, len(books))
        return Page(items=books[start:start + size], page=page, size=size, total=len(books))

    def get_book(self, book_id: str) -> Book:
        book = self.catalog.find_by_id(book_id)
        if not book:
            raise ResourceNotFoundError(f"Book not found with id: {book_id}")
        return book

    def update_book(self, book_id: str, *, title: Optional[str] = None, author: Optional[str] = None,
                    category: Optional[str] = None, isbn: Optional[str] = None,
                    total_copies: Optional[int] = None) -> Book:
        """Change the provided fields of a book; blank values leave a field as it is."""
        with database.transaction(self.db_file):
            book = self.get_book(book_id)

            if TextValidator.has_text(title):
                book.title = title.strip()
            if TextValidator.has_text(author):
                book.author = author
            if TextValidator.has_text(category):
                book.category = category
            if TextValidator.has_text(isbn):
                book.isbn = self._normalize_isbn(isbn)

            if total_copies is not None and total_copies > 0:
                on_loan = book.total_copies - book.available_copies
                if total_copies < on_loan:
                    raise ValueError(f"Total copies cannot be less than the {on_loan} copies on loan")
                book.total_copies = total_copies
                book.available_copies = total_copies - on_loan

            book.refresh_availability()
            self.catalog.save(book)
        logger.info("Updated book %s", book_id)
        return book

    def remove_book(self, book_id: str) -> None:
        """Soft delete: the row stays but disappears from every lookup."""
        with database.transaction(self.db_file):
            book = self.get_book(book_id)
            book.deleted = True
            self.catalog.save(book)
        logger.info("Soft-deleted book %s ('%s')", book_id, book.title)

    def get_statistics(self, as_of: Optional[date] = None) -> dict:
        books = self.catalog.find_all()
        open_records = self.ledger.find_open()
        overdue = self.ledger.find_overdue(as_of or date.today())
        return {
            "total_titles": len(books),
            "total_copies": sum(b.total_copies for b in books),
            "available_copies": sum(b.available_copies for b in books),
            "open_loans": len(open_records),
            "overdue_loans": len(overdue),
        }

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _normalize_isbn(isbn: Optional[str]) -> Optional[str]:
        if not TextValidator.has_text(isbn):
            return None
        normalized = ISBNValidator.normalize_isbn(isbn)
        if not ISBNValidator.is_valid_isbn(normalized):
            raise ValueError("Invalid ISBN format.")
        return normalized

    @staticmethod
    def _sort_key(book: Book, sort_by: str):
        value = getattr(book, sort_by)
        if isinstance(value, str) or value is None:
            return (value or "").lower()
        return value
