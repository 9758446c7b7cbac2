"""SQLite-backed stores for books, borrowers, loans and fine policies.

Each store owns identity assignment for its rows and translates constraint
violations into :class:`errors.DuplicateResourceError`. Calls made inside
``database.transaction()`` on the same thread share that transaction.
"""
import logging
import sqlite3
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

import database
from book import Book
from borrow_record import BorrowRecord, FinePolicy
from borrower import Borrower
from errors import DuplicateResourceError

logger = logging.getLogger(__name__)

BOOK_COLUMNS = ("id", "title", "author", "category", "isbn", "total_copies",
                "available_copies", "available", "deleted")
BORROWER_COLUMNS = ("id", "name", "email", "membership_type", "max_borrow_limit")


def _duplicate(exc: sqlite3.IntegrityError, what: str) -> DuplicateResourceError:
    logger.warning("Constraint violation on %s: %s", what, exc)
    return DuplicateResourceError(f"A {what} with the same unique field already exists.")


class CatalogStore:
    """Books, looked up by id, title, ISBN or category. Soft-deleted rows are hidden by default."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def _find_one(self, where: str, params: tuple) -> Optional[Book]:
        with database.connection(self.db_file) as conn:
            row = conn.execute(f"SELECT * FROM books WHERE {where} LIMIT 1", params).fetchone()
        return Book.from_dict(row) if row else None

    def find_by_id(self, book_id: str, include_deleted: bool = False) -> Optional[Book]:
        if include_deleted:
            return self._find_one("id = ?", (book_id,))
        return self._find_one("id = ? AND deleted = 0", (book_id,))

    def find_by_title(self, title: str) -> Optional[Book]:
        return self._find_one("title = ? AND deleted = 0", (title,))

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        return self._find_one("isbn = ? AND deleted = 0", (isbn,))

    def find_by_category(self, category: str) -> List[Book]:
        with database.connection(self.db_file) as conn:
            rows = conn.execute(
                "SELECT * FROM books WHERE category = ? AND deleted = 0 ORDER BY rowid", (category,)
            ).fetchall()
        return [Book.from_dict(r) for r in rows]

    def find_all(self, include_deleted: bool = False) -> List[Book]:
        query = "SELECT * FROM books" if include_deleted else "SELECT * FROM books WHERE deleted = 0"
        with database.connection(self.db_file) as conn:
            rows = conn.execute(query + " ORDER BY rowid").fetchall()
        return [Book.from_dict(r) for r in rows]

    def save(self, book: Book) -> Book:
        try:
            with database.connection(self.db_file) as conn:
                if book.id is None:
                    book.id = str(uuid.uuid4())
                    conn.execute(
                        "INSERT INTO books (id, title, author, category, isbn, total_copies, "
                        "available_copies, available, deleted) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (book.id, book.title, book.author, book.category, book.isbn, book.total_copies,
                         book.available_copies, book.available, book.deleted),
                    )
                else:
                    conn.execute(
                        "UPDATE books SET title = ?, author = ?, category = ?, isbn = ?, total_copies = ?, "
                        "available_copies = ?, available = ?, deleted = ? WHERE id = ?",
                        (book.title, book.author, book.category, book.isbn, book.total_copies,
                         book.available_copies, book.available, book.deleted, book.id),
                    )
        except sqlite3.IntegrityError as e:
            raise _duplicate(e, "book") from e
        logger.debug("Saved book %s (%s)", book.id, book.title)
        return book


class MembershipStore:
    """Registered borrowers."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def find_by_id(self, borrower_id: str) -> Optional[Borrower]:
        with database.connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM borrowers WHERE id = ?", (borrower_id,)).fetchone()
        return Borrower.from_dict(row) if row else None

    def find_by_email(self, email: str) -> Optional[Borrower]:
        with database.connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM borrowers WHERE email = ?", (email,)).fetchone()
        return Borrower.from_dict(row) if row else None

    def exists_by_email(self, email: str) -> bool:
        return self.find_by_email(email) is not None

    def find_all(self) -> List[Borrower]:
        with database.connection(self.db_file) as conn:
            rows = conn.execute("SELECT * FROM borrowers ORDER BY rowid").fetchall()
        return [Borrower.from_dict(r) for r in rows]

    def save(self, borrower: Borrower) -> Borrower:
        if borrower.id is not None:
            raise ValueError("Borrowers cannot be modified after registration.")
        borrower.id = str(uuid.uuid4())
        try:
            with database.connection(self.db_file) as conn:
                conn.execute(
                    "INSERT INTO borrowers (id, name, email, membership_type, max_borrow_limit) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (borrower.id, borrower.name, borrower.email, borrower.membership_type.value,
                     borrower.max_borrow_limit),
                )
        except sqlite3.IntegrityError as e:
            borrower.id = None
            raise _duplicate(e, "borrower") from e
        return borrower


_RECORD_SELECT = (
    "SELECT r.id, r.borrow_date, r.due_date, r.return_date, r.fine_amount, "
    + ", ".join(f"b.{c} AS book__{c}" for c in BOOK_COLUMNS) + ", "
    + ", ".join(f"m.{c} AS borrower__{c}" for c in BORROWER_COLUMNS)
    + " FROM borrow_records r"
    " JOIN books b ON b.id = r.book_id"
    " JOIN borrowers m ON m.id = r.borrower_id"
)


def _prefixed(row: sqlite3.Row, prefix: str) -> Dict[str, Any]:
    return {key[len(prefix):]: row[key] for key in row.keys() if key.startswith(prefix)}


def _record_from_row(row: sqlite3.Row) -> BorrowRecord:
    book = Book.from_dict(_prefixed(row, "book__"))
    borrower = Borrower.from_dict(_prefixed(row, "borrower__"))
    return BorrowRecord.from_row(row, book, borrower)


class LoanLedger:
    """Borrow records, in insertion order."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def _select(self, where: str = "", params: tuple = ()) -> List[BorrowRecord]:
        query = _RECORD_SELECT + (f" WHERE {where}" if where else "") + " ORDER BY r.rowid"
        with database.connection(self.db_file) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_record_from_row(r) for r in rows]

    def find_by_id(self, record_id: str) -> Optional[BorrowRecord]:
        records = self._select("r.id = ?", (record_id,))
        return records[0] if records else None

    def find_by_borrower(self, borrower_id: str) -> List[BorrowRecord]:
        return self._select("r.borrower_id = ?", (borrower_id,))

    def find_open(self) -> List[BorrowRecord]:
        return self._select("r.return_date IS NULL")

    def find_open_for(self, borrower_id: str, book_id: str) -> Optional[BorrowRecord]:
        """First open record for the pair, if any."""
        records = self._select(
            "r.borrower_id = ? AND r.book_id = ? AND r.return_date IS NULL", (borrower_id, book_id)
        )
        return records[0] if records else None

    def count_open_for_borrower(self, borrower_id: str) -> int:
        with database.connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM borrow_records WHERE borrower_id = ? AND return_date IS NULL",
                (borrower_id,),
            ).fetchone()
        return row[0]

    def find_overdue(self, as_of: date) -> List[BorrowRecord]:
        # ISO dates compare correctly as text
        return self._select("r.return_date IS NULL AND r.due_date < ?", (as_of.isoformat(),))

    def save(self, record: BorrowRecord) -> BorrowRecord:
        try:
            with database.connection(self.db_file) as conn:
                if record.id is None:
                    record.id = str(uuid.uuid4())
                    conn.execute(
                        "INSERT INTO borrow_records (id, book_id, borrower_id, borrow_date, due_date, "
                        "return_date, fine_amount) VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (record.id, record.book.id, record.borrower.id, record.borrow_date.isoformat(),
                         record.due_date.isoformat(),
                         record.return_date.isoformat() if record.return_date else None,
                         record.fine_amount),
                    )
                else:
                    conn.execute(
                        "UPDATE borrow_records SET return_date = ?, fine_amount = ? WHERE id = ?",
                        (record.return_date.isoformat() if record.return_date else None,
                         record.fine_amount, record.id),
                    )
        except sqlite3.IntegrityError as e:
            raise _duplicate(e, "borrow record") from e
        return record


class FinePolicyStore:
    """Per-category daily fine rates; categories compare case-insensitively."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    def find_all(self) -> List[FinePolicy]:
        with database.connection(self.db_file) as conn:
            rows = conn.execute("SELECT * FROM fine_policy ORDER BY id").fetchall()
        return [FinePolicy.from_dict(r) for r in rows]

    def find_by_category(self, category: str) -> Optional[FinePolicy]:
        with database.connection(self.db_file) as conn:
            row = conn.execute("SELECT * FROM fine_policy WHERE category = ?", (category.strip(),)).fetchone()
        return FinePolicy.from_dict(row) if row else None

    def save(self, policy: FinePolicy) -> FinePolicy:
        """Insert the policy or replace the rate of an existing category."""
        if policy.fine_per_day < 0:
            raise ValueError("Fine per day cannot be negative.")
        if not policy.category:
            raise ValueError("Category must be provided.")
        with database.connection(self.db_file) as conn:
            conn.execute(
                "INSERT INTO fine_policy (category, fine_per_day) VALUES (?, ?) "
                "ON CONFLICT(category) DO UPDATE SET fine_per_day = excluded.fine_per_day",
                (policy.category, policy.fine_per_day),
            )
        saved = self.find_by_category(policy.category)
        logger.info("Fine policy for %s set to %.2f per day", saved.category, saved.fine_per_day)
        return saved
