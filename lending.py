"""Borrow and return transactions.

A borrow checks the borrower's open-loan count against their limit and the
book's available copies, then takes one copy and opens a record due after the
loan period. A return closes the open record, charges a late fee per day past
the due date at the rate for the book's category, and puts the copy back.
Each operation runs inside a single ``database.transaction`` so a failure at
any step leaves the catalog and the ledger untouched.
"""
import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

import database
from borrow_record import BorrowRecord
from config import settings
from errors import (
    BookUnavailableError,
    BorrowLimitExceededError,
    DuplicateResourceError,
    ResourceNotFoundError,
)
from stores import CatalogStore, FinePolicyStore, LoanLedger, MembershipStore

logger = logging.getLogger(__name__)


class LendingService:

    def __init__(self, catalog: CatalogStore, members: MembershipStore, ledger: LoanLedger,
                 fine_policies: FinePolicyStore, db_file: Optional[str] = None,
                 clock: Callable[[], date] = date.today,
                 loan_period_days: Optional[int] = None,
                 default_fine_per_day: Optional[float] = None) -> None:
        self.catalog = catalog
        self.members = members
        self.ledger = ledger
        self.fine_policies = fine_policies
        self.db_file = db_file
        self.clock = clock
        self.loan_period = timedelta(
            days=settings.loan_period_days if loan_period_days is None else loan_period_days
        )
        self.default_fine_per_day = (
            settings.default_fine_per_day if default_fine_per_day is None else default_fine_per_day
        )

    @classmethod
    def for_database(cls, db_file: Optional[str] = None, **kwargs) -> "LendingService":
        """Build the service over the SQLite stores of one database file."""
        database.initialize_database(db_file)
        return cls(
            CatalogStore(db_file),
            MembershipStore(db_file),
            LoanLedger(db_file),
            FinePolicyStore(db_file),
            db_file=db_file,
            **kwargs,
        )

    # ------------------------- Transactions ------------------------- #
    def borrow_book(self, borrower_id: str, book_id: str) -> BorrowRecord:
        with database.transaction(self.db_file):
            borrower = self.members.find_by_id(borrower_id)
            if not borrower:
                raise ResourceNotFoundError(f"Borrower not found with id: {borrower_id}")

            book = self.catalog.find_by_id(book_id)
            if not book:
                raise ResourceNotFoundError(f"Book not found with id: {book_id}")

            open_loans = self.ledger.count_open_for_borrower(borrower_id)
            if open_loans >= borrower.max_borrow_limit:
                logger.warning("Borrower %s is at their limit of %d loans", borrower_id, borrower.max_borrow_limit)
                raise BorrowLimitExceededError(borrower.name)

            if self.ledger.find_open_for(borrower_id, book_id):
                raise DuplicateResourceError(
                    f"Borrower {borrower.name} already has an open loan for book: {book.title}"
                )

            if book.available_copies < 1:
                logger.warning("No copies of book %s left to lend", book_id)
                raise BookUnavailableError(book.title)

            book.available_copies -= 1
            book.refresh_availability()
            self.catalog.save(book)

            today = self.clock()
            record = self.ledger.save(BorrowRecord(
                book=book,
                borrower=borrower,
                borrow_date=today,
                due_date=today + self.loan_period,
                fine_amount=0.0,
            ))

        logger.info("Borrower %s borrowed book %s, due %s", borrower_id, book_id, record.due_date)
        return record

    def return_book(self, borrower_id: str, book_id: str) -> BorrowRecord:
        with database.transaction(self.db_file):
            record = self.ledger.find_open_for(borrower_id, book_id)
            if not record:
                raise ResourceNotFoundError(f"Active borrow record not found for book id: {book_id}")

            record.return_date = self.clock()
            record.fine_amount = self.compute_fine(record)
            self.ledger.save(record)

            # The book may have been soft-deleted while it was out
            book = self.catalog.find_by_id(book_id, include_deleted=True) or record.book
            book.available_copies += 1
            # Returning always flags the book available, whatever the counts say
            book.available = True
            self.catalog.save(book)
            record.book = book

        if record.fine_amount:
            logger.info("Book %s returned %d day(s) late by borrower %s, fine %.2f",
                        book_id, (record.return_date - record.due_date).days, borrower_id, record.fine_amount)
        else:
            logger.info("Book %s returned on time by borrower %s", book_id, borrower_id)
        return record

    # ------------------------- Fines ------------------------- #
    def compute_fine(self, record: BorrowRecord) -> float:
        """Days past the due date times the daily rate; zero if returned by the due date."""
        if record.return_date is None or record.return_date <= record.due_date:
            return 0.0
        days_late = (record.return_date - record.due_date).days
        return days_late * self.fine_per_day_for_category(record.book.category)

    def fine_per_day_for_category(self, category: Optional[str]) -> float:
        if category is None:
            return self.default_fine_per_day
        for policy in self.fine_policies.find_all():
            if policy.matches(category):
                return policy.fine_per_day
        return self.default_fine_per_day

    # ------------------------- Queries ------------------------- #
    def active_records(self) -> List[BorrowRecord]:
        return self.ledger.find_open()

    def borrow_history(self, borrower_id: str) -> List[BorrowRecord]:
        return self.ledger.find_by_borrower(borrower_id)

    def overdue_records(self, as_of: Optional[date] = None) -> List[BorrowRecord]:
        """Open records whose due date is strictly before ``as_of`` (default: today)."""
        return self.ledger.find_overdue(as_of or self.clock())

    @staticmethod
    def to_response(record: BorrowRecord) -> Dict[str, Any]:
        """Flatten a record with its book title and borrower name for callers."""
        return record.to_dict()
