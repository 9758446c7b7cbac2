"""Exceptions raised by the catalog, membership and lending services."""


class LibraryError(Exception):
    """Base class for every error the services report to their callers."""


class ResourceNotFoundError(LibraryError, LookupError):
    """A borrower, book or open borrow record does not exist."""


class BorrowLimitExceededError(LibraryError):
    def __init__(self, borrower_name: str) -> None:
        super().__init__(f"Borrow limit exceeded for borrower: {borrower_name}")
        self.borrower_name = borrower_name


class BookUnavailableError(LibraryError):
    def __init__(self, title: str) -> None:
        super().__init__(f"No available copies for book: {title}")
        self.title = title


class DuplicateResourceError(LibraryError):
    """A unique field (title, ISBN, email, open loan) is already taken."""
