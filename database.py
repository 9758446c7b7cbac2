import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from config import settings

logger = logging.getLogger(__name__)

# Default database file. Tests and callers may point this elsewhere before
# building the services, or pass db_file explicitly to each helper.
DATABASE_FILE = settings.database_file

# Reference fine rates seeded on first start (category, fine per day)
DEFAULT_FINE_POLICIES = [
    ("Fiction", 5.0),
    ("Reference", 20.0),
    ("Children", 2.0),
]

# Connections of transactions currently open on this thread, keyed by file
_local = threading.local()


def _active_transactions() -> Dict[str, sqlite3.Connection]:
    active = getattr(_local, "transactions", None)
    if active is None:
        active = _local.transactions = {}
    return active


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a new autocommit connection to the SQLite database."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, isolation_level=None, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield the connection of the active transaction, or a short-lived one.

    Outside a transaction every statement commits on its own.
    """
    path = db_file or DATABASE_FILE
    active = _active_transactions().get(path)
    if active is not None:
        yield active
        return
    conn = get_db_connection(path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a block of store calls as one all-or-nothing unit.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so two
    read-validate-write sequences against the same rows cannot interleave.
    Any exception rolls back every write made inside the block. Nested use
    joins the outer transaction.
    """
    path = db_file or DATABASE_FILE
    active = _active_transactions()
    if path in active:
        yield active[path]
        return

    conn = get_db_connection(path)
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error:
        conn.close()
        raise
    active[path] = conn
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        logger.debug("Transaction on %s rolled back", path)
        raise
    else:
        conn.execute("COMMIT")
    finally:
        active.pop(path, None)
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the required tables and indexes if they don't exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT,
                category TEXT,
                isbn TEXT,
                total_copies INTEGER NOT NULL DEFAULT 0 CHECK(total_copies >= 0),
                available_copies INTEGER NOT NULL DEFAULT 0 CHECK(available_copies >= 0),
                available BOOLEAN NOT NULL DEFAULT 1,
                deleted BOOLEAN NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrowers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                membership_type TEXT NOT NULL DEFAULT 'BASIC',
                max_borrow_limit INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrow_records (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                borrower_id TEXT NOT NULL,
                borrow_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                fine_amount REAL NOT NULL DEFAULT 0,
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (borrower_id) REFERENCES borrowers(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fine_policy (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category TEXT NOT NULL UNIQUE COLLATE NOCASE,
                fine_per_day REAL NOT NULL CHECK(fine_per_day >= 0)
            )
        """)

        # Uniqueness among live catalog entries only; soft-deleted rows keep their values
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_books_title_live ON books(title) WHERE deleted = 0"
        )
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_books_isbn_live ON books(isbn) "
            "WHERE deleted = 0 AND isbn IS NOT NULL"
        )
        # At most one open loan per (borrower, book)
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_borrow_records_open "
            "ON borrow_records(borrower_id, book_id) WHERE return_date IS NULL"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_category ON books(category)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_borrower ON borrow_records(borrower_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrow_records_due ON borrow_records(return_date, due_date)")

        cursor.executemany(
            "INSERT OR IGNORE INTO fine_policy (category, fine_per_day) VALUES (?, ?)",
            DEFAULT_FINE_POLICIES,
        )
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug("Database ready at %s", db_file or DATABASE_FILE)
