import logging
import subprocess
import sys
import webbrowser
from datetime import date
from typing import Optional

import typer

import database
from borrow_record import FinePolicy
from config import settings
from errors import LibraryError
from lending import LendingService
from library import Library
from membership import Membership
from utils.ui_helpers import (
    print_list_result,
    print_policies_result,
    print_records_result,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "Library CLI"

logger = logging.getLogger(__name__)


class Services:
    """The three services the CLI talks to, bound to one database file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.library = Library(db_file)
        self.membership = Membership(db_file)
        self.lending = LendingService.for_database(db_file)


# Shared instance, rebuilt when the database file changes
class ServiceManager:
    _instance: Optional[Services] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Services:
        current_db = database.DATABASE_FILE
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = Services()
            cls._db_file_snapshot = current_db
        return cls._instance


# --- Typer CLI app ---
app = typer.Typer(help=APP_NAME)

@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show log messages"),
):
    """Global CLI options (output mode, logging)."""
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)
    if output:
        set_output_mode(output)

@app.command("list")
def cli_list(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only this category"),
    available: Optional[bool] = typer.Option(None, "--available/--unavailable", help="Filter on availability"),
    page: int = typer.Option(0, "--page", help="Zero-based page number"),
    size: int = typer.Option(settings.default_page_size, "--size", help="Books per page"),
    sort_by: str = typer.Option("title", "--sort-by", help="title | author | category | total_copies | available_copies"),
):
    """List catalogued books."""
    services = ServiceManager.get_instance()
    try:
        result = services.library.list_books(category=category, available=available, page=page,
                                             size=size, sort_by=sort_by)
    except ValueError as e:
        print(f"Error: {e}")
        return
    print_list_result(result.items)

@app.command("add")
def cli_add(
    title: str,
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    copies: int = typer.Option(1, "--copies", "-n", help="Number of copies to add"),
):
    """Add a book, or add copies to the book with the same title."""
    services = ServiceManager.get_instance()
    try:
        book = services.library.add_or_update_book(title=title, author=author, category=category,
                                                   isbn=isbn, total_copies=copies)
        print(f"Successfully added: {book.title} ({book.available_copies}/{book.total_copies} available) [{book.id}]")
    except (LibraryError, ValueError) as e:
        print(f"Error: {e}")

@app.command("find")
def cli_find(book_id: str):
    """Show the details of one book."""
    services = ServiceManager.get_instance()
    try:
        book = services.library.get_book(book_id)
    except LibraryError as e:
        print(str(e))
        return
    print("Book Found")
    print(f"Title: {book.title}")
    print(f"Author: {book.author or 'Unknown Author'}")
    print(f"Category: {book.category or '-'}")
    print(f"ISBN: {book.isbn or '-'}")
    print(f"Copies: {book.available_copies}/{book.total_copies} available")

@app.command("remove")
def cli_remove(book_id: str):
    """Soft-delete a book."""
    services = ServiceManager.get_instance()
    try:
        services.library.remove_book(book_id)
        print(f"Book with id {book_id} has been removed.")
    except LibraryError as e:
        print(str(e))

@app.command("register")
def cli_register(
    name: str,
    email: str,
    tier: Optional[str] = typer.Option(None, "--tier", "-t", help="BASIC (default) or PREMIUM"),
):
    """Register a new borrower."""
    services = ServiceManager.get_instance()
    try:
        borrower = services.membership.register(name, email, tier)
        print(f"Registered {borrower.name} ({borrower.membership_type.value}, "
              f"up to {borrower.max_borrow_limit} books) [{borrower.id}]")
    except (LibraryError, ValueError) as e:
        print(f"Error: {e}")

@app.command("borrow")
def cli_borrow(borrower_id: str, book_id: str):
    """Lend a book to a borrower."""
    services = ServiceManager.get_instance()
    try:
        record = services.lending.borrow_book(borrower_id, book_id)
        print(f"{record.borrower.name} borrowed {record.book.title}, due {record.due_date.isoformat()}")
    except LibraryError as e:
        print(f"Error: {e}")

@app.command("return")
def cli_return(borrower_id: str, book_id: str):
    """Take a book back and settle any late fee."""
    services = ServiceManager.get_instance()
    try:
        record = services.lending.return_book(borrower_id, book_id)
    except LibraryError as e:
        print(f"Error: {e}")
        return
    if record.fine_amount:
        print(f"{record.book.title} returned late. Fine: {record.fine_amount:.2f}")
    else:
        print(f"{record.book.title} returned on time.")

@app.command("active")
def cli_active():
    """List open loans."""
    services = ServiceManager.get_instance()
    print_records_result(services.lending.active_records(), "No open loans.")

@app.command("overdue")
def cli_overdue(as_of: Optional[str] = typer.Option(None, "--as-of", help="Reference date YYYY-MM-DD")):
    """List open loans past their due date."""
    services = ServiceManager.get_instance()
    try:
        reference = date.fromisoformat(as_of) if as_of else None
    except ValueError:
        print(f"Error: invalid date {as_of}")
        return
    print_records_result(services.lending.overdue_records(reference), "No overdue loans.")

@app.command("history")
def cli_history(borrower_id: str):
    """List every loan of a borrower."""
    services = ServiceManager.get_instance()
    print_records_result(services.lending.borrow_history(borrower_id))

@app.command("fines")
def cli_fines():
    """List fine rates per category."""
    services = ServiceManager.get_instance()
    print_policies_result(services.lending.fine_policies.find_all())
    print(f"Default: {services.lending.default_fine_per_day:.2f} per day")

@app.command("set-fine")
def cli_set_fine(category: str, fine_per_day: float):
    """Set the daily fine for a category."""
    services = ServiceManager.get_instance()
    try:
        policy = services.lending.fine_policies.save(FinePolicy(category=category, fine_per_day=fine_per_day))
        print(f"Fine for {policy.category} set to {policy.fine_per_day:.2f} per day")
    except ValueError as e:
        print(f"Error: {e}")

@app.command("stats")
def cli_stats():
    """Show catalog and loan statistics."""
    services = ServiceManager.get_instance()
    print_stats_result(services.library.get_statistics(as_of=services.lending.clock()))

@app.command("serve")
def cli_serve():
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    try:
        webbrowser.open(url)
    except Exception:
        logger.debug("Could not open a browser", exc_info=True)
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    subprocess.run(args)


if __name__ == "__main__":
    app()
