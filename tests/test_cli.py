import json
from datetime import date
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

import main
from main import ServiceManager, app

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")


@pytest.fixture
def services(db_file):
    return ServiceManager.get_instance()


def test_list_no_books(services):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_and_list(services):
    result = runner.invoke(app, ["add", "Dune", "--author", "Frank Herbert", "--copies", "2"])
    assert result.exit_code == 0
    assert "Successfully added: Dune (2/2 available)" in result.stdout

    result = runner.invoke(app, ["list"])
    assert "Dune by Frank Herbert (2/2 available)" in result.stdout


def test_add_rejects_bad_isbn(services):
    result = runner.invoke(app, ["add", "Broken", "--isbn", "1234567890"])
    assert result.exit_code == 0
    assert "Error: Invalid ISBN format." in result.stdout


def test_list_json_output(services):
    services.library.add_or_update_book("Dune", total_copies=1)

    result = runner.invoke(app, ["--output", "json", "list"])
    assert result.exit_code == 0
    books = json.loads(result.stdout)
    assert [b["title"] for b in books] == ["Dune"]


def test_list_invalid_sort(services):
    result = runner.invoke(app, ["list", "--sort-by", "password"])
    assert "Error: Invalid sort_by" in result.stdout


def test_find_book(services):
    book = services.library.add_or_update_book("Found Book", "Finder", total_copies=1)

    result = runner.invoke(app, ["find", book.id])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Found Book" in result.stdout
    assert "Author: Finder" in result.stdout

    result = runner.invoke(app, ["find", "nonexistent"])
    assert "Book not found with id: nonexistent" in result.stdout


def test_remove_book(services):
    book = services.library.add_or_update_book("To Be Removed", total_copies=1)

    result = runner.invoke(app, ["remove", book.id])
    assert result.exit_code == 0
    assert f"Book with id {book.id} has been removed." in result.stdout

    result = runner.invoke(app, ["remove", book.id])
    assert f"Book not found with id: {book.id}" in result.stdout


def test_register_borrow_and_return(services):
    book = services.library.add_or_update_book("Dune", category="Fiction", total_copies=1)

    result = runner.invoke(app, ["register", "Ada Reader", "ada@example.com", "--tier", "premium"])
    assert result.exit_code == 0
    assert "Registered Ada Reader (PREMIUM, up to 5 books)" in result.stdout
    borrower = services.membership.list_borrowers()[0]

    services.lending.clock = lambda: date(2024, 1, 1)
    result = runner.invoke(app, ["borrow", borrower.id, book.id])
    assert "Ada Reader borrowed Dune, due 2024-01-15" in result.stdout

    result = runner.invoke(app, ["active"])
    assert "Dune - Ada Reader - due 2024-01-15 - open" in result.stdout

    result = runner.invoke(app, ["overdue", "--as-of", "2024-01-16"])
    assert "Dune - Ada Reader" in result.stdout

    services.lending.clock = lambda: date(2024, 1, 17)
    result = runner.invoke(app, ["return", borrower.id, book.id])
    assert "Dune returned late. Fine: 10.00" in result.stdout

    result = runner.invoke(app, ["active"])
    assert "No open loans." in result.stdout

    result = runner.invoke(app, ["history", borrower.id])
    assert "returned 2024-01-17" in result.stdout


def test_borrow_errors_are_reported(services):
    result = runner.invoke(app, ["borrow", "nobody", "nothing"])
    assert result.exit_code == 0
    assert "Error: Borrower not found with id: nobody" in result.stdout

    result = runner.invoke(app, ["overdue", "--as-of", "yesterday"])
    assert "Error: invalid date yesterday" in result.stdout


def test_fines(services):
    result = runner.invoke(app, ["set-fine", "Poetry", "3.5"])
    assert "Fine for Poetry set to 3.50 per day" in result.stdout

    result = runner.invoke(app, ["fines"])
    assert "Poetry: 3.50 per day" in result.stdout
    assert "Fiction: 5.00 per day" in result.stdout
    assert "Default: 10.00 per day" in result.stdout

    result = runner.invoke(app, ["set-fine", "Poetry", "--", "-1"])
    assert "Error: Fine per day cannot be negative." in result.stdout


def test_stats(services):
    services.library.add_or_update_book("Dune", total_copies=3)

    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Titles: 1" in result.stdout
    assert "Total Copies: 3" in result.stdout


def test_serve_starts_uvicorn(monkeypatch):
    run_mock = MagicMock()
    open_mock = MagicMock()
    monkeypatch.setattr(main.subprocess, "run", run_mock)
    monkeypatch.setattr(main.webbrowser, "open", open_mock)

    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    args = run_mock.call_args[0][0]
    assert args[1:4] == ["-m", "uvicorn", "api:app"]
    open_mock.assert_called_once()


def test_register_rejects_malformed_email(services):
    result = runner.invoke(app, ["register", "Ada Reader", "ada@example..com"])
    assert result.exit_code == 0
    assert "Error: A valid email must be provided" in result.stdout
    assert services.membership.list_borrowers() == []
