from datetime import date

import pytest

import database
from lending import LendingService
from library import Library
from membership import Membership


class FakeClock:
    """Callable standing in for date.today(); tests move it with .today."""

    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def db_file(tmp_path, monkeypatch, request):
    # Unique database file per test; also becomes the module default for code that passes None
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    database.initialize_database(path)
    return path


@pytest.fixture
def lib(db_file):
    return Library(db_file)


@pytest.fixture
def members(db_file):
    return Membership(db_file)


@pytest.fixture
def clock():
    return FakeClock(date(2024, 3, 1))


@pytest.fixture
def lending(db_file, clock):
    return LendingService.for_database(db_file, clock=clock)
