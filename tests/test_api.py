import importlib
from datetime import date

import pytest
from fastapi.testclient import TestClient

from config import settings

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def api_module(db_file, monkeypatch):
    # Reload api so its module-level services use the test-specific DB
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    import api as api_module
    return importlib.reload(api_module)


@pytest.fixture
def client(api_module):
    return TestClient(api_module.app)


def _add_book(client, **overrides):
    payload = {"title": "Dune", "author": "Frank Herbert", "category": "Fiction", "total_copies": 1}
    payload.update(overrides)
    response = client.post("/api/v1/books", json=payload, headers=HEADERS)
    assert response.status_code == 200, response.text
    return response.json()["data"]


def _register(client, email="ada@example.com", membership_type=None):
    payload = {"name": "Ada Reader", "email": email}
    if membership_type:
        payload["membership_type"] = membership_type
    response = client.post("/borrowers", json=payload)
    assert response.status_code == 200, response.text
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["total_books"] == 0


def test_add_book_with_valid_api_key(client):
    response = client.post("/api/v1/books", headers=HEADERS, json={"title": "Dune", "total_copies": 2})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Book added successfully"
    assert body["data"]["available_copies"] == 2
    assert body["data"]["available"] is True


def test_add_book_with_invalid_api_key(client):
    response = client.post("/api/v1/books", headers={"X-API-Key": "invalid-key"}, json={"title": "Dune"})
    assert response.status_code == 403


def test_add_book_validation_error(client):
    response = client.post("/api/v1/books", headers=HEADERS, json={"title": "Dune", "total_copies": 0})
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Total copies must be at least 1", "data": None}


def test_book_crud(client):
    book = _add_book(client, total_copies=2)

    response = client.get(f"/api/v1/books/{book['id']}")
    assert response.status_code == 200
    assert response.json()["data"]["title"] == "Dune"

    response = client.put(f"/api/v1/books/{book['id']}", headers=HEADERS,
                          json={"author": "F. Herbert", "total_copies": 4})
    assert response.status_code == 200
    assert response.json()["data"]["author"] == "F. Herbert"
    assert response.json()["data"]["available_copies"] == 4

    listing = client.get("/api/v1/books", params={"category": "Fiction", "sortBy": "title"}).json()["data"]
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == book["id"]

    response = client.delete(f"/api/v1/books/{book['id']}", headers=HEADERS)
    assert response.status_code == 200

    response = client.get(f"/api/v1/books/{book['id']}")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_invalid_sort_field(client):
    response = client.get("/api/v1/books", params={"sortBy": "nope"})
    assert response.status_code == 400


def test_duplicate_email_conflict(client):
    _register(client)
    response = client.post("/borrowers", json={"name": "Ada Again", "email": "ada@example.com"})
    assert response.status_code == 409
    assert response.json()["message"] == "A borrower with this email already exists."


def test_register_premium_borrower(client):
    borrower = _register(client, membership_type="PREMIUM")
    assert borrower["max_borrow_limit"] == 5

    response = client.get(f"/borrowers/{borrower['id']}")
    assert response.json()["data"]["membership_type"] == "PREMIUM"


def test_borrow_and_return_flow(client, api_module, monkeypatch):
    book = _add_book(client)
    borrower = _register(client)
    monkeypatch.setattr(api_module.lending, "clock", lambda: date(2024, 1, 1))

    response = client.post("/borrow", json={"borrower_id": borrower["id"], "book_id": book["id"]})
    assert response.status_code == 200
    record = response.json()["data"]
    assert record["book_title"] == "Dune"
    assert record["borrower_name"] == "Ada Reader"
    assert record["due_date"] == "2024-01-15"
    assert record["return_date"] is None

    active = client.get("/borrow/records/active").json()["data"]
    assert [r["id"] for r in active] == [record["id"]]

    response = client.post("/borrow", json={"borrower_id": borrower["id"], "book_id": book["id"]})
    assert response.status_code == 409

    overdue = client.get("/borrow/records/overdue", params={"as_of": "2024-01-16"}).json()["data"]
    assert [r["id"] for r in overdue] == [record["id"]]

    monkeypatch.setattr(api_module.lending, "clock", lambda: date(2024, 1, 19))
    assert [r["id"] for r in client.get("/borrowers/overdue").json()["data"]] == [record["id"]]

    response = client.post("/borrow/return", json={"borrower_id": borrower["id"], "book_id": book["id"]})
    assert response.status_code == 200
    returned = response.json()["data"]
    assert returned["return_date"] == "2024-01-19"
    assert returned["fine_amount"] == 20.0

    history = client.get(f"/borrowers/{borrower['id']}/records").json()["data"]
    assert len(history) == 1
    assert history[0]["fine_amount"] == 20.0


def test_borrow_unavailable_book(client):
    book = _add_book(client)
    first = _register(client, "first@example.com")
    second = _register(client, "second@example.com")
    client.post("/borrow", json={"borrower_id": first["id"], "book_id": book["id"]})

    response = client.post("/borrow", json={"borrower_id": second["id"], "book_id": book["id"]})
    assert response.status_code == 409
    assert response.json()["message"] == "No available copies for book: Dune"


def test_return_without_loan_is_not_found(client):
    book = _add_book(client)
    borrower = _register(client)

    response = client.post("/borrow/return", json={"borrower_id": borrower["id"], "book_id": book["id"]})
    assert response.status_code == 404
    assert response.json()["message"] == f"Active borrow record not found for book id: {book['id']}"


def test_fine_policies(client):
    response = client.put("/fine-policies", json={"category": "Poetry", "fine_per_day": 3.5}, headers=HEADERS)
    assert response.status_code == 200

    policies = {p["category"]: p["fine_per_day"] for p in client.get("/fine-policies").json()["data"]}
    assert policies["Poetry"] == 3.5

    response = client.put("/fine-policies", json={"category": "Poetry", "fine_per_day": 1.0},
                          headers={"X-API-Key": "invalid-key"})
    assert response.status_code == 403


def test_stats(client):
    _add_book(client, total_copies=3)
    stats = client.get("/stats").json()
    assert stats["total_titles"] == 1
    assert stats["total_copies"] == 3
    assert stats["open_loans"] == 0
