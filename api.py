import logging
import os
from datetime import date, datetime
from typing import Any, List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, EmailStr, Field

import database
from book import Book
from borrow_record import BorrowRecord, FinePolicy
from borrower import Borrower, MembershipType
from config import settings
from errors import (
    BookUnavailableError,
    BorrowLimitExceededError,
    DuplicateResourceError,
    LibraryError,
    ResourceNotFoundError,
)
from lending import LendingService
from library import Library, SORTABLE_FIELDS
from membership import Membership

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Re-read at import so tests can point a reloaded module at their own database
DB_FILE = os.environ.get("LIBRARY_DB_FILE") or None

library = Library(DB_FILE)
membership = Membership(DB_FILE)
lending = LendingService.for_database(DB_FILE)

app = FastAPI(title=settings.app_name, version=settings.app_version)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")

def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency that checks the API key on write endpoints."""
    if api_key == settings.api_key:
        return api_key
    else:
        raise HTTPException(
            status_code=403,
            detail="Could not validate credentials",
        )

# --- Models ---
class ApiResponse(BaseModel):
    success: bool
    message: str
    data: Any = None

class BookRequest(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    isbn: Optional[str] = None
    total_copies: int = Field(default=0, ge=0)

class BookModel(BaseModel):
    id: str
    title: str
    author: Optional[str] = None
    category: Optional[str] = None
    isbn: Optional[str] = None
    available: bool
    total_copies: int
    available_copies: int

class BookPageModel(BaseModel):
    items: List[BookModel]
    page: int
    size: int
    total: int
    total_pages: int

class BorrowerRequest(BaseModel):
    name: str
    email: EmailStr
    membership_type: Optional[MembershipType] = None

class BorrowerModel(BaseModel):
    id: str
    name: str
    email: str
    membership_type: MembershipType
    max_borrow_limit: int

class BorrowRequest(BaseModel):
    borrower_id: str
    book_id: str

class BorrowRecordModel(BaseModel):
    id: str
    book_id: str
    book_title: str
    borrower_id: str
    borrower_name: str
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    fine_amount: float = 0.0

class FinePolicyModel(BaseModel):
    category: str
    fine_per_day: float = Field(ge=0)

class StatsModel(BaseModel):
    total_titles: int
    total_copies: int
    available_copies: int
    open_loans: int
    overdue_loans: int

# --- Helpers ---
def _ok(message: str, data: Any = None) -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)

def _book(book: Book) -> BookModel:
    return BookModel(**book.to_dict())

def _borrower(borrower: Borrower) -> BorrowerModel:
    return BorrowerModel(**borrower.to_dict())

def _record(record: BorrowRecord) -> BorrowRecordModel:
    return BorrowRecordModel(**LendingService.to_response(record))

def _policy(policy: FinePolicy) -> FinePolicyModel:
    return FinePolicyModel(category=policy.category, fine_per_day=policy.fine_per_day)

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, "data": None})

# --- Error handlers ---
@app.exception_handler(ResourceNotFoundError)
async def handle_not_found(request: Request, exc: ResourceNotFoundError):
    return _error(404, str(exc))

@app.exception_handler(BorrowLimitExceededError)
@app.exception_handler(BookUnavailableError)
@app.exception_handler(DuplicateResourceError)
async def handle_conflict(request: Request, exc: LibraryError):
    return _error(409, str(exc))

@app.exception_handler(ValueError)
async def handle_bad_request(request: Request, exc: ValueError):
    return _error(400, str(exc))

@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, f"An unexpected error occurred: {exc}")

# --- Health ---
@app.get("/health")
def health():
    """Lightweight health endpoint: pings the database and reports catalog size."""
    db_ok = True
    try:
        with database.connection(DB_FILE) as conn:
            conn.execute("SELECT 1")
    except Exception:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "db": db_ok,
        "total_books": library.list_books().total if db_ok else None,
    }

@app.get("/stats", response_model=StatsModel)
def get_stats():
    return StatsModel(**library.get_statistics(as_of=lending.clock()))

# --- Books ---
@app.post("/api/v1/books", response_model=ApiResponse, dependencies=[Depends(get_api_key)])
def create_book(payload: BookRequest):
    """Add a book, or add copies to the existing book with the same title."""
    book = library.add_or_update_book(
        title=payload.title or "",
        author=payload.author,
        category=payload.category,
        isbn=payload.isbn,
        total_copies=payload.total_copies,
    )
    return _ok("Book added successfully", _book(book))

@app.get("/api/v1/books", response_model=ApiResponse)
def list_books(
    category: Optional[str] = Query(None, description="Exact category to filter on"),
    available: Optional[bool] = Query(None, description="Only available / unavailable books"),
    page: int = Query(0, description="Zero-based page number"),
    size: int = Query(settings.default_page_size, description="Items per page"),
    sort_by: str = Query("title", alias="sortBy", description=f"One of: {', '.join(SORTABLE_FIELDS)}"),
):
    result = library.list_books(category=category, available=available, page=page, size=size, sort_by=sort_by)
    data = BookPageModel(
        items=[_book(b) for b in result.items],
        page=result.page,
        size=result.size,
        total=result.total,
        total_pages=result.total_pages,
    )
    return _ok("Books fetched successfully", data)

@app.get("/api/v1/books/{book_id}", response_model=ApiResponse)
def get_book(book_id: str):
    return _ok("Book fetched successfully", _book(library.get_book(book_id)))

@app.put("/api/v1/books/{book_id}", response_model=ApiResponse, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, payload: BookRequest):
    book = library.update_book(
        book_id,
        title=payload.title,
        author=payload.author,
        category=payload.category,
        isbn=payload.isbn,
        total_copies=payload.total_copies,
    )
    return _ok("Book updated successfully", _book(book))

@app.delete("/api/v1/books/{book_id}", response_model=ApiResponse, dependencies=[Depends(get_api_key)])
def delete_book(book_id: str):
    library.remove_book(book_id)
    return _ok("Book deleted successfully", "Deleted")

# --- Borrowers ---
@app.post("/borrowers", response_model=ApiResponse)
def register_borrower(payload: BorrowerRequest):
    borrower = membership.register(payload.name, payload.email, payload.membership_type)
    return _ok("Borrower registered successfully", _borrower(borrower))

@app.get("/borrowers/overdue", response_model=ApiResponse)
def overdue_borrowers():
    records = lending.overdue_records()
    return _ok("Overdue records fetched successfully", [_record(r) for r in records])

@app.get("/borrowers/{borrower_id}", response_model=ApiResponse)
def get_borrower(borrower_id: str):
    return _ok("Borrower fetched successfully", _borrower(membership.get_borrower(borrower_id)))

@app.get("/borrowers/{borrower_id}/records", response_model=ApiResponse)
def borrow_history(borrower_id: str):
    records = lending.borrow_history(borrower_id)
    return _ok("Borrow history fetched successfully", [_record(r) for r in records])

# --- Borrowing ---
@app.post("/borrow", response_model=ApiResponse)
def borrow(payload: BorrowRequest):
    record = lending.borrow_book(payload.borrower_id, payload.book_id)
    return _ok("Book borrowed successfully", _record(record))

@app.post("/borrow/return", response_model=ApiResponse)
def return_book(payload: BorrowRequest):
    record = lending.return_book(payload.borrower_id, payload.book_id)
    return _ok("Book returned successfully", _record(record))

@app.get("/borrow/records/active", response_model=ApiResponse)
def active_records():
    records = lending.active_records()
    return _ok("Active borrow records fetched successfully", [_record(r) for r in records])

@app.get("/borrow/records/overdue", response_model=ApiResponse)
def overdue_records(as_of: Optional[date] = Query(None, description="Reference date (default: today)")):
    records = lending.overdue_records(as_of)
    return _ok("Overdue records fetched successfully", [_record(r) for r in records])

# --- Fine policies ---
@app.get("/fine-policies", response_model=ApiResponse)
def list_fine_policies():
    policies = lending.fine_policies.find_all()
    return _ok("Fine policies fetched successfully", [_policy(p) for p in policies])

@app.put("/fine-policies", response_model=ApiResponse, dependencies=[Depends(get_api_key)])
def set_fine_policy(payload: FinePolicyModel = Body(...)):
    policy = lending.fine_policies.save(FinePolicy(category=payload.category, fine_per_day=payload.fine_per_day))
    return _ok("Fine policy saved successfully", _policy(policy))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
