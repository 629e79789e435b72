import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from lending.book import Book, BookStatus
from lending.borrower import Borrower
from lending.clock import utcnow
from lending.errors import ConcurrencyConflict, DomainError, NotFound
from lending.library import Library
from lending.loan import Loan
from lending.penalty import Penalty

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        library.close()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

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
    """Dependency validating the API key on mutating endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error translation ---
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    logger.warning(f"Domain rule rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=400, content={"detail": exc.message, "field": exc.field_name})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    logger.warning(f"Lookup failed for {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConcurrencyConflict)
async def conflict_handler(request: Request, exc: ConcurrencyConflict):
    logger.warning(f"Concurrent update on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: str | None = None
    location: str | None = None
    total_copies: int
    available_copies: int
    status: str
    publication_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    total_copies: int = Field(default=1, description="Number of loanable copies")
    isbn: str | None = None
    location: str | None = None
    publication_date: date | None = None


class UpdateBookModel(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    publication_date: date | None = None


class LocationModel(BaseModel):
    location: str | None = None


class BookStatusModel(BaseModel):
    status: BookStatus


class BorrowerModel(BaseModel):
    id: str
    name: str
    email: str | None = None
    active: bool
    created_at: str | None = None


class BorrowerCreateModel(BaseModel):
    name: str
    email: str | None = None


class StandingModel(BaseModel):
    borrower_id: str
    active_loan_count: int
    has_active_penalty: bool
    max_active_loans: int


class LoanModel(BaseModel):
    id: str
    book_id: str
    borrower_id: str
    start: str
    committed_end: str
    status: str
    returned_at: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class LoanCreateModel(BaseModel):
    book_id: str
    borrower_id: str
    start: datetime | None = Field(default=None, description="Defaults to now")
    end: datetime | None = Field(default=None, description="Defaults to start plus the default loan length")
    activate: bool = True


class ReturnLoanModel(BaseModel):
    returned_at: datetime | None = None
    notes: str | None = None


class CancelLoanModel(BaseModel):
    reason: str


class ExtendLoanModel(BaseModel):
    days: int


class SweepModel(BaseModel):
    now: datetime | None = None


class PenaltyModel(BaseModel):
    id: str
    borrower_id: str
    loan_id: str | None = None
    amount: str
    start: str
    end: str
    reason: str
    active: bool
    created_at: str | None = None


class PenaltyCreateModel(BaseModel):
    borrower_id: str
    loan_id: str | None = None
    amount: Decimal = Decimal("0")
    start: datetime
    end: datetime
    reason: str


class ClosePenaltyModel(BaseModel):
    reason: str


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    loanable_books: int
    books_by_status: Dict[str, int]
    loans_by_status: Dict[str, int]
    active_penalties: int
    borrowers: int


def _book(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _borrower(borrower: Borrower) -> BorrowerModel:
    return BorrowerModel(**borrower.to_dict())


def _loan(loan: Loan) -> LoanModel:
    return LoanModel(**loan.to_dict())


def _penalty(penalty: Penalty) -> PenaltyModel:
    return PenaltyModel(**penalty.to_dict())


# --- Health ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a database round trip."""
    db_ok = True
    try:
        library.conn.execute("SELECT 1")
    except Exception as e:
        logger.error(f"Health check database failure: {e}")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": utcnow().isoformat() + "Z",
        "db": db_ok,
        "version": settings.app_version,
    }


@app.get("/stats", response_model=StatsModel)
def get_stats():
    return StatsModel(**library.get_statistics())


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books(title: Optional[str] = Query(None), author: Optional[str] = Query(None)):
    """List the catalog, or search it by title or author substring."""
    if title or author:
        books = library.search_books(title=title, author=author)
    else:
        books = library.list_books()
    return [_book(b) for b in books]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    book = library.get_book(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found.")
    return _book(book)


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    book = library.add_book(
        payload.title,
        payload.author,
        payload.total_copies,
        isbn=payload.isbn,
        location=payload.location,
        publication_date=payload.publication_date,
    )
    return _book(book)


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, update: UpdateBookModel):
    if not any([update.title, update.author, update.isbn, update.publication_date]):
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    book = library.update_book(
        book_id,
        title=update.title,
        author=update.author,
        isbn=update.isbn,
        publication_date=update.publication_date,
    )
    return _book(book)


@app.put("/books/{book_id}/location", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_location(book_id: str, payload: LocationModel):
    return _book(library.update_location(book_id, payload.location))


@app.post("/books/{book_id}/status", response_model=BookModel, dependencies=[Depends(get_api_key)])
def change_book_status(book_id: str, payload: BookStatusModel):
    return _book(library.change_book_status(book_id, payload.status))


@app.get("/books/{book_id}/loans", response_model=List[LoanModel])
def active_loans_for_book(book_id: str):
    return [_loan(l) for l in library.active_loans_for_book(book_id)]


# --- Borrowers ---
@app.post("/borrowers", response_model=BorrowerModel, status_code=201, dependencies=[Depends(get_api_key)])
def register_borrower(payload: BorrowerCreateModel):
    return _borrower(library.register_borrower(payload.name, payload.email))


@app.get("/borrowers/{borrower_id}", response_model=BorrowerModel)
def get_borrower(borrower_id: str):
    borrower = library.get_borrower(borrower_id)
    if not borrower:
        raise HTTPException(status_code=404, detail="Borrower not found.")
    return _borrower(borrower)


@app.get("/borrowers/{borrower_id}/standing", response_model=StandingModel)
def borrower_standing(borrower_id: str, as_of: Optional[datetime] = Query(None, description="Reference time, defaults to now")):
    standing = library.borrower_standing(borrower_id, as_of)
    return StandingModel(
        borrower_id=standing.borrower_id,
        active_loan_count=standing.active_loan_count,
        has_active_penalty=standing.has_active_penalty,
        max_active_loans=library.max_active_loans,
    )


@app.get("/borrowers/{borrower_id}/loans", response_model=List[LoanModel])
def loans_for_borrower(borrower_id: str):
    return [_loan(l) for l in library.loans_for_borrower(borrower_id)]


@app.get("/borrowers/{borrower_id}/penalties", response_model=List[PenaltyModel])
def penalties_for_borrower(borrower_id: str, active_only: bool = Query(False)):
    if active_only:
        penalties = library.active_penalties(borrower_id)
    else:
        penalties = library.penalties_for_borrower(borrower_id)
    return [_penalty(p) for p in penalties]


# --- Loans ---
@app.get("/loans/overdue", response_model=List[LoanModel])
def overdue_loans(as_of: Optional[datetime] = Query(None, description="Reference time, defaults to now")):
    return [_loan(l) for l in library.overdue_loans(as_of)]


@app.post("/loans/mark-overdue", response_model=List[LoanModel], dependencies=[Depends(get_api_key)])
def mark_overdue(payload: SweepModel):
    return [_loan(l) for l in library.mark_overdue_loans(payload.now)]


@app.get("/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: str):
    loan = library.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found.")
    return _loan(loan)


@app.post("/loans", response_model=LoanModel, status_code=201, dependencies=[Depends(get_api_key)])
def request_loan(payload: LoanCreateModel):
    loan = library.request_loan(
        payload.book_id,
        payload.borrower_id,
        payload.start,
        payload.end,
        activate=payload.activate,
    )
    return _loan(loan)


@app.post("/loans/{loan_id}/activate", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def activate_loan(loan_id: str):
    return _loan(library.activate_loan(loan_id))


@app.post("/loans/{loan_id}/return", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def return_loan(loan_id: str, payload: ReturnLoanModel):
    return _loan(library.return_loan(loan_id, payload.returned_at, payload.notes))


@app.post("/loans/{loan_id}/cancel", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def cancel_loan(loan_id: str, payload: CancelLoanModel):
    return _loan(library.cancel_loan(loan_id, payload.reason))


@app.post("/loans/{loan_id}/extend", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def extend_loan(loan_id: str, payload: ExtendLoanModel):
    return _loan(library.extend_loan(loan_id, payload.days))


# --- Penalties ---
@app.post("/penalties/expire", response_model=List[PenaltyModel], dependencies=[Depends(get_api_key)])
def expire_penalties(payload: SweepModel):
    return [_penalty(p) for p in library.expire_penalties(payload.now)]


@app.get("/penalties/{penalty_id}", response_model=PenaltyModel)
def get_penalty(penalty_id: str):
    penalty = library.get_penalty(penalty_id)
    if not penalty:
        raise HTTPException(status_code=404, detail="Penalty not found.")
    return _penalty(penalty)


@app.post("/penalties", response_model=PenaltyModel, status_code=201, dependencies=[Depends(get_api_key)])
def open_penalty(payload: PenaltyCreateModel):
    penalty = library.open_penalty(
        payload.borrower_id,
        payload.amount,
        payload.start,
        payload.end,
        payload.reason,
        loan_id=payload.loan_id,
    )
    return _penalty(penalty)


@app.post("/penalties/{penalty_id}/close", response_model=PenaltyModel, dependencies=[Depends(get_api_key)])
def close_penalty(penalty_id: str, payload: ClosePenaltyModel):
    return _penalty(library.close_penalty_early(penalty_id, payload.reason))
