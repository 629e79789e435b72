from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from threading import RLock
from typing import Any, Dict, Iterator, List, Optional

from config import settings
from . import database
from .book import Book, BookStatus
from .borrower import Borrower, BorrowerStanding
from .clock import to_utc_naive, utcnow
from .database import get_db_connection, initialize_database, transaction
from .eligibility import ensure_can_borrow
from .errors import InvalidField, InvalidOperation
from .loan import Loan, LoanPeriod, LoanStatus
from .penalty import Penalty
from .repositories import BookRepository, BorrowerRepository, LoanRepository, PenaltyRepository

logger = logging.getLogger(__name__)


class Library:
    """Runs the lending workflows: load entities, apply their transitions, persist.

    Every step that touches more than one entity (checkout + new loan, return
    + copy release, cancel + copy release) is written in a single SQLite
    transaction, so either all of it is stored or none of it.
    """

    def __init__(self, db_file: Optional[str] = None, *, max_active_loans: Optional[int] = None,
                 default_loan_days: Optional[int] = None,
                 penalize_late_returns: Optional[bool] = None) -> None:
        self.db_file = (
            db_file
            or os.environ.get("LIBRARY_DB_FILE")
            or settings.database_file
            or database.DATABASE_FILE
        )
        self.max_active_loans = max_active_loans if max_active_loans is not None else settings.max_active_loans
        self.default_loan_days = default_loan_days if default_loan_days is not None else settings.default_loan_days
        self.penalize_late_returns = (
            penalize_late_returns if penalize_late_returns is not None else settings.penalize_late_returns
        )

        initialize_database(self.db_file)
        self.conn = get_db_connection(self.db_file)
        self._lock = RLock()
        self.books = BookRepository(self.conn)
        self.borrowers = BorrowerRepository(self.conn)
        self.loans = LoanRepository(self.conn)
        self.penalties = PenaltyRepository(self.conn)

    @contextmanager
    def _write(self) -> Iterator[None]:
        with self._lock, transaction(self.conn):
            yield

    @contextmanager
    def _read(self) -> Iterator[None]:
        with self._lock:
            yield

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: str, author: str, total_copies: int, isbn: Optional[str] = None,
                 location: Optional[str] = None, publication_date: Optional[date] = None) -> Book:
        book = Book.create(title, author, total_copies, isbn=isbn, location=location,
                           publication_date=publication_date)
        with self._write():
            self.books.add(book)
        logger.info(f"Book added: id={book.id}, title={book.title!r}, copies={book.total_copies}")
        return book

    def get_book(self, book_id: str) -> Optional[Book]:
        with self._read():
            return self.books.get(book_id)

    def list_books(self) -> List[Book]:
        with self._read():
            return self.books.list_all()

    def search_books(self, title: Optional[str] = None, author: Optional[str] = None) -> List[Book]:
        """Search by title substring, or by author substring when no title is given."""
        title = (title or "").strip()
        author = (author or "").strip()
        if not title and not author:
            raise InvalidField("Provide a title or author to search for.", "query")
        with self._read():
            if title:
                return self.books.search_by_title(title)
            return self.books.search_by_author(author)

    def update_book(self, book_id: str, *, title: Optional[str] = None, author: Optional[str] = None,
                    isbn: Optional[str] = None, publication_date: Optional[date] = None) -> Book:
        with self._write():
            book = self.books.require(book_id)
            book.update_metadata(title=title, author=author, isbn=isbn, publication_date=publication_date)
            self.books.update(book)
        return book

    def update_location(self, book_id: str, location: Optional[str]) -> Book:
        with self._write():
            book = self.books.require(book_id)
            book.update_location(location)
            self.books.update(book)
        return book

    def reserve_book(self, book_id: str) -> Book:
        return self._change_book(book_id, Book.reserve)

    def release_reservation(self, book_id: str) -> Book:
        return self._change_book(book_id, Book.release_reservation)

    def mark_book_damaged(self, book_id: str) -> Book:
        return self._change_book(book_id, Book.mark_damaged)

    def mark_book_inactive(self, book_id: str) -> Book:
        return self._change_book(book_id, Book.mark_inactive)

    def restore_book(self, book_id: str) -> Book:
        return self._change_book(book_id, Book.restore_availability)

    def change_book_status(self, book_id: str, status: BookStatus) -> Book:
        """Move a book to the requested status through the matching operation."""
        status = BookStatus(status)
        if status == BookStatus.LOANED:
            raise InvalidOperation("A book becomes loaned through loans, not by setting its status.")
        if status == BookStatus.RESERVED:
            return self.reserve_book(book_id)
        if status == BookStatus.DAMAGED:
            return self.mark_book_damaged(book_id)
        if status == BookStatus.INACTIVE:
            return self.mark_book_inactive(book_id)

        def make_available(book: Book) -> None:
            if book.status == BookStatus.RESERVED:
                book.release_reservation()
            else:
                book.restore_availability()

        return self._change_book(book_id, make_available)

    def _change_book(self, book_id: str, action) -> Book:
        with self._write():
            book = self.books.require(book_id)
            before = book.status
            action(book)
            self.books.update(book)
        logger.info(f"Book {book.id} status {before.value} -> {book.status.value}")
        return book

    def get_statistics(self) -> Dict[str, Any]:
        with self._read():
            books = self.books.list_all()
            return {
                "total_books": len(books),
                "total_copies": sum(b.total_copies for b in books),
                "available_copies": sum(b.available_copies for b in books),
                "loanable_books": self.books.count_loanable(),
                "books_by_status": {s.value: self.books.count_by_status(s) for s in BookStatus},
                "loans_by_status": {s.value: self.loans.count_by_status(s) for s in LoanStatus},
                "active_penalties": len(self.penalties.list_active()),
                "borrowers": len(self.borrowers.list_all()),
            }

    # ------------------------- Borrowers ------------------------- #
    def register_borrower(self, name: str, email: Optional[str] = None) -> Borrower:
        borrower = Borrower.register(name, email)
        with self._write():
            if borrower.email and self.borrowers.get_by_email(borrower.email):
                raise InvalidField(f"A borrower with email {borrower.email} already exists.", "email")
            self.borrowers.add(borrower)
        logger.info(f"Borrower registered: id={borrower.id}")
        return borrower

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        with self._read():
            return self.borrowers.get(borrower_id)

    def set_borrower_active(self, borrower_id: str, active: bool) -> Borrower:
        with self._write():
            borrower = self.borrowers.require(borrower_id)
            if active:
                borrower.reactivate()
            else:
                borrower.deactivate()
            self.borrowers.update(borrower)
        return borrower

    def borrower_standing(self, borrower_id: str, now: Optional[datetime] = None) -> BorrowerStanding:
        """Facts the loan gate would see as of ``now``.

        Penalties whose window has ended count as expired even before
        ``expire_penalties`` has stored that.
        """
        as_of = to_utc_naive(now) or utcnow()
        with self._read():
            self.borrowers.require(borrower_id)
            return BorrowerStanding(
                borrower_id=borrower_id,
                active_loan_count=self.loans.count_active_by_borrower(borrower_id),
                active_penalties=tuple(
                    p for p in self.penalties.list_active_by_borrower(borrower_id) if as_of < p.end
                ),
            )

    # ------------------------- Loans ------------------------- #
    def request_loan(self, book_id: str, borrower_id: str, start: Optional[datetime] = None,
                     end: Optional[datetime] = None, *, activate: bool = True,
                     now: Optional[datetime] = None) -> Loan:
        """Check eligibility, check out a copy and record the loan.

        ``start`` defaults to now and ``end`` to ``start`` plus the default
        loan length. Penalties are checked for expiry as of ``now``, which
        defaults to ``start``. With ``activate`` the loan starts out active,
        otherwise it stays requested (the copy is held either way).
        """
        start = to_utc_naive(start) or utcnow()
        end = to_utc_naive(end) or start + timedelta(days=self.default_loan_days)
        as_of = to_utc_naive(now) or start

        with self._write():
            book = self.books.require(book_id)
            borrower = self.borrowers.require(borrower_id)
            if not borrower.active:
                raise InvalidOperation(f"Borrower {borrower.id} is inactive.")

            still_active = []
            for penalty in self.penalties.list_active_by_borrower(borrower.id):
                if penalty.check_expiry(as_of):
                    self.penalties.update(penalty)
                else:
                    still_active.append(penalty)
            standing = BorrowerStanding(
                borrower_id=borrower.id,
                active_loan_count=self.loans.count_active_by_borrower(borrower.id),
                active_penalties=tuple(still_active),
            )
            ensure_can_borrow(standing, self.max_active_loans)

            loan = Loan.request(book.id, borrower.id, LoanPeriod.create(start, end))
            book.checkout()
            if activate:
                loan.activate()
            self.loans.add(loan)
            self.books.update(book)

        logger.info(
            f"Loan {loan.id} {loan.status.value}: book={book.id}, borrower={borrower.id}, "
            f"due={loan.period.committed_end.isoformat()}"
        )
        return loan

    def activate_loan(self, loan_id: str) -> Loan:
        with self._write():
            loan = self.loans.require(loan_id)
            loan.activate()
            self.loans.update(loan)
        logger.info(f"Loan {loan.id} activated")
        return loan

    def return_loan(self, loan_id: str, returned_at: Optional[datetime] = None,
                    notes: Optional[str] = None) -> Loan:
        """Close a loan, put the copy back and, if it came back late, open a penalty."""
        returned_at = to_utc_naive(returned_at) or utcnow()
        penalty = None
        with self._write():
            loan = self.loans.require(loan_id)
            book = self.books.require(loan.book_id)
            loan.return_loan(returned_at, notes)
            book.return_copy()
            self.loans.update(loan)
            self.books.update(book)

            days_late = loan.days_late(returned_at)
            if self.penalize_late_returns and days_late > 0:
                penalty = self._late_return_penalty(loan, returned_at, days_late)
                self.penalties.add(penalty)

        logger.info(f"Loan {loan.id} returned at {returned_at.isoformat()}")
        if penalty is not None:
            logger.info(f"Penalty {penalty.id} opened for borrower {penalty.borrower_id}: {penalty.amount}")
        return loan

    @staticmethod
    def _late_return_penalty(loan: Loan, returned_at: datetime, days_late: int) -> Penalty:
        amount = Decimal(days_late) * settings.penalty_daily_rate
        window = timedelta(days=days_late * settings.penalty_days_per_late_day)
        return Penalty.open(
            borrower_id=loan.borrower_id,
            loan_id=loan.id,
            amount=amount,
            start=returned_at,
            end=returned_at + window,
            reason=f"Late return: {days_late} day(s) after the committed date",
        )

    def cancel_loan(self, loan_id: str, reason: str) -> Loan:
        """Cancel a requested or active loan and release the copy it holds."""
        with self._write():
            loan = self.loans.require(loan_id)
            book = self.books.require(loan.book_id) if loan.holds_copy else None
            loan.cancel(reason)
            if book is not None:
                book.return_copy()
                self.books.update(book)
            self.loans.update(loan)
        logger.info(f"Loan {loan.id} cancelled")
        return loan

    def extend_loan(self, loan_id: str, days: int) -> Loan:
        with self._write():
            loan = self.loans.require(loan_id)
            loan.extend(days)
            self.loans.update(loan)
        logger.info(f"Loan {loan.id} extended by {days} day(s) to {loan.period.committed_end.isoformat()}")
        return loan

    def mark_overdue_loans(self, now: Optional[datetime] = None) -> List[Loan]:
        """Flag every active loan past its committed end. Returns the loans that changed."""
        now = to_utc_naive(now) or utcnow()
        flagged = []
        with self._write():
            for loan in self.loans.list_overdue(now):
                if loan.mark_overdue(now):
                    self.loans.update(loan)
                    flagged.append(loan)
        if flagged:
            logger.info(f"{len(flagged)} loan(s) marked overdue as of {now.isoformat()}")
        return flagged

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        with self._read():
            return self.loans.get(loan_id)

    def loans_for_borrower(self, borrower_id: str) -> List[Loan]:
        with self._read():
            return self.loans.list_by_borrower(borrower_id)

    def active_loans_for_book(self, book_id: str) -> List[Loan]:
        with self._read():
            return self.loans.list_holding_book(book_id)

    def overdue_loans(self, as_of: Optional[datetime] = None) -> List[Loan]:
        """Loans still out past their committed end, whether or not they were flagged yet."""
        as_of = to_utc_naive(as_of) or utcnow()
        with self._read():
            return self.loans.list_past_due(as_of)

    # ------------------------- Penalties ------------------------- #
    def open_penalty(self, borrower_id: str, amount, start: datetime, end: datetime, reason: str,
                     loan_id: Optional[str] = None) -> Penalty:
        penalty = Penalty.open(borrower_id, loan_id, amount, to_utc_naive(start), to_utc_naive(end), reason)
        with self._write():
            self.borrowers.require(penalty.borrower_id)
            if penalty.loan_id:
                self.loans.require(penalty.loan_id)
            self.penalties.add(penalty)
        logger.info(f"Penalty {penalty.id} opened for borrower {penalty.borrower_id}: {penalty.amount}")
        return penalty

    def close_penalty_early(self, penalty_id: str, reason: str) -> Penalty:
        with self._write():
            penalty = self.penalties.require(penalty_id)
            was_active = penalty.active
            penalty.close_early(reason)
            if was_active:
                self.penalties.update(penalty)
        if was_active:
            logger.info(f"Penalty {penalty.id} closed early")
        return penalty

    def expire_penalties(self, now: Optional[datetime] = None) -> List[Penalty]:
        """Deactivate every active penalty whose window has ended. Returns the ones that changed."""
        now = to_utc_naive(now) or utcnow()
        expired = []
        with self._write():
            for penalty in self.penalties.list_active():
                if penalty.check_expiry(now):
                    self.penalties.update(penalty)
                    expired.append(penalty)
        if expired:
            logger.info(f"{len(expired)} penalt(y/ies) expired as of {now.isoformat()}")
        return expired

    def get_penalty(self, penalty_id: str) -> Optional[Penalty]:
        with self._read():
            return self.penalties.get(penalty_id)

    def active_penalties(self, borrower_id: str) -> List[Penalty]:
        with self._read():
            return self.penalties.list_active_by_borrower(borrower_id)

    def penalties_for_borrower(self, borrower_id: str) -> List[Penalty]:
        with self._read():
            return self.penalties.list_by_borrower(borrower_id)

    def close(self) -> None:
        """Close the underlying database connection."""
        self.conn.close()
